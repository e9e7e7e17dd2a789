from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from src.schemas.cache import CacheStats

logger = logging.getLogger(__name__)


class CacheMiss(KeyError):
    """Raised by CacheStore.get when a key is absent or expired. Internal to the data layer."""


@dataclass
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    ttl: float


# PUBLIC_INTERFACE
def make_cache_key(table: str, operation: str, columns: Optional[str] = None) -> str:
    """
    Build the cache key for a table-scoped read.

    The key is `table:operation:columns` and deliberately carries no filter
    predicates, so filtered reads on the same table and columns share a slot.
    """
    return f"{table}:{operation}:{columns or '*'}"


class CacheStore:
    """
    In-memory TTL key/value store with table-prefix invalidation.

    All operations are synchronous and guarded by one lock, so the store can be
    shared by every in-flight call in the process. Expiry is lazy: an expired
    entry is purged the next time it is read.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    # PUBLIC_INTERFACE
    def put(self, key: str, value: Any, ttl: float) -> None:
        """Store value under key for ttl seconds, replacing any existing entry."""
        entry = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl=ttl)
        with self._lock:
            self._entries[key] = entry

    # PUBLIC_INTERFACE
    def get(self, key: str) -> Any:
        """
        Return the cached value for key.

        Raises:
            CacheMiss: if the key is absent or its TTL has elapsed (the entry is purged).
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                raise CacheMiss(key)
            if self._clock() - entry.stored_at < entry.ttl:
                return entry.value
            del self._entries[key]
        logger.debug("Cache entry expired key=%s", key)
        raise CacheMiss(key)

    # PUBLIC_INTERFACE
    def invalidate_by_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with `prefix:`. Returns the number removed."""
        marker = f"{prefix}:"
        with self._lock:
            stale = [k for k in self._entries if k.startswith(marker)]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Invalidated %d cache entries for prefix=%s", len(stale), prefix)
        return len(stale)

    # PUBLIC_INTERFACE
    def clear(self, table: Optional[str] = None) -> int:
        """Flush the whole cache, or only one table's entries. Returns the number removed."""
        if table:
            return self.invalidate_by_prefix(table)
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        return removed

    # PUBLIC_INTERFACE
    def stats(self) -> CacheStats:
        """Return the current size and keys."""
        with self._lock:
            keys = list(self._entries)
        return CacheStats(size=len(keys), entries=keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
