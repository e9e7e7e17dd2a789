from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from supabase import acreate_client

from src.db.auth import AuthCallTracker
from src.db.cache import CacheStore
from src.db.config import Settings, get_settings
from src.db.instrumentation import Instrumentation, ObservabilitySink
from src.db.metrics import MetricsRecorder
from src.db.query import TableQuery
from src.db.storage import StorageTracker
from src.schemas.cache import CacheStats

logger = logging.getLogger(__name__)


class DataClient:
    """
    Caching, instrumented facade over the async Supabase client.

    Build one per process at startup and pass it to whatever needs data access.
    Reads chained from `from_(table).select(...)` are served from the shared
    query cache when possible; writes invalidate the table's cached reads once
    they succeed. Auth and storage calls are timed but never cached.

    The settings object is frozen; after construction the cache can only be
    changed through `clear_cache()` and successful mutations.
    """

    def __init__(
        self,
        raw_client: Any,
        settings: Settings,
        *,
        cache: Optional[CacheStore] = None,
        sink: Optional[ObservabilitySink] = None,
        metrics: Optional[MetricsRecorder] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._client = raw_client
        self._settings = settings
        self._cache = cache or CacheStore()
        self._instrumentation = Instrumentation(settings, sink=sink, metrics=metrics, clock=clock)
        self._auth = AuthCallTracker(raw_client.auth, self._instrumentation)
        self._storage = StorageTracker(raw_client.storage, self._instrumentation)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def raw(self) -> Any:
        """The underlying client, for calls the facade does not wrap."""
        return self._client

    @property
    def metrics(self) -> MetricsRecorder:
        return self._instrumentation.metrics

    @property
    def instrumentation(self) -> Instrumentation:
        return self._instrumentation

    @property
    def auth(self) -> AuthCallTracker:
        return self._auth

    @property
    def storage(self) -> StorageTracker:
        return self._storage

    # PUBLIC_INTERFACE
    def from_(self, table: str) -> TableQuery:
        """Start a query or mutation against `table`."""
        return TableQuery(
            table,
            lambda: self._client.from_(table),
            cache=self._cache,
            instrumentation=self._instrumentation,
            settings=self._settings,
        )

    table = from_

    # PUBLIC_INTERFACE
    def get_cache_stats(self) -> CacheStats:
        """Return the number of cached reads and their keys."""
        return self._cache.stats()

    # PUBLIC_INTERFACE
    def clear_cache(self, table: Optional[str] = None) -> int:
        """Drop every cached read, or only those of `table`. Returns how many entries were removed."""
        removed = self._cache.clear(table)
        logger.info("Cleared %d cached reads (scope=%s)", removed, table or "all")
        return removed


# PUBLIC_INTERFACE
async def create_data_client(
    settings: Optional[Settings] = None,
    *,
    sink: Optional[ObservabilitySink] = None,
    metrics: Optional[MetricsRecorder] = None,
) -> DataClient:
    """
    Create the async Supabase client and wrap it in a DataClient.

    Raises:
        ValueError: if SUPABASE_URL or SUPABASE_KEY is missing.
    """
    settings = settings or get_settings()
    if not settings.is_configured:
        raise ValueError(
            "Data API configuration missing. Ensure SUPABASE_URL and SUPABASE_KEY are set in the environment."
        )
    raw = await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    logger.info(
        "Data client ready (query cache=%s, monitoring=%s, ttl=%ss, slow threshold=%sms)",
        settings.ENABLE_QUERY_CACHE,
        settings.ENABLE_PERFORMANCE_MONITORING,
        settings.DEFAULT_CACHE_TTL_SECONDS,
        settings.SLOW_QUERY_THRESHOLD_MS,
    )
    return DataClient(raw, settings, sink=sink, metrics=metrics)
