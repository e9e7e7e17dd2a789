from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Generator, Optional

from src.db.cache import CacheMiss, CacheStore, make_cache_key
from src.db.config import Settings
from src.db.instrumentation import CallKind, CallSite, Instrumentation, Outcome

logger = logging.getLogger(__name__)

MUTATION_OPERATIONS = ("insert", "update", "delete", "upsert")


class _FilterChain:
    """
    Chainable filter/modifier surface shared by the read and write wrappers.

    Each method calls the same method on the wrapped PostgREST builder and
    returns a new wrapper around whatever the builder returned, keeping the
    table/operation context. Only the terminal `execute()` is intercepted.
    """

    _builder: Any

    def _wrap(self, builder: Any) -> Any:
        raise NotImplementedError

    def _chain(self, method: str, *args: Any, **kwargs: Any) -> Any:
        return self._wrap(getattr(self._builder, method)(*args, **kwargs))

    def eq(self, column: str, value: Any):
        return self._chain("eq", column, value)

    def neq(self, column: str, value: Any):
        return self._chain("neq", column, value)

    def gt(self, column: str, value: Any):
        return self._chain("gt", column, value)

    def gte(self, column: str, value: Any):
        return self._chain("gte", column, value)

    def lt(self, column: str, value: Any):
        return self._chain("lt", column, value)

    def lte(self, column: str, value: Any):
        return self._chain("lte", column, value)

    def in_(self, column: str, values: Any):
        return self._chain("in_", column, values)

    def is_(self, column: str, value: Any):
        return self._chain("is_", column, value)

    def like(self, column: str, pattern: str):
        return self._chain("like", column, pattern)

    def ilike(self, column: str, pattern: str):
        return self._chain("ilike", column, pattern)

    def order(self, column: str, *, desc: bool = False, **kwargs: Any):
        return self._chain("order", column, desc=desc, **kwargs)

    def limit(self, size: int, **kwargs: Any):
        return self._chain("limit", size, **kwargs)

    def range(self, start: int, end: int, **kwargs: Any):
        return self._chain("range", start, end, **kwargs)

    def single(self):
        return self._chain("single")

    def maybe_single(self):
        return self._chain("maybe_single")


class _Resolvable:
    """
    Runs `_resolve()` at most once per instance; repeated awaits share the same future.

    Each awaiter waits through `asyncio.shield`, so cancelling one of them leaves
    the shared call running for the others. When the last waiter is cancelled
    the call itself is cancelled and the instance forgets it; a later `execute()`
    starts a fresh call.
    """

    _resolution: Optional["asyncio.Future[Any]"] = None
    _waiters: int = 0

    async def _resolve(self) -> Any:
        raise NotImplementedError

    async def execute(self) -> Any:
        if self._resolution is None:
            self._resolution = asyncio.ensure_future(self._resolve())
        resolution = self._resolution
        self._waiters += 1
        try:
            return await asyncio.shield(resolution)
        except asyncio.CancelledError:
            if self._waiters == 1 and not resolution.done():
                resolution.cancel()
                if self._resolution is resolution:
                    self._resolution = None
            raise
        finally:
            self._waiters -= 1

    def __await__(self) -> Generator[Any, None, Any]:
        return self.execute().__await__()


class SelectQuery(_FilterChain, _Resolvable):
    """
    Wrapped read chain for one table.

    On `execute()` the cache is consulted first; on a hit the underlying
    builder is never executed. On a miss the real call runs under
    instrumentation and a successful result is cached for the configured TTL.
    """

    def __init__(
        self,
        builder: Any,
        *,
        table: str,
        columns: Optional[str],
        cache: CacheStore,
        instrumentation: Instrumentation,
        settings: Settings,
    ) -> None:
        self._builder = builder
        self.table = table
        self.columns = columns
        self._cache = cache
        self._instrumentation = instrumentation
        self._settings = settings
        self._resolution = None

    def _wrap(self, builder: Any) -> "SelectQuery":
        return SelectQuery(
            builder,
            table=self.table,
            columns=self.columns,
            cache=self._cache,
            instrumentation=self._instrumentation,
            settings=self._settings,
        )

    @property
    def cache_key(self) -> str:
        return make_cache_key(self.table, "select", self.columns)

    async def _resolve(self) -> Any:
        instr = self._instrumentation
        site = CallSite(
            kind=CallKind.QUERY,
            name=f"select: {self.table}",
            table=self.table,
            operation="select",
            columns=self.columns or "*",
        )
        span = instr.start_span(
            site.name,
            {"db.table": self.table, "db.operation": "select", "db.columns": self.columns or "*"},
            op="db.query",
        )
        use_cache = self._settings.ENABLE_QUERY_CACHE
        key = self.cache_key
        try:
            if use_cache:
                try:
                    cached = self._cache.get(key)
                except CacheMiss:
                    pass
                else:
                    instr.record_cache_hit(site, span)
                    return cached

            result = await instr.measure(
                site, span, self._builder.execute, outcome=Outcome.MISS if use_cache else Outcome.OK
            )
            if use_cache:
                if getattr(result, "data", None) is not None:
                    self._cache.put(key, result, self._settings.DEFAULT_CACHE_TTL_SECONDS)
                instr.record_cache_miss(site, span)
            return result
        finally:
            span.end()


class MutationQuery(_FilterChain, _Resolvable):
    """
    Wrapped insert/update/delete/upsert for one table.

    The underlying call runs exactly once. When it succeeds every cached read
    for the table is dropped before the result is handed back; when it fails
    the cache is left alone and the original error propagates.
    """

    def __init__(
        self,
        builder: Any,
        *,
        table: str,
        operation: str,
        cache: CacheStore,
        instrumentation: Instrumentation,
    ) -> None:
        if operation not in MUTATION_OPERATIONS:
            raise ValueError(f"Unsupported mutation operation: {operation}")
        self._builder = builder
        self.table = table
        self.operation = operation
        self._cache = cache
        self._instrumentation = instrumentation
        self._resolution = None

    def _wrap(self, builder: Any) -> "MutationQuery":
        return MutationQuery(
            builder,
            table=self.table,
            operation=self.operation,
            cache=self._cache,
            instrumentation=self._instrumentation,
        )

    async def _resolve(self) -> Any:
        instr = self._instrumentation
        site = CallSite(
            kind=CallKind.MUTATION,
            name=f"{self.operation}: {self.table}",
            table=self.table,
            operation=self.operation,
        )
        span = instr.start_span(
            site.name, {"db.table": self.table, "db.operation": self.operation}, op="db.mutation"
        )
        try:
            result = await instr.measure(site, span, self._builder.execute)
            removed = self._cache.invalidate_by_prefix(self.table)
            span.set_attribute("cache.invalidated", removed)
            return result
        finally:
            span.end()


class TableQuery:
    """Entry point returned by DataClient.from_(table); starts a read or write chain."""

    def __init__(
        self,
        table: str,
        request_factory: Callable[[], Any],
        *,
        cache: CacheStore,
        instrumentation: Instrumentation,
        settings: Settings,
    ) -> None:
        self.table = table
        self._request_factory = request_factory
        self._cache = cache
        self._instrumentation = instrumentation
        self._settings = settings

    def select(self, *columns: str, **kwargs: Any) -> SelectQuery:
        builder = self._request_factory().select(*columns, **kwargs)
        return SelectQuery(
            builder,
            table=self.table,
            columns=",".join(columns) or None,
            cache=self._cache,
            instrumentation=self._instrumentation,
            settings=self._settings,
        )

    def _mutation(self, operation: str, builder: Any) -> MutationQuery:
        return MutationQuery(
            builder,
            table=self.table,
            operation=operation,
            cache=self._cache,
            instrumentation=self._instrumentation,
        )

    def insert(self, values: Any, **kwargs: Any) -> MutationQuery:
        return self._mutation("insert", self._request_factory().insert(values, **kwargs))

    def update(self, values: Any, **kwargs: Any) -> MutationQuery:
        return self._mutation("update", self._request_factory().update(values, **kwargs))

    def upsert(self, values: Any, **kwargs: Any) -> MutationQuery:
        return self._mutation("upsert", self._request_factory().upsert(values, **kwargs))

    def delete(self, **kwargs: Any) -> MutationQuery:
        return self._mutation("delete", self._request_factory().delete(**kwargs))
