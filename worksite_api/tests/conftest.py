"""Shared fixtures: an in-memory stand-in for the async Supabase client, a controllable clock and a recording sink."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from src.db.cache import CacheStore
from src.db.client import DataClient
from src.db.config import Settings
from src.db.metrics import MetricsRecorder


class FakeClock:
    """Monotonic clock under test control (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    """Shape of postgrest's APIResponse as far as the data layer cares."""

    def __init__(self, data: Any, count: Optional[int] = None) -> None:
        self.data = data
        self.count = count


class FakeBuilder:
    def __init__(self, backend: "FakeBackend", table: str, operation: str, payload: Any = None,
                 columns: Tuple[str, ...] = ()) -> None:
        self.backend = backend
        self.table = table
        self.operation = operation
        self.payload = payload
        self.columns = columns
        self.calls: List[Tuple[str, tuple, dict]] = []

    def _record(self, name: str, *args: Any, **kwargs: Any) -> "FakeBuilder":
        self.calls.append((name, args, kwargs))
        return self

    def eq(self, column, value):
        return self._record("eq", column, value)

    def neq(self, column, value):
        return self._record("neq", column, value)

    def gte(self, column, value):
        return self._record("gte", column, value)

    def in_(self, column, values):
        return self._record("in_", column, values)

    def order(self, column, desc=False, **kwargs):
        return self._record("order", column, desc=desc, **kwargs)

    def limit(self, size, **kwargs):
        return self._record("limit", size, **kwargs)

    def single(self):
        return self._record("single")

    async def execute(self) -> FakeResponse:
        return await self.backend.run(self)


class FakeTable:
    def __init__(self, backend: "FakeBackend", table: str) -> None:
        self.backend = backend
        self.table = table

    def select(self, *columns: str, **kwargs: Any) -> FakeBuilder:
        return FakeBuilder(self.backend, self.table, "select", columns=columns)

    def insert(self, values: Any, **kwargs: Any) -> FakeBuilder:
        return FakeBuilder(self.backend, self.table, "insert", payload=values)

    def update(self, values: Any, **kwargs: Any) -> FakeBuilder:
        return FakeBuilder(self.backend, self.table, "update", payload=values)

    def upsert(self, values: Any, **kwargs: Any) -> FakeBuilder:
        return FakeBuilder(self.backend, self.table, "upsert", payload=values)

    def delete(self, **kwargs: Any) -> FakeBuilder:
        return FakeBuilder(self.backend, self.table, "delete")


class FakeBackend:
    """
    Table rows plus knobs for latency (advances the fake clock), blocking
    (an asyncio.Event gate) and injected errors per (table, operation).
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.rows: Dict[str, List[dict]] = {}
        self.executed: List[FakeBuilder] = []
        self.errors: Dict[Tuple[str, str], BaseException] = {}
        self.delay = 0.0
        self.gate: Optional[asyncio.Event] = None

    def count(self, table: str, operation: str) -> int:
        return sum(1 for b in self.executed if b.table == table and b.operation == operation)

    @staticmethod
    def _matches(row: dict, builder: FakeBuilder) -> bool:
        for name, args, _ in builder.calls:
            if name == "eq" and row.get(args[0]) != args[1]:
                return False
            if name == "in_" and row.get(args[0]) not in args[1]:
                return False
        return True

    async def run(self, builder: FakeBuilder) -> FakeResponse:
        self.executed.append(builder)
        if self.delay:
            self.clock.advance(self.delay)
        if self.gate is not None:
            await self.gate.wait()
        error = self.errors.get((builder.table, builder.operation))
        if error is not None:
            raise error

        rows = self.rows.setdefault(builder.table, [])
        if builder.operation == "select":
            data = [dict(r) for r in rows if self._matches(r, builder)]
            if any(name == "single" for name, _, _ in builder.calls):
                return FakeResponse(data[0] if data else None)
            return FakeResponse(data)
        if builder.operation in ("insert", "upsert"):
            new = builder.payload if isinstance(builder.payload, list) else [builder.payload]
            rows.extend(dict(r) for r in new)
            return FakeResponse([dict(r) for r in new])
        if builder.operation == "update":
            changed = []
            for r in rows:
                if self._matches(r, builder):
                    r.update(builder.payload)
                    changed.append(dict(r))
            return FakeResponse(changed)
        kept = [r for r in rows if not self._matches(r, builder)]
        removed = [r for r in rows if self._matches(r, builder)]
        self.rows[builder.table] = kept
        return FakeResponse(removed)


class FakeAuth:
    def __init__(self) -> None:
        self.calls: List[str] = []
        self.error: Optional[BaseException] = None
        self.subscription = object()

    async def _answer(self, name: str, value: Any) -> Any:
        self.calls.append(name)
        if self.error is not None:
            raise self.error
        return value

    async def sign_in_with_password(self, credentials):
        return await self._answer("sign_in_with_password", {"user": {"email": credentials["email"]}})

    async def sign_up(self, credentials):
        return await self._answer("sign_up", {"user": {"email": credentials["email"]}})

    async def sign_out(self, *args, **kwargs):
        return await self._answer("sign_out", None)

    async def get_session(self):
        return await self._answer("get_session", {"access_token": "token"})

    async def get_user(self, jwt=None):
        return await self._answer("get_user", {"user": {"id": "u-1"}, "jwt": jwt})

    async def refresh_session(self, refresh_token=None):
        return await self._answer("refresh_session", {"refresh_token": refresh_token})

    def on_auth_state_change(self, callback):
        self.calls.append("on_auth_state_change")
        return self.subscription

    async def update_user(self, attributes):
        self.calls.append("update_user")
        return {"user": attributes}


class FakeBucket:
    def __init__(self, name: str, uploads: List[Tuple[str, str, Any]]) -> None:
        self.name = name
        self.uploads = uploads

    async def upload(self, path, file, file_options=None):
        self.uploads.append((self.name, path, file_options))
        return {"Key": f"{self.name}/{path}"}

    async def download(self, path, *args, **kwargs):
        return b"content"

    async def remove(self, paths):
        return [{"name": p} for p in paths]

    def get_public_url(self, path):
        return f"https://files.example.com/{self.name}/{path}"


class FakeStorage:
    def __init__(self) -> None:
        self.uploads: List[Tuple[str, str, Any]] = []

    def from_(self, bucket: str) -> FakeBucket:
        return FakeBucket(bucket, self.uploads)


class FakeSupabase:
    def __init__(self, backend: FakeBackend) -> None:
        self.backend = backend
        self.auth = FakeAuth()
        self.storage = FakeStorage()

    def from_(self, table: str) -> FakeTable:
        return FakeTable(self.backend, table)

    table = from_


class RecordingSink:
    def __init__(self) -> None:
        self.spans: list = []
        self.metrics: list = []
        self.messages: list = []
        self.exceptions: list = []

    def record_span(self, span):
        self.spans.append(span)

    def record_metric(self, metric):
        self.metrics.append(metric)

    def capture_message(self, message, level, context):
        self.messages.append((message, level, dict(context)))

    def capture_exception(self, error, context):
        self.exceptions.append((error, dict(context)))

    def warnings(self) -> list:
        return [m for m in self.messages if m[1] == "warning"]


class ExplodingSink:
    def record_span(self, span):
        raise RuntimeError("sink down")

    def record_metric(self, metric):
        raise RuntimeError("sink down")

    def capture_message(self, message, level, context):
        raise RuntimeError("sink down")

    def capture_exception(self, error, context):
        raise RuntimeError("sink down")


def make_settings(**overrides: Any) -> Settings:
    values = {"SUPABASE_URL": "http://localhost:54321", "SUPABASE_KEY": "test-key"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock: FakeClock) -> FakeBackend:
    return FakeBackend(clock)


@pytest.fixture
def raw_client(backend: FakeBackend) -> FakeSupabase:
    return FakeSupabase(backend)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_client(raw_client: FakeSupabase, sink: RecordingSink, clock: FakeClock):
    """Factory building a DataClient over the fake upstream with settings overrides."""

    def _make(sink_override: Any = None, **overrides: Any) -> DataClient:
        return DataClient(
            raw_client,
            make_settings(**overrides),
            cache=CacheStore(clock=clock),
            sink=sink_override or sink,
            metrics=MetricsRecorder(),
            clock=clock,
        )

    return _make


@pytest.fixture
def client(make_client) -> DataClient:
    return make_client()


@pytest.fixture
def exploding_sink() -> ExplodingSink:
    return ExplodingSink()
