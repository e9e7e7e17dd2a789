from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Tuple, TypeVar

from src.core.errors import ErrorCategory, attach_call_context, classify_error
from src.core.logging import span_name_var
from src.db.config import Settings
from src.db.metrics import (
    API_CALL_ERROR,
    API_CALL_TIME,
    CACHE_HIT,
    CACHE_MISS,
    MUTATION_ERROR,
    MUTATION_TIME,
    QUERY_ERROR,
    QUERY_TIME,
    MetricsRecorder,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SpanStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    CANCELLED = "cancelled"


class Outcome(str, Enum):
    HIT = "hit"
    MISS = "miss"
    OK = "ok"
    ERROR = "error"
    CANCELLED = "cancelled"


class CallKind(str, Enum):
    QUERY = "query"
    MUTATION = "mutation"
    API = "api"


@dataclass(frozen=True)
class CallSite:
    """Identifies what is being measured: a table read, a table write, or an auth/storage call."""
    kind: CallKind
    name: str
    table: Optional[str] = None
    operation: Optional[str] = None
    columns: Optional[str] = None

    def context(self, duration_ms: float, category: Optional[ErrorCategory] = None) -> Dict[str, Any]:
        ctx: Dict[str, Any] = {
            "table": self.table,
            "operation": self.operation or self.name,
            "columns": self.columns,
            "duration": duration_ms,
        }
        if category is not None:
            ctx["category"] = category.value
        return ctx


@dataclass(frozen=True)
class CallMetric:
    """One measured call, handed to the sink and not kept by the data layer."""
    name: str
    table: Optional[str]
    operation: Optional[str]
    duration_ms: float
    outcome: Outcome


@dataclass
class Span:
    """A traced unit of work. Finished spans are handed to the sink by end()."""
    name: str
    op: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    measurements: Dict[str, Tuple[float, str]] = field(default_factory=dict)
    status: SpanStatus = SpanStatus.OK
    ended: bool = False
    _on_end: Optional[Callable[["Span"], None]] = field(default=None, repr=False)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_status(self, status: SpanStatus) -> None:
        self.status = status

    def record_measurement(self, name: str, value: float, unit: str = "millisecond") -> None:
        self.measurements[name] = (value, unit)

    def end(self) -> None:
        if self.ended:
            return
        self.ended = True
        if self._on_end is not None:
            self._on_end(self)


class ObservabilitySink(Protocol):
    """Destination for spans, call metrics, warnings and captured exceptions."""

    def record_span(self, span: Span) -> None: ...

    def record_metric(self, metric: CallMetric) -> None: ...

    def capture_message(self, message: str, level: str, context: Mapping[str, Any]) -> None: ...

    def capture_exception(self, error: BaseException, context: Mapping[str, Any]) -> None: ...


_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LoggingSink:
    """Default sink: writes everything to the standard logging tree."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logging.getLogger("src.db.observability")

    def record_span(self, span: Span) -> None:
        self._log.debug(
            "span name=%r op=%s status=%s attributes=%s measurements=%s",
            span.name, span.op, span.status.value, span.attributes, span.measurements,
        )

    def record_metric(self, metric: CallMetric) -> None:
        self._log.debug(
            "metric name=%s table=%s operation=%s duration_ms=%.2f outcome=%s",
            metric.name, metric.table, metric.operation, metric.duration_ms, metric.outcome.value,
        )

    def capture_message(self, message: str, level: str, context: Mapping[str, Any]) -> None:
        self._log.log(_LEVELS.get(level, logging.WARNING), "%s context=%s", message, dict(context))

    def capture_exception(self, error: BaseException, context: Mapping[str, Any]) -> None:
        self._log.warning("Data call failed: %s: %s context=%s", type(error).__name__, error, dict(context))


class Instrumentation:
    """
    Times data-layer calls and reports them as spans, metrics and warnings.

    Nothing here may change a call's result or error: sink and metric failures
    are logged at DEBUG and dropped, and exceptions from the measured call are
    re-raised as the same object after `call_context` is attached to them.
    """

    def __init__(
        self,
        settings: Settings,
        sink: Optional[ObservabilitySink] = None,
        metrics: Optional[MetricsRecorder] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.enabled = settings.ENABLE_PERFORMANCE_MONITORING
        self.slow_threshold_ms = settings.SLOW_QUERY_THRESHOLD_MS
        self.sink: ObservabilitySink = sink or LoggingSink()
        self.metrics = metrics or MetricsRecorder()
        self._clock = clock

    def _safe(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.debug("Observability sink call %s failed", getattr(fn, "__name__", fn), exc_info=True)

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000.0

    # PUBLIC_INTERFACE
    def start_span(self, name: str, attributes: Optional[Mapping[str, Any]] = None, op: str = "db.query") -> Span:
        """Open a span; it is reported to the sink when ended (only while monitoring is enabled)."""
        on_end = self._finish_span if self.enabled else None
        return Span(name=name, op=op, attributes=dict(attributes or {}), _on_end=on_end)

    def _finish_span(self, span: Span) -> None:
        self._safe(self.sink.record_span, span)

    def _emit_metric(self, site: CallSite, duration_ms: float, outcome: Outcome) -> None:
        metric = CallMetric(
            name=site.name,
            table=site.table,
            operation=site.operation,
            duration_ms=duration_ms,
            outcome=outcome,
        )
        self._safe(self.sink.record_metric, metric)

    def _record_timing(self, site: CallSite, duration_ms: float) -> None:
        if site.kind is CallKind.QUERY:
            self.metrics.observe(QUERY_TIME, duration_ms, table=site.table or "", operation=site.operation or "")
        elif site.kind is CallKind.MUTATION:
            self.metrics.observe(MUTATION_TIME, duration_ms, table=site.table or "", operation=site.operation or "")
        else:
            self.metrics.observe(API_CALL_TIME, duration_ms, call=site.name)

    def _record_error(self, site: CallSite, category: ErrorCategory) -> None:
        if site.kind is CallKind.QUERY:
            self.metrics.increment(
                QUERY_ERROR, table=site.table or "", operation=site.operation or "", category=category.value
            )
        elif site.kind is CallKind.MUTATION:
            self.metrics.increment(
                MUTATION_ERROR, table=site.table or "", operation=site.operation or "", category=category.value
            )
        else:
            self.metrics.increment(API_CALL_ERROR, call=site.name, category=category.value)

    # PUBLIC_INTERFACE
    def check_slow(self, site: CallSite, duration_ms: float) -> bool:
        """Emit one warning when duration_ms exceeds the slow-call threshold. Returns True if it did."""
        if duration_ms <= self.slow_threshold_ms:
            return False
        subject = site.table or site.name
        self._safe(
            self.sink.capture_message,
            f"Slow {site.operation or site.name}: {subject} took {duration_ms:.0f}ms",
            "warning",
            {"operation": site.operation or site.name, "table": site.table, "duration": duration_ms},
        )
        return True

    # PUBLIC_INTERFACE
    def record_cache_hit(self, site: CallSite, span: Optional[Span] = None) -> None:
        """Count a read answered from cache."""
        if not self.enabled:
            return
        if span is not None:
            span.set_attribute("cache.hit", True)
        self._safe(self.metrics.increment, CACHE_HIT, table=site.table or "")
        self._emit_metric(site, 0.0, Outcome.HIT)

    # PUBLIC_INTERFACE
    def record_cache_miss(self, site: CallSite, span: Optional[Span] = None) -> None:
        """Count a read that had to be fetched from the data API."""
        if not self.enabled:
            return
        if span is not None:
            span.set_attribute("cache.hit", False)
        self._safe(self.metrics.increment, CACHE_MISS, table=site.table or "")

    # PUBLIC_INTERFACE
    async def measure(
        self,
        site: CallSite,
        span: Span,
        call: Callable[[], Awaitable[T]],
        outcome: Outcome = Outcome.OK,
    ) -> T:
        """
        Await call() and report its duration.

        Parameters:
            site: what is being called (drives metric names and labels)
            span: span receiving the duration measurement and final status
            call: zero-argument callable returning the awaitable to run
            outcome: CallMetric outcome reported on success
        Returns:
            Whatever call() resolved to, unchanged.
        Raises:
            Whatever call() raised, unchanged (with `call_context` attached).
        """
        if not self.enabled:
            return await call()

        measurement = f"db.{site.kind.value}.duration"
        token = span_name_var.set(span.name)
        start = self._clock()
        try:
            result = await call()
        except asyncio.CancelledError:
            duration = self._elapsed_ms(start)
            self._safe(span.record_measurement, measurement, duration)
            span.set_status(SpanStatus.CANCELLED)
            self._emit_metric(site, duration, Outcome.CANCELLED)
            raise
        except Exception as exc:
            duration = self._elapsed_ms(start)
            self._safe(span.record_measurement, measurement, duration)
            span.set_status(SpanStatus.ERROR)
            category = classify_error(exc)
            span.set_attribute("error.category", category.value)
            context = site.context(duration, category)
            self._safe(attach_call_context, exc, context)
            self._safe(self.sink.capture_exception, exc, context)
            self._safe(self._record_error, site, category)
            self.check_slow(site, duration)
            self._emit_metric(site, duration, Outcome.ERROR)
            raise
        finally:
            span_name_var.reset(token)

        duration = self._elapsed_ms(start)
        self._safe(span.record_measurement, measurement, duration)
        self._safe(self._record_timing, site, duration)
        self.check_slow(site, duration)
        self._emit_metric(site, duration, outcome)
        return result

    # PUBLIC_INTERFACE
    async def track_call(self, name: str, call: Callable[[], Awaitable[T]], op: str = "api.call") -> T:
        """Measure an uncached auth/storage call under its own span."""
        site = CallSite(kind=CallKind.API, name=name, operation=name)
        span = self.start_span(name, {"call.name": name}, op=op)
        try:
            return await self.measure(site, span, call)
        finally:
            span.end()
