from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

from src.schemas.cache import MetricTotals, MetricsSnapshot

logger = logging.getLogger(__name__)

# Metric names recorded by the data layer
QUERY_TIME = "query_time"
MUTATION_TIME = "mutation_time"
CACHE_HIT = "cache_hit"
CACHE_MISS = "cache_miss"
QUERY_ERROR = "query_error"
MUTATION_ERROR = "mutation_error"
API_CALL_TIME = "api_call_time"
API_CALL_ERROR = "api_call_error"

METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST

# Millisecond buckets, centred on the default slow-call threshold
_DURATION_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)


class MetricsRecorder:
    """
    Named counters and timers for the data layer.

    Every value goes to a Prometheus metric in this recorder's own registry (so
    several recorders, e.g. one per test, never collide on registration) and to
    an in-process running total that `snapshot()` reports.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "worksite") -> None:
        self.registry = registry or CollectorRegistry()
        self._lock = threading.Lock()
        self._totals: Dict[str, Tuple[int, float]] = {}

        self._timers: Dict[str, Histogram] = {
            QUERY_TIME: Histogram(
                "query_duration_ms", "Duration of select calls that reached the data API",
                ["table", "operation"], namespace=namespace,
                buckets=_DURATION_BUCKETS_MS, registry=self.registry,
            ),
            MUTATION_TIME: Histogram(
                "mutation_duration_ms", "Duration of insert/update/delete/upsert calls",
                ["table", "operation"], namespace=namespace,
                buckets=_DURATION_BUCKETS_MS, registry=self.registry,
            ),
            API_CALL_TIME: Histogram(
                "api_call_duration_ms", "Duration of auth and storage calls",
                ["call"], namespace=namespace,
                buckets=_DURATION_BUCKETS_MS, registry=self.registry,
            ),
        }
        self._counters: Dict[str, Counter] = {
            CACHE_HIT: Counter(
                "cache_hits", "Select calls answered from the query cache",
                ["table"], namespace=namespace, registry=self.registry,
            ),
            CACHE_MISS: Counter(
                "cache_misses", "Select calls fetched from the data API and cached",
                ["table"], namespace=namespace, registry=self.registry,
            ),
            QUERY_ERROR: Counter(
                "query_errors", "Select calls that raised",
                ["table", "operation", "category"], namespace=namespace, registry=self.registry,
            ),
            MUTATION_ERROR: Counter(
                "mutation_errors", "Mutation calls that raised",
                ["table", "operation", "category"], namespace=namespace, registry=self.registry,
            ),
            API_CALL_ERROR: Counter(
                "api_call_errors", "Auth and storage calls that raised",
                ["call", "category"], namespace=namespace, registry=self.registry,
            ),
        }

    def _add(self, name: str, value: float) -> None:
        with self._lock:
            count, total = self._totals.get(name, (0, 0.0))
            self._totals[name] = (count + 1, total + value)

    # PUBLIC_INTERFACE
    def observe(self, name: str, value: float, **labels: str) -> None:
        """Record a duration (milliseconds) for a timer metric."""
        self._timers[name].labels(**labels).observe(value)
        self._add(name, value)

    # PUBLIC_INTERFACE
    def increment(self, name: str, amount: float = 1.0, **labels: str) -> None:
        """Increment a counter metric."""
        self._counters[name].labels(**labels).inc(amount)
        self._add(name, amount)

    # PUBLIC_INTERFACE
    def count(self, name: str) -> int:
        """Return how many times the named metric has been recorded."""
        with self._lock:
            return self._totals.get(name, (0, 0.0))[0]

    # PUBLIC_INTERFACE
    def snapshot(self) -> MetricsSnapshot:
        """Return running totals for every metric recorded so far."""
        with self._lock:
            items = dict(self._totals)
        return MetricsSnapshot(
            metrics={name: MetricTotals(count=c, total=t) for name, (c, t) in items.items()}
        )

    # PUBLIC_INTERFACE
    def exposition(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)
