from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field


class CacheStats(BaseModel):
    """Snapshot of the query cache contents."""
    size: int = Field(..., ge=0, description="Number of entries currently held (expired ones included until read)")
    entries: List[str] = Field(default_factory=list, description="Cache keys currently held")


class MetricTotals(BaseModel):
    """Aggregated values for one named metric."""
    count: int = Field(0, ge=0, description="Number of observations")
    total: float = Field(0.0, description="Sum of observed values (milliseconds for timings)")


class MetricsSnapshot(BaseModel):
    """Process-wide metric totals keyed by metric name."""
    metrics: Dict[str, MetricTotals] = Field(default_factory=dict)
