from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from src.core.deps import get_data_client
from src.db.client import DataClient
from src.db.metrics import METRICS_CONTENT_TYPE
from src.schemas.cache import CacheStats, MetricsSnapshot
from src.schemas.common import MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Cache"])


# PUBLIC_INTERFACE
@router.get(
    "/cache/stats",
    response_model=CacheStats,
    summary="Query cache statistics",
    description="Number of cached select results and their keys (table:operation:columns).",
)
def cache_stats(client: DataClient = Depends(get_data_client)) -> CacheStats:
    """Return the DataClient's current cache contents."""
    return client.get_cache_stats()


# PUBLIC_INTERFACE
@router.delete(
    "/cache",
    response_model=MessageResponse,
    summary="Clear query cache",
    description="Drop every cached read, or only those of one table when `table` is given.",
)
def clear_cache(
    table: Optional[str] = Query(None, description="Only clear entries for this table"),
    client: DataClient = Depends(get_data_client),
) -> MessageResponse:
    """
    Clear cached reads.

    Parameters:
        table: optional table name limiting the flush
    Returns:
        MessageResponse with the scope and number of entries removed.
    """
    removed = client.clear_cache(table)
    return MessageResponse(
        message="Cache cleared",
        details={"scope": table or "all", "removed": removed},
    )


# PUBLIC_INTERFACE
@router.get(
    "/metrics/summary",
    response_model=MetricsSnapshot,
    summary="Data layer metric totals",
)
def metrics_summary(client: DataClient = Depends(get_data_client)) -> MetricsSnapshot:
    """Return running counts and totals for each data-layer metric."""
    return client.metrics.snapshot()


# PUBLIC_INTERFACE
@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Prometheus text exposition of the data layer's counters and histograms.",
    response_class=Response,
)
def metrics(client: DataClient = Depends(get_data_client)) -> Response:
    """Serve the DataClient's metrics registry for scraping."""
    return Response(content=client.metrics.exposition(), media_type=METRICS_CONTENT_TYPE)
