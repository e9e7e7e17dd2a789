"""
Public Pydantic schemas used by FastAPI routes, the data layer, and tests.

Includes the standard message/error envelopes and the cache and metrics
snapshots reported by the DataClient.
"""

from .cache import CacheStats, MetricsSnapshot  # noqa: F401
from .common import MessageResponse  # noqa: F401
