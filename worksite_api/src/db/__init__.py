"""
Data access package: the caching, instrumented facade over the Supabase client
together with its configuration, cache store, metrics and instrumentation.
"""

from .cache import CacheMiss, CacheStore, make_cache_key
from .client import DataClient, create_data_client
from .config import Settings, get_settings
from .instrumentation import CallMetric, Instrumentation, LoggingSink, ObservabilitySink, Span
from .metrics import MetricsRecorder

__all__ = [
    "CacheMiss",
    "CacheStore",
    "make_cache_key",
    "DataClient",
    "create_data_client",
    "Settings",
    "get_settings",
    "CallMetric",
    "Instrumentation",
    "LoggingSink",
    "ObservabilitySink",
    "Span",
    "MetricsRecorder",
]
