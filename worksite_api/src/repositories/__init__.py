"""
Repository layer for data access.

Repositories wrap table access through the shared DataClient facade, so reads
are cached and writes invalidate the table they touch. They expect the client
to be passed in (e.g. via src.core.deps.get_data_client).
"""

from .base import BaseRepository, TableRepository  # noqa: F401
