"""
API route modules for operating the data layer.

This package contains subrouters for:
- Cache: cache statistics, cache invalidation, metrics

Routers are included from src.api.main (under the /api/v1 prefix).
"""
