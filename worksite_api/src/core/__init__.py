"""
Core application utilities.

This package provides:
- Application-level settings (separate from data client settings)
- Logging configuration with correlation/span context
- The upstream error taxonomy
- FastAPI dependency helpers (DataClient lookup)
"""
