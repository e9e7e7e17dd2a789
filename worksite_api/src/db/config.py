from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for the data client and its caching/instrumentation middleware.

    Reads from environment variables (or .env via pydantic-settings):
      - SUPABASE_URL
      - SUPABASE_KEY
      - ENABLE_QUERY_CACHE
      - ENABLE_PERFORMANCE_MONITORING
      - DEFAULT_CACHE_TTL_SECONDS
      - SLOW_QUERY_THRESHOLD_MS

    Instances are frozen: the middleware configuration cannot change after the
    DataClient has been built with it.
    """

    # Upstream data API
    SUPABASE_URL: Optional[str] = Field(
        default=None, description="Base URL of the Supabase project."
    )
    SUPABASE_KEY: Optional[str] = Field(
        default=None, description="API key (anon or service role) for the project."
    )

    # Middleware behavior
    ENABLE_QUERY_CACHE: bool = Field(
        default=True, description="Cache successful select results in process memory."
    )
    ENABLE_PERFORMANCE_MONITORING: bool = Field(
        default=True, description="Emit spans, metrics and slow-call warnings."
    )
    DEFAULT_CACHE_TTL_SECONDS: float = Field(
        default=300.0, gt=0, description="Lifetime of a cached select result (default 5 minutes)."
    )
    SLOW_QUERY_THRESHOLD_MS: float = Field(
        default=1000.0, ge=0, description="Calls slower than this emit a warning (default 1000ms)."
    )

    # General environment
    ENVIRONMENT: Optional[str] = Field(
        default=None, description="Environment label (dev/test/prod)"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    @property
    def is_configured(self) -> bool:
        """True when both the project URL and key are present."""
        return bool(self.SUPABASE_URL and self.SUPABASE_KEY)


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return data client settings populated from the environment."""
    return Settings()
