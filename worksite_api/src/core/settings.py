from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    Application-level settings for the FastAPI service.

    This is separate from src.db.config.Settings, which configures the data client.
    """

    # FastAPI metadata
    APP_NAME: str = Field(default="Worksite Data API")
    APP_DESCRIPTION: str = Field(
        default=(
            "Operational API for the worksite data-access layer: health, "
            "query cache inspection and invalidation, and Prometheus metrics."
        )
    )
    APP_VERSION: str = Field(default="0.1.0")

    # CORS
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Comma-separated list or JSON array of allowed origins. Default: *",
    )
    CORS_ALLOW_CREDENTIALS: bool = Field(default=True)

    # Startup behavior
    CONNECT_DATA_CLIENT_ON_STARTUP: bool = Field(
        default=True,
        description="If true, build the DataClient at startup when SUPABASE_URL/SUPABASE_KEY are set.",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Root logging level name")

    # Environment label
    ENVIRONMENT: Optional[str] = Field(
        default=None, description="Environment label (dev/test/prod)"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """
        Accept both JSON array format and comma-separated formats for CORS origins.
        """
        if v is None:
            return ["*"]
        if isinstance(v, str):
            parts = [p.strip() for p in v.split(",") if p.strip()]
            return parts or ["*"]
        if isinstance(v, list):
            return v or ["*"]
        return ["*"]


# PUBLIC_INTERFACE
def get_app_settings() -> AppSettings:
    """Return a new AppSettings instance populated from environment variables."""
    return AppSettings()
