"""
Configuration and settings for the survey settlement backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Database (Postgres in production, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="SURVEY_USE_IN_MEMORY_BACKENDS"
    )

    # Refund payout queue (Redis)
    redis_url: Optional[str] = Field(default=None, validation_alias="REDIS_URL")
    redis_queue_key: str = Field(
        default="survey:payouts", validation_alias="REDIS_QUEUE_KEY"
    )

    # Shared secret for admin routes; unset leaves them open for local runs.
    admin_token: Optional[str] = Field(default=None, validation_alias="ADMIN_TOKEN")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
