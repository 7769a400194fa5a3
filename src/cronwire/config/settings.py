"""Pydantic-based settings loaded entirely from environment variables.

All configuration is read from ``.env`` (or real env vars). Every field has
a sensible default so the server starts with no configuration at all.

Usage::

    from cronwire.config import get_settings
    settings = get_settings()
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# ---------------------------------------------------------------------------
# Type alias: env var string "a,b,c" → list[str]
# ---------------------------------------------------------------------------
CsvList = Annotated[list[str], NoDecode]


class Settings(BaseSettings):
    """Central configuration — every field maps to an UPPER_SNAKE env var."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        env_ignore_empty=True,
    )

    # -- General ------------------------------------------------------------
    log_level: str = "INFO"

    # -- HTTP ---------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: CsvList = Field(default_factory=lambda: ["*"])

    # -- Telemetry ----------------------------------------------------------
    telemetry_backend: Literal["redis", "memory"] = "redis"
    redis_host: str = "localhost"
    redis_port: int = 6379
    heartbeat_interval_seconds: float = Field(default=1.0, gt=0)

    # -- Scheduler ----------------------------------------------------------
    scheduler_timezone: str = "UTC"
    scheduler_max_workers: int = Field(default=10, ge=1)
    seed_jobs_enabled: bool = True

    # -- Execution ----------------------------------------------------------
    # When set, the job command is shell-quoted and appended to the wrapper.
    command_wrapper: str = ""
    command_timeout_seconds: float = Field(default=0, ge=0)  # 0 = no timeout
    follow_up_command: str = ""  # empty = no follow-up
    follow_up_delay_seconds: float = Field(default=10, ge=0)

    # -- CSV field parsing --------------------------------------------------
    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_csv(cls, value: object) -> list[str]:
        """Convert comma-separated env string to list."""
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, list):
            return value
        return []


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    return Settings()
