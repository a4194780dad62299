"""Environment-driven settings for flowspine.

All values can be overridden with ``FLOWSPINE_``-prefixed environment
variables or a ``.env`` file::

    FLOWSPINE_DATABASE_PATH=/var/lib/flowspine/flowspine.db
    FLOWSPINE_SCHEDULER_INTERVAL_SECONDS=120
    FLOWSPINE_RETRY_BACKOFF=linear

Settings are loaded once at the composition root (CLI entry point, API
factory) and passed down explicitly.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlowSettings(BaseSettings):
    """Settings for the workflow engine, scheduler, and outer surfaces.

    Order of precedence (highest → lowest):
        1. Environment variables (``FLOWSPINE_LOG_LEVEL``, etc.)
        2. ``.env`` file
        3. Defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOWSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────────────
    database_path: str = Field(default="flowspine.db", description="SQLite file (or :memory:)")

    # ── Observability ────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Structlog log level")
    log_json: bool | None = Field(default=None, description="JSON logs; None = auto-detect tty")

    # ── Retry policy defaults ────────────────────────────────────────────
    default_max_retries: int = Field(default=3, ge=0)
    retry_backoff: Literal["exponential", "linear", "fixed"] = "exponential"
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=300.0, ge=0)
    retry_jitter: float = Field(default=0.1, ge=0, le=1)

    # ── Deadlines ────────────────────────────────────────────────────────
    step_timeout_seconds: float | None = Field(default=30.0, description="Per-node deadline")
    run_ttl_seconds: float | None = Field(default=None, description="Overall run deadline")

    # ── Scheduler ────────────────────────────────────────────────────────
    scheduler_interval_seconds: float = Field(default=60.0, gt=0)
    scheduler_page_size: int = Field(default=10, ge=1)
    signal_page_size: int = Field(default=20, ge=1)
    sweep_lock_ttl_seconds: int = Field(default=300, ge=1)

    # ── API ──────────────────────────────────────────────────────────────
    host: str = "127.0.0.1"
    port: int = 8400
    api_prefix: str = "/api/v1"

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{value}'")
        return level
