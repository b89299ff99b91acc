"""Settings for the engine, the HTTP service and logging.

Values come from the environment, optionally seeded from
``.env.<APP_ENV>`` at the project root (``development`` when unset).
Each group has its own prefix: ``ENGINE_``, ``APP_`` and ``LOG_``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_ENV = os.getenv("APP_ENV", "development")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILES = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}


def _resolve_env_file(app_env: str) -> Path | None:
    """The env file for ``app_env``, or None when it does not exist."""

    path = PROJECT_ROOT / ENV_FILES.get(app_env, ENV_FILES["development"])
    return path if path.is_file() else None


# Nested settings groups read os.environ only, so the file is loaded into it first
_env_file = _resolve_env_file(APP_ENV)
if _env_file is not None:
    load_dotenv(_env_file, override=True)


def _build_engine_settings() -> "EngineSettings":
    return EngineSettings()


def _build_app_settings() -> "AppSettings":
    return AppSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class EngineSettings(BaseSettings):
    """Rate limiting engine configuration.

    Governs state retention, the background cleanup task, history bounds for
    statistics and how malformed rule conditions are treated.
    """

    history_max_size: int = Field(
        10000,
        description="Maximum number of decisions kept in the in-memory history",
        ge=1,
    )
    retention_seconds: int = Field(
        86400,
        description="Idle time after which per-key state and history entries are dropped",
        ge=1,
    )
    cleanup_interval_seconds: float = Field(
        300.0,
        description="Interval between background cleanup sweeps",
        gt=0,
    )
    cleanup_enabled: bool = Field(
        True,
        description="Run the background cleanup thread while the service is up",
    )
    state_shards: int = Field(
        16,
        description="Number of lock-guarded shards in the in-memory state store",
        ge=1,
    )
    malformed_condition_policy: Literal["fail_open", "fail_closed"] = Field(
        "fail_open",
        description=(
            "What to do when a rule condition cannot be evaluated: skip the rule "
            "(fail_open) or deny the request (fail_closed)"
        ),
    )
    seed_default_rules: bool = Field(
        True,
        description="Register the built-in rule set on startup",
    )
    top_n: int = Field(
        10,
        description="Number of entries in top consumer/endpoint breakdowns",
        ge=1,
    )
    time_series_hours: int = Field(
        24,
        description="Number of hourly buckets in the stats time series",
        ge=1,
    )
    condition_timezone: str | None = Field(
        None,
        description="IANA timezone for time-of-day conditions (server local time when unset)",
    )

    model_config = SettingsConfigDict(
        env_prefix="ENGINE_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """HTTP service configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether admin endpoints require an API key",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Run admin requests through the engine before serving them",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where log records are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        0,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """All settings groups. Invalid values fail at import time."""

    app_env: str = APP_ENV
    engine: EngineSettings = Field(default_factory=_build_engine_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
