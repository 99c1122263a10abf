"""
Application configuration via Pydantic Settings.

All values are sourced from environment variables or an .env file.
No defaults expose insecure behaviour in production.
"""

from __future__ import annotations

import hashlib
from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import (
    AnyHttpUrl,
    BeforeValidator,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Deployment environment identifiers."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class LogLevel(StrEnum):
    """Structured log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _parse_cors_origins(value: str | list[str]) -> list[str]:
    """Accept comma-separated string or list for CORS origins."""
    if isinstance(value, list):
        return value
    return [origin.strip() for origin in value.split(",") if origin.strip()]


class Settings(BaseSettings):
    """
    Centralised, type-validated application configuration.

    Reads from environment variables with an optional .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="forbid",
    )

    # ── Application ────────────────────────────────────────────────────── #
    app_name: str = Field(default="Custody Ledger", description="Human-readable application name")
    app_version: str = Field(default="1.0.0", description="Semantic version string")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development|testing|production)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode. Must be False in production.",
    )

    # ── Server ─────────────────────────────────────────────────────────── #
    host: str = Field(default="127.0.0.1", description="Bind host. Default local-only.")
    port: int = Field(default=8000, ge=1024, le=65535, description="Bind port")
    workers: int = Field(default=1, ge=1, le=16, description="Uvicorn worker processes")
    reload: bool = Field(default=False, description="Auto-reload on code change (dev only)")

    # ── CORS ───────────────────────────────────────────────────────────── #
    cors_origins: Annotated[list[str], BeforeValidator(_parse_cors_origins)] = Field(
        default=["http://localhost:5173"],
        description="Comma-separated list of allowed CORS origins",
    )

    # ── Database ───────────────────────────────────────────────────────── #
    database_url: str = Field(
        default="sqlite+aiosqlite:///./custody.db",
        description=(
            "Async SQLAlchemy connection string. "
            "Use sqlite+aiosqlite:// for local or postgresql+asyncpg:// for production."
        ),
    )
    db_pool_size: int = Field(default=5, ge=1, le=50, description="Connection pool size")
    db_max_overflow: int = Field(default=10, ge=0, le=100, description="Pool max overflow")
    db_echo: bool = Field(default=False, description="Log all SQL statements (debug only)")
    run_migrations_on_startup: bool = Field(
        default=True,
        description="Apply Alembic migrations at startup; otherwise create tables directly",
    )

    # ── Content Storage ────────────────────────────────────────────────── #
    storage_dir: Path = Field(
        default=Path("./secure_storage"),
        description="Directory holding uploaded document bytes",
    )
    max_upload_size_mb: int = Field(
        default=50,
        ge=1,
        le=1024,
        description="Maximum upload file size in MB",
    )

    # ── Fingerprinting ─────────────────────────────────────────────────── #
    fingerprint_algorithm: str = Field(
        default="sha256",
        description="hashlib algorithm name. Fixed for the lifetime of a registry.",
    )
    fingerprint_chunk_size: int = Field(
        default=1024 * 1024,
        ge=4096,
        le=64 * 1024 * 1024,
        description="Bytes read per chunk while fingerprinting",
    )
    content_read_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Upper bound on reading a stored document during verification",
    )

    # ── Clearance Authority ────────────────────────────────────────────── #
    clearance_authority_url: AnyHttpUrl | None = Field(
        default=None,
        description="Base URL of the external clearance authority. Unset uses clearance_table.",
    )
    clearance_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="HTTP timeout for clearance authority calls (seconds)",
    )
    clearance_max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Maximum retry attempts on transient authority failures",
    )
    clearance_retry_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        le=30,
        description="Base delay for exponential back-off between retries",
    )
    clearance_circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Consecutive failures before circuit opens",
    )
    clearance_circuit_breaker_timeout_seconds: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Seconds to wait before testing circuit again",
    )
    clearance_table: dict[str, str] = Field(
        default_factory=dict,
        description="Static identity -> clearance level table used without an authority URL",
    )

    # ── Rate Limiting ──────────────────────────────────────────────────── #
    rate_limit_default: str = Field(
        default="100/minute",
        description="Default rate limit string (slowapi format)",
    )

    # ── Logging ────────────────────────────────────────────────────────── #
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Minimum log level")
    log_json: bool = Field(default=True, description="Emit logs as JSON (False for dev console)")
    log_file: Path | None = Field(default=None, description="Optional log file path")

    # ── Validators ─────────────────────────────────────────────────────── #

    @field_validator("fingerprint_algorithm")
    @classmethod
    def algorithm_must_be_available(cls, v: str) -> str:
        name = v.lower()
        if name not in hashlib.algorithms_available:
            raise ValueError(f"fingerprint_algorithm {v!r} is not provided by hashlib")
        if name.startswith("shake_"):
            raise ValueError("variable-length digests are not supported")
        return name

    @model_validator(mode="after")
    def production_safety_checks(self) -> Settings:
        if self.environment == Environment.PRODUCTION:
            if self.debug:
                raise ValueError("debug must be False in production")
            if self.reload:
                raise ValueError("reload must be False in production")
            if self.db_echo:
                raise ValueError("db_echo must be False in production")
        return self

    @model_validator(mode="after")
    def ensure_directories_exist(self) -> Settings:
        """Create storage directories if they do not exist."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the cached Settings singleton.

    Use dependency injection in FastAPI routes:
        settings: Settings = Depends(get_settings)
    """
    return Settings()
