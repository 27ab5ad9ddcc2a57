"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    service_name: str = Field(
        "ourstreet-api",
        description="Service name reported in logs and OpenAPI metadata",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field(
        "json",
        description="Log format: 'json' (structured) or 'plain'",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
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
        description="Header used to accept and propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate governor switches.

    Per-endpoint ceilings live in ``ourstreet.core.rate_limit_policies``;
    these settings only control whether limits apply and how they are
    reported.
    """

    enabled: bool = Field(
        True,
        description="Enable per-identity, per-route rate limiting",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    sweep_interval_seconds: float = Field(
        300.0,
        description="Interval between sweeps that drop expired rate windows",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class AuditSettings(BaseSettings):
    """Audit store configuration."""

    backend: str = Field(
        "file",
        description="Audit store backend: 'file' (JSON Lines) or 'memory'",
    )
    file_path: str = Field(
        "var/audit/audit-log.jsonl",
        description="Path of the append-only audit log when backend is 'file'",
    )
    write_timeout_seconds: float = Field(
        2.0,
        description="Maximum time to wait for the store lock before abandoning a write",
        gt=0,
    )
    read_timeout_seconds: float = Field(
        10.0,
        description="Maximum time an admin query may spend reading the store",
        gt=0,
    )
    max_in_memory: int = Field(
        10000,
        description="Maximum number of events kept by the in-memory backend",
        ge=1,
    )
    retention_days: int = Field(
        90,
        description="Default age in days after which events may be pruned",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="AUDIT_",
        case_sensitive=False,
    )


class AuthSettings(BaseSettings):
    """Bearer token configuration."""

    jwt_secret: str = Field(
        "change-me",
        description="Secret used to sign and verify bearer tokens",
    )
    jwt_algorithm: str = Field(
        "HS256",
        description="JWT signing algorithm",
    )
    token_expires_minutes: int = Field(
        60 * 24 * 7,
        description="Lifetime of issued tokens in minutes",
        ge=1,
    )
    bcrypt_rounds: int = Field(
        12,
        description="bcrypt work factor for stored password hashes",
        ge=4,
        le=31,
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
