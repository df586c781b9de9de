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

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_upstream_settings() -> "UpstreamSettings":
    return UpstreamSettings()


def _build_app_settings() -> "AppSettings":
    return AppSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class UpstreamSettings(BaseSettings):
    """Price provider configuration.

    Only CoinGecko is implemented; the provider name is validated by the
    pricing client factory.
    """

    provider: str = Field(
        "coingecko",
        description="Price provider name",
    )
    base_url: str = Field(
        "https://api.coingecko.com/api/v3",
        description="Base URL of the provider REST API",
    )
    vs_currency: str = Field(
        "usd",
        description="Quote currency requested from the provider",
    )
    timeout_seconds: float = Field(
        10.0,
        description="Timeout for single price and metadata calls",
        gt=0,
    )
    bulk_timeout_seconds: float = Field(
        15.0,
        description="Timeout for the combined bulk price call",
        gt=0,
    )
    metadata_delay_seconds: float = Field(
        0.2,
        description="Pause between the price call and the metadata call (single)",
        ge=0,
    )
    bulk_metadata_delay_seconds: float = Field(
        0.3,
        description="Pause between the bulk price call and the metadata calls",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="UPSTREAM_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    host: str = Field(
        "0.0.0.0",
        description="Interface the HTTP server binds to",
    )
    port: int = Field(
        3000,
        description="Port the HTTP server listens on",
    )

    cache_ttl_seconds: float = Field(
        300,
        description="How long a fetched price stays fresh",
        gt=0,
    )
    cache_max_entries: int | None = Field(
        None,
        description="Optional LRU bound on cached prices (unbounded when unset)",
        ge=1,
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-client rate limiting",
    )
    rate_limit_requests: int = Field(
        50,
        description="Maximum number of requests allowed per window (per client)",
        ge=1,
    )
    rate_limit_window_seconds: float = Field(
        60,
        description="Sliding window size in seconds",
        gt=0,
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Use the first X-Forwarded-For address as the client key",
    )

    request_timeout_seconds: float = Field(
        20.0,
        description="Overall budget for fetching prices within one request",
        gt=0,
    )
    cors_allow_origins: str = Field(
        "*",
        description="Comma-separated list of allowed CORS origins",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting is malformed.
    """

    app_env: str = APP_ENV
    upstream: UpstreamSettings = Field(default_factory=_build_upstream_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()


def settings_for(request) -> Settings:
    """Return the settings the request's app was built with.

    ``create_app`` stores its settings on ``app.state``; apps assembled by
    hand fall back to the global ``settings``.
    """
    return getattr(request.app.state, "settings", settings)
