"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load and which error-rendering
  branch the global error handler takes
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

# Query parameters allowed to repeat as arrays (filterable tour fields).
# Every other repeated query key collapses to its last value.
PARAMETER_WHITELIST: tuple[str, ...] = (
    "duration",
    "ratingsQuantity",
    "ratingsAverage",
    "maxGroupSize",
    "difficulty",
    "price",
)

DEFAULT_RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again in an hour!"

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


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build log settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


def parse_csv(value: str | None) -> tuple[str, ...]:
    """Split a comma-separated setting into trimmed, non-empty items.

    Examples:
        >>> parse_csv("duration, price ,")
        ('duration', 'price')
        >>> parse_csv(None)
        ()
    """
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


class AppSettings(BaseSettings):
    """Request pipeline configuration."""

    body_limit_bytes: int = Field(
        10 * 1024,
        description="Maximum accepted JSON body size in bytes",
        ge=1,
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-client rate limiting on the API prefix",
    )
    rate_limit_max: int = Field(
        100,
        description="Maximum number of requests allowed per window (per client)",
        ge=1,
    )
    rate_limit_window_ms: int = Field(
        60 * 60 * 1000,
        description="Rate limit window size in milliseconds",
        ge=1,
    )
    rate_limit_message: str = Field(
        DEFAULT_RATE_LIMIT_MESSAGE,
        description="Message sent to clients that exceeded the limit",
    )
    rate_limit_prefix: str = Field(
        "/api",
        description="Path prefix the rate limiter applies to",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    trust_proxy: bool = Field(
        False,
        description="Use the first X-Forwarded-For hop as the client address",
    )

    public_dir: str = Field(
        str(PROJECT_ROOT / "public"),
        description="Directory served for non-API paths",
    )
    parameter_whitelist: str = Field(
        ",".join(PARAMETER_WHITELIST),
        description="Comma-separated query parameters allowed to repeat",
    )
    sanitize_replace_with: str | None = Field(
        None,
        description="Replacement for '$' and '.' in keys instead of dropping the key",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    @property
    def whitelisted_params(self) -> frozenset[str]:
        return frozenset(parse_csv(self.parameter_whitelist))

    @property
    def rate_limit_window_seconds(self) -> float:
        return self.rate_limit_window_ms / 1000


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.

    Environments:
    - development: verbose errors (stack traces) and request logging
    - testing: automated tests
    - staging / production: client-safe error messages only
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
