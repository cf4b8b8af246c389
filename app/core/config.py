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
if _env_file and os.getenv("TESTING", "").lower() != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class RateLimitSettings(BaseSettings):
    """Rate limiter budgets, cooldowns and admission filter behavior.

    Variable names carry no prefix so deployments can keep using
    RATE_LIMIT_IP, BLOCK_DURATION_TOKEN, ENABLE_IP_LIMITER and friends.
    """

    rate_limit_ip: int = Field(
        10,
        description="Requests admitted per IP before it is blocked",
        ge=1,
    )
    rate_limit_token: int = Field(
        100,
        description="Requests admitted per API token before it is blocked",
        ge=1,
    )
    block_duration_ip: int = Field(
        300,
        description="Cooldown in seconds applied to an IP over its limit",
        ge=1,
    )
    block_duration_token: int = Field(
        600,
        description="Cooldown in seconds applied to a token over its limit",
        ge=1,
    )
    enable_ip_limiter: bool = Field(
        True,
        description="Enforce the per-IP budget",
    )
    enable_token_limiter: bool = Field(
        True,
        description="Enforce the per-token budget",
    )
    rate_limit_backend: str = Field(
        "memory",
        description="Storage backend: memory or networked (alias: redis)",
    )
    rate_limit_token_header: str = Field(
        "API_KEY",
        description="Request header carrying the API token",
    )
    rate_limit_trust_forwarded_headers: bool = Field(
        True,
        description="Resolve the client IP from X-Forwarded-For / X-Real-IP",
    )
    rate_limit_exempt_paths: str = Field(
        "/health",
        description="Comma-separated paths that bypass the admission filter",
    )
    rate_limit_exempt_path_prefixes: str = Field(
        "/v1/limits/",
        description="Comma-separated path prefixes that bypass the admission filter",
    )
    rate_limit_decision_timeout_seconds: float = Field(
        5.0,
        description="Deadline for a single admission decision",
        gt=0,
    )
    rate_limit_default_ttl_seconds: int = Field(
        86400,
        description="TTL for unblocked records in the networked backend",
        ge=1,
    )

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Connection settings for the networked (Redis) backend."""

    host: str = Field("localhost", description="Redis host")
    port: int = Field(6379, description="Redis port")
    password: str | None = Field(None, description="Redis password")
    db: int = Field(0, description="Redis logical database")
    socket_timeout_seconds: float = Field(
        2.0,
        description="Socket timeout for every Redis command",
    )
    lock_timeout_seconds: float = Field(
        5.0,
        description="Auto-release time of the per-key decision lock",
    )
    lock_blocking_timeout_seconds: float = Field(
        2.0,
        description="Maximum wait to acquire the per-key decision lock",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether the admin endpoints require an X-API-Key",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
