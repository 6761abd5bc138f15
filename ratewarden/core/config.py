"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import Field, SecretStr
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

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Enforce admission policies in the FastAPI adapter",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    api_key_required: bool = Field(
        True,
        description="Whether decision and admin endpoints require an API key",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys",
    )
    policy_overrides: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description=(
            "JSON object of per-policy overrides, e.g. "
            '{"UPLOAD": {"max_requests": 5}}'
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Shared counter store configuration."""

    backend: str = Field(
        "redis",
        description="Store backend: redis (shared) or memory (single process only)",
        pattern="^(redis|memory)$",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL (use rediss:// over untrusted networks)",
    )
    socket_timeout_seconds: float = Field(
        0.5,
        description="Per-command socket timeout so an outage fails fast",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class SecuritySettings(BaseSettings):
    """Caller identity settings."""

    identity_salt: SecretStr = Field(
        SecretStr("ratewarden-salt"),
        description="Salt mixed into caller identifiers before hashing",
    )
    trust_proxy_headers: bool = Field(
        True,
        description="Read the caller address from CF-Connecting-IP/X-Real-IP/X-Forwarded-For",
    )

    model_config = SettingsConfigDict(
        env_prefix="SECURITY_",
        case_sensitive=False,
    )


class ChallengeSettings(BaseSettings):
    """Challenge (captcha) provider configuration."""

    provider: str = Field(
        "turnstile",
        description="Challenge verification provider name",
    )
    secret_key: SecretStr = Field(
        SecretStr(""),
        description="Server-side secret for the verification endpoint",
    )
    verify_url: str = Field(
        "https://challenges.cloudflare.com/turnstile/v0/siteverify",
        description="Verification endpoint URL",
    )
    timeout_seconds: float = Field(
        5.0,
        description="Verification request timeout in seconds",
        gt=0,
    )
    token_header: str = Field(
        "CF-Turnstile-Response",
        description="Request header carrying the challenge token",
    )
    token_field: str = Field(
        "cf-turnstile-response",
        description="Form field carrying the challenge token",
    )

    model_config = SettingsConfigDict(
        env_prefix="CHALLENGE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10 * 1024 * 1024, description="Rotate after this size (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


def _build_app_settings() -> AppSettings:
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_store_settings() -> StoreSettings:
    return StoreSettings()  # type: ignore[call-arg]


def _build_security_settings() -> SecuritySettings:
    return SecuritySettings()  # type: ignore[call-arg]


def _build_challenge_settings() -> ChallengeSettings:
    return ChallengeSettings()  # type: ignore[call-arg]


def _build_log_settings() -> LogSettings:
    return LogSettings()  # type: ignore[call-arg]


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    security: SecuritySettings = Field(default_factory=_build_security_settings)
    challenge: ChallengeSettings = Field(default_factory=_build_challenge_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
