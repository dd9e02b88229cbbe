from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hostelgate.logging import get_logger

logger = get_logger(__name__)


class Environment(str, Enum):
    """Deployment environments that change cookie and logging behaviour."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the session gate, caches and store connection."""

    environment: Environment = env_field(Environment.DEVELOPMENT, "APP_ENV")
    api_prefix: str = env_field("/api", "API_PREFIX")

    # Session cookie and lifetimes
    session_cookie_name: str = env_field("hms_session", "SESSION_COOKIE_NAME")
    csrf_cookie_name: str = env_field("csrf_token", "CSRF_COOKIE_NAME")
    session_ttl_idle_seconds: int = env_field(
        30 * 60,
        "SESSION_TTL_IDLE_SECONDS",
        description="Idle window restored on every authenticated request",
    )
    session_ttl_absolute_seconds: int = env_field(
        24 * 60 * 60,
        "SESSION_TTL_ABSOLUTE_SECONDS",
        description="Hard ceiling on a session's lifetime measured from creation",
    )
    session_cap: int = env_field(
        5,
        "SESSION_CAP",
        description="Maximum live sessions per user; 0 disables the cap",
    )

    # Login throttling
    login_rate_limit: int = env_field(
        10,
        "LOGIN_RATE_LIMIT",
        description="Login attempts allowed per client and window; 0 disables the limit",
    )
    login_rate_window_seconds: int = env_field(15 * 60, "LOGIN_RATE_WINDOW_SECONDS")

    # Key-value store
    redis_host: str = env_field("localhost", "REDIS_HOST")
    redis_port: int = env_field(6379, "REDIS_PORT")
    redis_username: str | None = env_field(None, "REDIS_USERNAME")
    redis_password: str | None = env_field(None, "REDIS_PASSWORD")
    redis_db: int = env_field(0, "REDIS_DB")
    redis_connect_timeout: float = env_field(5.0, "REDIS_CONNECT_TIMEOUT")
    redis_reconnect_interval: float = env_field(
        5.0,
        "REDIS_RECONNECT_INTERVAL",
        description="Seconds after a failed connect before commands try again",
    )
    cache_default_ttl: int = env_field(300, "CACHE_DEFAULT_TTL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic testing behaviour; allows runtime resets.",
    )

    # CORS
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    cors_allow_credentials: bool = env_field(True, "CORS_ALLOW_CREDENTIALS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        # NODE_ENV is honoured for deployments shared with the web frontend
        if "environment" not in merged and os.environ.get("NODE_ENV"):
            merged["environment"] = os.environ["NODE_ENV"]
        return cls(**merged)

    @field_validator("environment", mode="before")
    @classmethod
    def _validate_environment(cls, value: Any) -> Environment:
        if isinstance(value, str):
            value = value.strip().lower()
        try:
            return Environment(value)
        except ValueError:
            logger.warning("unknown_environment", value=value)
            return Environment.DEVELOPMENT

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return list(value)

    @field_validator("api_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = "/" + value.strip("/")
        return "" if value == "/" else value

    @field_validator("session_cap")
    @classmethod
    def _validate_cap(cls, value: int) -> int:
        if value < 0:
            raise ValueError("SESSION_CAP must be >= 0")
        return value

    @field_validator("login_rate_limit")
    @classmethod
    def _validate_login_limit(cls, value: int) -> int:
        if value < 0:
            raise ValueError("LOGIN_RATE_LIMIT must be >= 0")
        return value

    @field_validator("login_rate_window_seconds")
    @classmethod
    def _validate_login_window(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("LOGIN_RATE_WINDOW_SECONDS must be positive")
        return value

    @model_validator(mode="after")
    def _validate_ttls(self) -> "Settings":
        if self.session_ttl_idle_seconds <= 0 or self.session_ttl_absolute_seconds <= 0:
            raise ValueError("session TTLs must be positive")
        if self.session_ttl_idle_seconds > self.session_ttl_absolute_seconds:
            raise ValueError(
                "SESSION_TTL_IDLE_SECONDS may not exceed SESSION_TTL_ABSOLUTE_SECONDS"
            )
        return self

    @property
    def cookie_secure(self) -> bool:
        return self.environment == Environment.PRODUCTION

    def tab_cookie_path(self, tab_id: str | None) -> str:
        """Path that scopes session cookies to a single tab's API routes."""
        if tab_id:
            return f"{self.api_prefix}/tab/{tab_id}/"
        return "/"


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
