from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gatehouse.logging import get_logger

logger = get_logger(__name__)

ADMIN_SESSION_COOKIE = "admin_session"
DEFAULT_IDLE_TIMEOUT_SECONDS = 30 * 60
DEFAULT_ABSOLUTE_TIMEOUT_SECONDS = 24 * 60 * 60


class AppEnv(str, Enum):
    """Deployment environments; only development relaxes the Secure cookie flag."""

    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the admin session subsystem."""

    app_env: AppEnv = env_field(AppEnv.PRODUCTION, "APP_ENV")
    database_url: str = env_field(
        "postgresql://localhost:5432/gatehouse", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    redis_url: str | None = env_field(
        None,
        "REDIS_URL",
        description="Backs the admin login rate gate; the gate is open when unset",
    )
    test_mode: bool = env_field(False, "TEST_MODE")

    # No default on purpose: without a secret no admin session is issued or validated
    admin_session_secret: str | None = env_field(None, "ADMIN_SESSION_SECRET")
    admin_portal_key: str | None = env_field(None, "ADMIN_PORTAL_KEY")
    admin_session_idle_timeout_seconds: int = env_field(
        DEFAULT_IDLE_TIMEOUT_SECONDS,
        "ADMIN_SESSION_IDLE_TIMEOUT_SECONDS",
        description="Maximum gap between validated requests",
    )
    admin_session_absolute_timeout_seconds: int = env_field(
        DEFAULT_ABSOLUTE_TIMEOUT_SECONDS,
        "ADMIN_SESSION_ABSOLUTE_TIMEOUT_SECONDS",
        description="Maximum lifetime of an admin session regardless of activity",
    )
    admin_session_token_bytes: int = env_field(
        32, "ADMIN_SESSION_TOKEN_BYTES", ge=16, le=128
    )
    admin_login_rate_limit: int = env_field(10, "ADMIN_LOGIN_RATE_LIMIT")
    admin_login_rate_limit_window_seconds: int = env_field(
        15 * 60, "ADMIN_LOGIN_RATE_LIMIT_WINDOW_SECONDS"
    )

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
        return cls(**merged)

    @field_validator("app_env", mode="before")
    @classmethod
    def _validate_app_env(cls, value: Any) -> AppEnv:
        if isinstance(value, str):
            return AppEnv(value.strip().lower())
        return AppEnv(value)

    @field_validator("admin_session_secret", "admin_portal_key", "redis_url")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def _validate_timeouts(self) -> "Settings":
        idle = self.admin_session_idle_timeout_seconds
        absolute = self.admin_session_absolute_timeout_seconds
        if idle <= 0 or absolute <= 0:
            raise ValueError("admin session timeouts must be positive")
        if idle > absolute:
            raise ValueError("idle timeout cannot exceed the absolute timeout")
        return self

    @property
    def is_development(self) -> bool:
        return self.app_env == AppEnv.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        return self.app_env == AppEnv.PRODUCTION

    @property
    def secure_cookies(self) -> bool:
        return not self.is_development


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
