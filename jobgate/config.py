from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from jobgate.logging import get_logger

logger = get_logger(__name__)

# Well-known development secrets; refused when APP_ENV=production
DEV_ACCESS_SECRET = "dev_access_secret_change_me"
DEV_REFRESH_SECRET = "dev_refresh_secret_change_me"


class AppEnv(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the auth/session core, read from env and ``.env``."""

    app_env: AppEnv = env_field(AppEnv.DEVELOPMENT, "APP_ENV")
    database_url: str = env_field("postgresql://localhost:5432/jobgate", "DATABASE_URL")
    redis_url: str | None = env_field(None, "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic behaviors for tests; enables runtime reset.",
    )
    # Token signing
    jwt_access_secret: str | None = env_field(None, "JWT_ACCESS_SECRET")
    jwt_refresh_secret: str | None = env_field(None, "JWT_REFRESH_SECRET")
    jwt_access_expires: str = env_field(
        "15m",
        "JWT_ACCESS_EXPIRES",
        description="Seconds or shorthand such as 15m, 12h, 7d",
    )
    jwt_refresh_expires: str = env_field("7d", "JWT_REFRESH_EXPIRES")
    # Cookie transport
    cookie_secure: bool = env_field(False, "COOKIE_SECURE")
    # Password hashing cost (argon2id)
    password_hash_time_cost: int = env_field(3, "PASSWORD_HASH_TIME_COST", ge=1)
    password_hash_memory_cost: int = env_field(
        65536, "PASSWORD_HASH_MEMORY_COST", ge=8, description="KiB"
    )
    # Federation
    frontend_url: str = env_field("http://localhost:3000", "FRONTEND_URL")
    backend_url: str = env_field("http://localhost:4000", "BACKEND_URL")
    google_client_id: str | None = env_field(None, "GOOGLE_CLIENT_ID")
    google_client_secret: str | None = env_field(None, "GOOGLE_CLIENT_SECRET")
    oauth_redirect_uri: str | None = env_field(None, "OAUTH_REDIRECT_URI")
    # Rate limits (requests per minute, 0 disables)
    login_rate_limit_per_minute: int = env_field(10, "LOGIN_RATE_LIMIT_PER_MINUTE", ge=0)
    register_rate_limit_per_minute: int = env_field(
        5, "REGISTER_RATE_LIMIT_PER_MINUTE", ge=0
    )
    oauth_rate_limit_per_minute: int = env_field(20, "OAUTH_RATE_LIMIT_PER_MINUTE", ge=0)
    admin_rate_limit_per_minute: int = env_field(60, "ADMIN_RATE_LIMIT_PER_MINUTE", ge=0)
    # CORS
    allowed_origins: str | None = env_field(
        None,
        "ALLOWED_ORIGINS",
        description="Comma separated; defaults to FRONTEND_URL",
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
    def _normalize_app_env(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("jwt_access_secret", "jwt_refresh_secret", "redis_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _ensure_signing_secrets(self) -> "Settings":
        if self.is_production:
            if not self.jwt_access_secret or not self.jwt_refresh_secret:
                raise ValueError(
                    "JWT_ACCESS_SECRET and JWT_REFRESH_SECRET are required in production"
                )
            if self.jwt_access_secret == self.jwt_refresh_secret:
                raise ValueError("access and refresh signing secrets must differ")
            if {self.jwt_access_secret, self.jwt_refresh_secret} & {
                DEV_ACCESS_SECRET,
                DEV_REFRESH_SECRET,
            }:
                raise ValueError("development signing secrets are not allowed in production")
            return self
        if not self.jwt_access_secret or not self.jwt_refresh_secret:
            logger.warning(
                "jwt_dev_secrets_in_use",
                app_env=self.app_env.value,
                message="Signing secrets not configured; using development defaults",
            )
            self.jwt_access_secret = self.jwt_access_secret or DEV_ACCESS_SECRET
            self.jwt_refresh_secret = self.jwt_refresh_secret or DEV_REFRESH_SECRET
        return self

    @property
    def is_production(self) -> bool:
        return self.app_env == AppEnv.PRODUCTION

    @property
    def cookie_secure_flag(self) -> bool:
        return self.is_production or self.cookie_secure

    @property
    def cors_origins(self) -> list[str]:
        raw = self.allowed_origins or self.frontend_url
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @property
    def google_callback_url(self) -> str:
        return self.oauth_redirect_uri or f"{self.backend_url.rstrip('/')}/v1/auth/google/callback"


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
