from __future__ import annotations

import os
from typing import Any, List

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from hvacflow.logging import get_logger

logger = get_logger(__name__)

DEFAULT_LINK_EXPIRY_DAYS = 14


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the automation service."""

    app_base_url: str = env_field(
        "http://localhost:3000",
        "APP_BASE_URL",
        description="Public base URL prepended to shareable link paths",
    )
    link_default_expiry_days: int = env_field(
        DEFAULT_LINK_EXPIRY_DAYS,
        "LINK_DEFAULT_EXPIRY_DAYS",
        description="Expiry applied to dynamic links created without expiresInDays",
    )
    link_path_prefix: str = env_field("/share", "LINK_PATH_PREFIX")
    # Messaging
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("HVAC CRM", "EMAIL_FROM_NAME")
    # Remote AI analysis endpoint (opaque to the engine)
    ai_service_url: str | None = env_field(
        None,
        "AI_SERVICE_URL",
        description="Endpoint receiving AI analysis requests; unset uses the local summary",
    )
    ai_service_api_key: str | None = env_field(None, "AI_SERVICE_API_KEY")
    ai_timeout_seconds: float = env_field(30.0, "AI_TIMEOUT_SECONDS")
    max_run_steps: int = env_field(
        10000,
        "MAX_RUN_STEPS",
        description="Upper bound on executor steps per run",
    )
    cors_allow_origins: List[str] = env_field([], "CORS_ALLOW_ORIGINS")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow resetting the runtime singleton between tests",
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

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return list(value)

    @field_validator("link_default_expiry_days")
    @classmethod
    def _validate_expiry(cls, value: int) -> int:
        if value <= 0:
            logger.warning(
                "link_expiry_invalid",
                value=value,
                message="LINK_DEFAULT_EXPIRY_DAYS must be positive; using default",
            )
            return DEFAULT_LINK_EXPIRY_DAYS
        return value

    @field_validator("app_base_url", "link_path_prefix")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/") if value != "/" else value


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
