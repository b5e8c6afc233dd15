from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from mockchain.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the mock platform and its chained-call engine."""

    database_url: str = env_field(
        "postgresql://localhost:5432/mockchain", "DATABASE_URL"
    )
    redis_url: str = env_field("", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic behaviors for CI; never requires Redis.",
    )
    allow_redis_fallback: bool = env_field(
        True,
        "ALLOW_REDIS_FALLBACK",
        description="Without Redis, notifications are recorded but not published.",
    )
    chain_max_steps: int = env_field(
        50,
        "CHAIN_MAX_STEPS",
        description="Plans longer than this are truncated before execution.",
    )
    chain_default_timeout_ms: int = env_field(
        30000,
        "CHAIN_DEFAULT_TIMEOUT_MS",
        description="Dispatch timeout used when a step does not configure timeoutMs.",
    )
    chain_max_delay_ms: int = env_field(
        60000,
        "CHAIN_MAX_DELAY_MS",
        description="Upper clamp for the per-step delay.",
    )
    external_connect_timeout: float = env_field(5.0, "EXTERNAL_CONNECT_TIMEOUT")
    notification_channel: str = env_field(
        "notification#mock_logging", "NOTIFICATION_CHANNEL"
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

    @field_validator("chain_max_steps")
    @classmethod
    def _validate_max_steps(cls, value: int) -> int:
        if value < 1:
            raise ValueError("chain_max_steps must be at least 1")
        return value

    @field_validator("chain_default_timeout_ms", "chain_max_delay_ms")
    @classmethod
    def _validate_non_negative_ms(cls, value: int) -> int:
        if value < 0:
            raise ValueError("millisecond settings must be non-negative")
        return value

    @field_validator("notification_channel")
    @classmethod
    def _strip_channel_quotes(cls, value: str) -> str:
        # .env files sometimes carry the channel quoted
        return value.strip().strip('"')


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug(
            "settings_loaded",
            use_memory_store=_settings_cache.use_memory_store,
            test_mode=_settings_cache.test_mode,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
