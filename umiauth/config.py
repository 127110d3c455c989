from __future__ import annotations

import os
import re
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from umiauth.logging import get_logger

logger = get_logger(__name__)

MIN_SECRET_LENGTH = 32

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}


def parse_duration(value: Any) -> int:
    """Convert ``"15m"``, ``"24h"``, ``"7d"`` or a plain number to seconds."""
    if isinstance(value, bool):
        raise ValueError("duration must be a number or a string like '24h'")
    if isinstance(value, (int, float)):
        seconds = int(value)
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        seconds = int(match.group(1)) * _DURATION_UNITS[match.group(2).lower()]
    if seconds <= 0:
        raise ValueError("duration must be positive")
    return seconds


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the credential service."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT")
    key_namespace: str = env_field(
        "",
        "REDIS_KEY_NAMESPACE",
        description="Prefix prepended to every key written by the token service",
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow generated secrets and runtime resets for tests",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_refresh_secret: str | None = env_field(None, "JWT_REFRESH_SECRET")
    access_token_ttl_seconds: int = env_field(
        24 * 60 * 60,
        "JWT_EXPIRES_IN",
        description="Access token lifetime, e.g. '24h' or '900'",
    )
    refresh_token_ttl_seconds: int = env_field(
        7 * 24 * 60 * 60,
        "JWT_REFRESH_EXPIRES_IN",
        description="Refresh token and session record lifetime, e.g. '7d'",
    )
    token_cleanup_enabled: bool = env_field(True, "TOKEN_CLEANUP_ENABLED")
    token_cleanup_interval_seconds: int = env_field(
        60 * 60,
        "TOKEN_CLEANUP_INTERVAL_SECONDS",
        description="How often dangling session index entries are swept",
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

    @field_validator(
        "access_token_ttl_seconds",
        "refresh_token_ttl_seconds",
        "token_cleanup_interval_seconds",
        mode="before",
    )
    @classmethod
    def _parse_duration(cls, value: Any) -> int:
        return parse_duration(value)

    @model_validator(mode="after")
    def _ensure_jwt_secrets(self) -> "Settings":
        for name in ("jwt_secret", "jwt_refresh_secret"):
            value = getattr(self, name)
            if value:
                if len(value) < MIN_SECRET_LENGTH:
                    raise ValueError(
                        f"{name.upper()} must be at least {MIN_SECRET_LENGTH} characters"
                    )
                continue
            if not self.test_mode:
                raise ValueError(f"{name.upper()} is required outside TEST_MODE")
            logger.warning("jwt_secret_generated", setting=name)
            setattr(self, name, secrets.token_urlsafe(48))
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        if self.refresh_token_ttl_seconds <= self.access_token_ttl_seconds:
            logger.warning(
                "refresh_ttl_not_longer_than_access_ttl",
                access_ttl=self.access_token_ttl_seconds,
                refresh_ttl=self.refresh_token_ttl_seconds,
            )
        return self


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
