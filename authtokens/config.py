from __future__ import annotations

import os
import re
from datetime import timedelta
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from authtokens.logging import get_logger
from authtokens.service.errors import ConfigurationError

logger = get_logger(__name__)

DEFAULT_REFRESH_TOKEN_TTL = "1h"
DEFAULT_PASSWORD_RESET_TTL = "10m"
DEFAULT_OTP_TTL = "10m"
DEFAULT_JWT_EXPIRY = "15m"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string such as ``"10m"`` or ``"1h30m"``.

    Only positive durations are accepted since every consumer uses the result
    as a key TTL or token lifetime.
    """

    if not isinstance(value, str):
        raise ConfigurationError(f"duration must be a string, got {type(value).__name__}")
    raw = value.strip()
    if not raw:
        raise ConfigurationError("empty duration")
    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(raw):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(raw):
        raise ConfigurationError(f"invalid duration: {value!r}")
    if seconds <= 0:
        raise ConfigurationError(f"duration must be positive: {value!r}")
    return timedelta(seconds=seconds)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the credential services."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT")
    use_memory_store: bool = env_field(
        False,
        "USE_MEMORY_STORE",
        description="Keep credentials in process memory instead of Redis (tests and local dev only)",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("authtokens", "JWT_ISSUER")
    jwt_expiry: str = env_field(DEFAULT_JWT_EXPIRY, "JWT_EXPIRY")
    # TTLs are optional; blanks resolve to the defaults in the validators below
    refresh_token_ttl: str | None = env_field(
        None, "REFRESH_TOKEN_TTL", validate_default=True
    )
    password_reset_ttl: str | None = env_field(
        None, "PASSWORD_RESET_TTL", validate_default=True
    )
    otp_ttl: str | None = env_field(None, "OTP_TTL", validate_default=True)
    otp_hash_time_cost: int = env_field(
        3,
        "OTP_HASH_TIME_COST",
        description="argon2 iterations for OTP hashes; lower only in tests",
    )
    otp_hash_memory_cost: int = env_field(65536, "OTP_HASH_MEMORY_COST")
    otp_hash_parallelism: int = env_field(4, "OTP_HASH_PARALLELISM")
    operation_timeout: float | None = env_field(
        None,
        "OPERATION_TIMEOUT",
        description="Default deadline in seconds for every service call",
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

    @field_validator("refresh_token_ttl")
    @classmethod
    def _default_refresh_ttl(cls, value: str | None) -> str:
        return _resolve_ttl(value, DEFAULT_REFRESH_TOKEN_TTL)

    @field_validator("password_reset_ttl")
    @classmethod
    def _default_password_reset_ttl(cls, value: str | None) -> str:
        return _resolve_ttl(value, DEFAULT_PASSWORD_RESET_TTL)

    @field_validator("otp_ttl")
    @classmethod
    def _default_otp_ttl(cls, value: str | None) -> str:
        return _resolve_ttl(value, DEFAULT_OTP_TTL)

    @field_validator("operation_timeout", mode="before")
    @classmethod
    def _blank_timeout(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def require_jwt_secret(self) -> str:
        if not self.jwt_secret:
            raise ConfigurationError("JWT_SECRET is not configured")
        return self.jwt_secret


def _resolve_ttl(value: str | None, default: str) -> str:
    if value is None or not value.strip():
        return default
    return value.strip()


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug("settings_loaded", memory_store=_settings_cache.use_memory_store)
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
