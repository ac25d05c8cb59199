from __future__ import annotations

import os
import secrets
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from storeauth.logging import get_logger

logger = get_logger(__name__)


class LoginAttemptBackend(str, Enum):
    """Where failed-login counters live."""

    MEMORY = "memory"
    REDIS = "redis"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process-wide settings, loaded once at startup."""

    shared_fs_root: str = env_field("/srv/storeauth", "SHARED_FS_ROOT")
    app_base_url: str = env_field("http://localhost:8081", "APP_BASE_URL")
    # Token signing
    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("ethan-store", "JWT_ISSUER")
    jwt_audience: str = env_field("store-user-portal", "JWT_AUDIENCE")
    token_ttl_minutes: int = env_field(
        5 * 24 * 60,
        "TOKEN_TTL_MINUTES",
        description="Lifetime of an issued token; authorities are frozen for this long",
    )
    token_header_name: str = env_field("Jwt-Token", "TOKEN_HEADER_NAME")
    # Account protection
    max_login_attempts: int = env_field(5, "MAX_LOGIN_ATTEMPTS")
    login_attempt_window_minutes: int = env_field(
        15,
        "LOGIN_ATTEMPT_WINDOW_MINUTES",
        description="Failed-attempt counters expire this long after their last write",
    )
    login_attempt_cache_size: int = env_field(
        100,
        "LOGIN_ATTEMPT_CACHE_SIZE",
        description="Maximum number of usernames tracked by the in-memory attempt cache",
    )
    login_attempt_backend: LoginAttemptBackend = env_field(
        LoginAttemptBackend.MEMORY, "LOGIN_ATTEMPT_BACKEND"
    )
    redis_url: str | None = env_field(None, "REDIS_URL")
    # Profile images
    default_profile_image_path: str = env_field(
        "/user/image/profile/", "DEFAULT_PROFILE_IMAGE_PATH"
    )
    user_image_path: str = env_field("/user/image/", "USER_IMAGE_PATH")
    # HTTP surface
    cors_allow_origins: list[str] = env_field(
        ["http://localhost:4200", "http://localhost:8081"], "CORS_ALLOW_ORIGINS"
    )
    allow_signup: bool = env_field(True, "ALLOW_SIGNUP")
    test_mode: bool = env_field(False, "TEST_MODE")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, Any] = {}
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
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("login_attempt_backend")
    @classmethod
    def _validate_backend(cls, value: LoginAttemptBackend) -> LoginAttemptBackend:
        return LoginAttemptBackend(value)

    @field_validator(
        "token_ttl_minutes",
        "max_login_attempts",
        "login_attempt_window_minutes",
        "login_attempt_cache_size",
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            return value
        # Persist a generated secret so tokens stay valid across restarts
        fs_root = Path(os.getenv("SHARED_FS_ROOT", "/srv/storeauth"))
        secret_path = fs_root / ".jwt_secret"
        try:
            fs_root.mkdir(parents=True, exist_ok=True)
            os.chmod(fs_root, 0o700)
        except PermissionError:
            # Directory may already exist with different permissions (e.g., in container)
            pass

        if secret_path.exists() and not secret_path.is_symlink():
            try:
                persisted = secret_path.read_text().strip()
                if persisted and len(persisted) >= 32:
                    return persisted
            except OSError as exc:
                logger.error(
                    "jwt_secret_read_failed", error=str(exc), path=str(secret_path)
                )

        generated = secrets.token_urlsafe(64)
        tmp_path: str | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(fs_root), prefix=".jwt_secret_", suffix=".tmp"
            )
            try:
                os.write(fd, generated.encode())
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.rename(tmp_path, str(secret_path))
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                "jwt_secret_persist_failed", error=str(exc), path=str(secret_path)
            )
            raise RuntimeError(
                "Unable to persist JWT secret; set JWT_SECRET env var or make SHARED_FS_ROOT writable"
            ) from exc
        return generated


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
