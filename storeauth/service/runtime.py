from __future__ import annotations

import threading
from urllib.parse import urlparse, urlunparse
from typing import Optional

from storeauth.config import LoginAttemptBackend, get_settings, reset_settings_cache
from storeauth.logging import get_logger
from storeauth.service.auth import AuthService
from storeauth.service.login_attempts import AttemptTracker, LoginAttemptCache
from storeauth.service.tokens import TokenService
from storeauth.service.users import UserService
from storeauth.storage.memory import MemoryUserStore
from storeauth.storage.redis_cache import RedisLoginAttemptCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a URL with ``***`` for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds the process-wide service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info("runtime_init_started", test_mode=self.settings.test_mode)

        self.store = MemoryUserStore(
            fs_root=None if self.settings.test_mode else self.settings.shared_fs_root
        )
        self.attempts = self._build_attempt_tracker()
        self.tokens = TokenService(self.settings)
        self.auth = AuthService(self.store, self.attempts, self.tokens)
        self.users = UserService(self.store, self.settings, attempts=self.attempts)
        logger.info(
            "runtime_init_complete",
            attempt_backend=type(self.attempts).__name__,
        )

    def _build_attempt_tracker(self) -> AttemptTracker:
        settings = self.settings
        window_seconds = settings.login_attempt_window_minutes * 60
        if settings.login_attempt_backend == LoginAttemptBackend.REDIS:
            if not settings.redis_url:
                raise RuntimeError(
                    "LOGIN_ATTEMPT_BACKEND=redis requires REDIS_URL to be set"
                )
            cache = RedisLoginAttemptCache(
                settings.redis_url,
                max_attempts=settings.max_login_attempts,
                window_seconds=window_seconds,
            )
            try:
                cache.verify_connection()
            except Exception as exc:
                logger.error(
                    "redis_unavailable",
                    redis_url=_mask_url_password(settings.redis_url),
                    error=str(exc),
                )
                raise RuntimeError("Redis is required for LOGIN_ATTEMPT_BACKEND=redis") from exc
            return cache
        return LoginAttemptCache(
            max_attempts=settings.max_login_attempts,
            window_seconds=window_seconds,
            capacity=settings.login_attempt_cache_size,
        )

    def close(self) -> None:
        if isinstance(self.attempts, RedisLoginAttemptCache):
            self.attempts.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> None:
    """Drop the runtime and cached settings so the next access rebuilds them."""
    global runtime
    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        runtime = None
        reset_settings_cache()
