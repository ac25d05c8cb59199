from __future__ import annotations

from redis import Redis, RedisError

from storeauth.logging import get_logger

logger = get_logger(__name__)


class RedisLoginAttemptCache:
    """Failed-login counters shared across processes through Redis.

    ``INCR`` and ``EXPIRE`` run in one transaction so every write restarts the
    window. Capacity is left to the server's eviction policy. Redis errors
    are logged and read as zero attempts so an outage never blocks logins.
    """

    KEY_PREFIX = "auth:login_attempts:"

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        max_attempts: int = 5,
        window_seconds: int = 15 * 60,
        socket_timeout: float = 5.0,
        client: Redis | None = None,
    ) -> None:
        if client is None and not redis_url:
            raise ValueError("redis_url or client is required")
        self.redis_url = redis_url
        self.max_attempts = max_attempts
        self.window_seconds = int(window_seconds)
        self.client = client or Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, username: str) -> str:
        return f"{self.KEY_PREFIX}{username}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity."""
        self.client.ping()

    def record_attempt(self, key: str) -> None:
        try:
            pipe = self.client.pipeline()
            pipe.incr(self._key(key))
            pipe.expire(self._key(key), self.window_seconds)
            pipe.execute()
        except RedisError as exc:
            logger.warning("login_attempt_record_failed", username=key, error=str(exc))

    def attempts(self, key: str) -> int:
        try:
            raw = self.client.get(self._key(key))
        except RedisError as exc:
            logger.warning("login_attempt_lookup_failed", username=key, error=str(exc))
            return 0
        try:
            return int(raw) if raw is not None else 0
        except (TypeError, ValueError):
            logger.warning("login_attempt_value_invalid", username=key)
            return 0

    def has_exceeded_limit(self, key: str) -> bool:
        return self.attempts(key) >= self.max_attempts

    def clear(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except RedisError as exc:
            logger.warning("login_attempt_clear_failed", username=key, error=str(exc))

    def close(self) -> None:
        self.client.close()
