from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Protocol

from storeauth.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_WINDOW_SECONDS = 15 * 60
DEFAULT_CAPACITY = 100


class AttemptTracker(Protocol):
    """Failed-login counter consulted by the credential verifier."""

    max_attempts: int

    def record_attempt(self, key: str) -> None: ...

    def has_exceeded_limit(self, key: str) -> bool: ...

    def clear(self, key: str) -> None: ...


class LoginAttemptCache:
    """Bounded per-username attempt counter with write-based expiry.

    Each ``record_attempt`` rewrites the entry and restarts its TTL; reads do
    not. When more than ``capacity`` usernames are tracked the entry written
    least recently is dropped. All operations hold a single lock, so
    concurrent callers never lose an increment.

    Lookups never raise: an unexpected internal failure is logged and treated
    as zero attempts.
    """

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        capacity: int = DEFAULT_CAPACITY,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if max_attempts <= 0 or window_seconds <= 0 or capacity <= 0:
            raise ValueError("attempt cache limits must be positive")
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.capacity = capacity
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        # key -> (count, written_at); ordered oldest write first
        self._entries: "OrderedDict[str, tuple[int, float]]" = OrderedDict()

    def _live_count(self, key: str, now: float) -> int:
        entry = self._entries.get(key)
        if entry is None:
            return 0
        count, written_at = entry
        if now - written_at >= self.window_seconds:
            del self._entries[key]
            return 0
        return count

    def record_attempt(self, key: str) -> None:
        try:
            with self._lock:
                now = self._clock()
                count = self._live_count(key, now) + 1
                self._entries[key] = (count, now)
                self._entries.move_to_end(key)
                while len(self._entries) > self.capacity:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug("login_attempt_evicted", username=evicted)
        except Exception as exc:
            logger.warning("login_attempt_record_failed", username=key, error=str(exc))

    def attempts(self, key: str) -> int:
        try:
            with self._lock:
                return self._live_count(key, self._clock())
        except Exception as exc:
            logger.warning("login_attempt_lookup_failed", username=key, error=str(exc))
            return 0

    def has_exceeded_limit(self, key: str) -> bool:
        return self.attempts(key) >= self.max_attempts

    def clear(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = [
    "AttemptTracker",
    "LoginAttemptCache",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_WINDOW_SECONDS",
    "DEFAULT_CAPACITY",
]
