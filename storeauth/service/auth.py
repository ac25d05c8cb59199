from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, FrozenSet, Optional

from storeauth.logging import get_logger
from storeauth.service.errors import (
    AccountDisabled,
    AccountLocked,
    AuthenticationFailed,
    Forbidden,
    IdentityNotFound,
    TokenInvalid,
)
from storeauth.service.login_attempts import AttemptTracker
from storeauth.service.passwords import verify_password
from storeauth.service.tokens import IssuedToken, TokenService
from storeauth.storage.common import UserStore
from storeauth.storage.errors import ConstraintViolation
from storeauth.storage.models import User

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """Identity recovered from a presented token."""

    username: str
    authorities: FrozenSet[str]

    def has_authority(self, authority: str) -> bool:
        return authority in self.authorities


@dataclass(frozen=True)
class LoginResult:
    user: User
    token: IssuedToken


class AuthService:
    """Credential verification, lockout and token handling for store users."""

    def __init__(
        self,
        store: UserStore,
        attempts: AttemptTracker,
        tokens: TokenService,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.attempts = attempts
        self.tokens = tokens
        self.logger = logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock()

    def _save(self, user: User) -> User:
        try:
            return self.store.save(user)
        except ConstraintViolation as exc:
            # Deleted while the login was in flight
            self.logger.warning(
                "login_save_rejected", username=user.username, field=exc.detail.get("field")
            )
            raise IdentityNotFound(
                f"No user found by username: {user.username}",
                detail={"username": user.username},
            ) from exc

    def evaluate_lock_state(self, user: User) -> User:
        """Apply the attempt counter to ``user``'s lock flag.

        An unlocked user becomes locked once the counter reaches the limit.
        For a user that is already locked the counter is cleared on every
        evaluation while the lock flag is left as it is; only an explicit
        update re-enables the account.
        """
        if user.is_not_locked:
            if self.attempts.has_exceeded_limit(user.username):
                return user.locked()
            return user
        self.attempts.clear(user.username)
        return user

    def verify_and_load(self, username: str, presented_password: str) -> User:
        user = self.store.find_by_username(username) if username else None
        if user is None:
            self.logger.error("user_not_found", username=username)
            raise IdentityNotFound(
                f"No user found by username: {username}",
                detail={"username": username},
            )

        evaluated = self.evaluate_lock_state(user)
        if evaluated.is_not_locked != user.is_not_locked:
            evaluated = self._save(evaluated)
            self.logger.warning(
                "account_locked",
                username=username,
                max_attempts=self.attempts.max_attempts,
            )
        if not evaluated.is_not_locked:
            raise AccountLocked(
                "Your account has been locked. Please contact administration",
                detail={"username": username},
            )
        if not evaluated.is_active:
            raise AccountDisabled(
                "Your account has been disabled", detail={"username": username}
            )
        if not verify_password(presented_password, evaluated.password):
            raise AuthenticationFailed("Username / password incorrect")

        logged_in = self._save(evaluated.record_login(self._now()))
        self.logger.info("user_loaded", username=username)
        return logged_in

    def login(self, username: str, password: str) -> LoginResult:
        """Verify credentials, maintain the attempt counter and issue a token."""
        try:
            user = self.verify_and_load(username, password)
        except AuthenticationFailed:
            self.attempts.record_attempt(username)
            self.logger.info("login_failed", username=username)
            raise
        self.attempts.clear(username)
        token = self.tokens.issue(user)
        self.logger.info("login_succeeded", username=username)
        return LoginResult(user=user, token=token)

    def authenticate(self, header_value: Optional[str]) -> Principal:
        """Resolve a principal from a ``Jwt-Token`` or ``Authorization`` value."""
        token = self.tokens.extract(header_value)
        if not token:
            raise TokenInvalid("missing token")
        claims = self.tokens.validate(token)
        return Principal(username=claims.subject, authorities=claims.authorities)

    def require_authority(self, principal: Principal, authority: str) -> Principal:
        if not principal.has_authority(authority):
            self.logger.warning(
                "authority_denied", username=principal.username, authority=authority
            )
            raise Forbidden(
                "You do not have enough permission",
                detail={"required": authority},
            )
        return principal
