"""Tests for credential verification, lockout and principal resolution."""

from datetime import datetime, timedelta, timezone

import pytest

from storeauth.service.auth import AuthService, Principal
from storeauth.service.errors import (
    AccountDisabled,
    AccountLocked,
    AuthenticationFailed,
    Forbidden,
    IdentityNotFound,
    TokenInvalid,
)
from storeauth.service.login_attempts import LoginAttemptCache
from storeauth.service.passwords import hash_password
from storeauth.service.roles import USER_CREATE, USER_DELETE, USER_READ, Role
from storeauth.service.tokens import TokenService
from storeauth.storage.memory import MemoryUserStore
from storeauth.storage.models import User

PASSWORD = "Correct-Horse-9"


class DateClock:
    def __init__(self):
        self.now = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def store():
    return MemoryUserStore()


@pytest.fixture
def attempts(fake_clock):
    return LoginAttemptCache(max_attempts=5, window_seconds=900, clock=fake_clock)


@pytest.fixture
def date_clock():
    return DateClock()


@pytest.fixture
def auth(store, attempts, settings, date_clock):
    tokens = TokenService(settings, clock=date_clock)
    return AuthService(store, attempts, tokens, clock=date_clock)


def add_user(store, username="jdoe", role=Role.ROLE_USER, **kwargs) -> User:
    return store.save(
        User(
            username=username,
            email=f"{username}@example.com",
            password=hash_password(PASSWORD),
            role=role.value,
            authorities=role.authorities,
            **kwargs,
        )
    )


class TestLogin:
    def test_success_issues_token(self, auth, store):
        add_user(store)

        result = auth.login("jdoe", PASSWORD)

        assert result.user.username == "jdoe"
        assert result.token.header_name == "Jwt-Token"
        assert auth.authenticate(result.token.token).username == "jdoe"

    def test_wrong_password_counts_attempt(self, auth, store, attempts):
        add_user(store)

        with pytest.raises(AuthenticationFailed) as exc_info:
            auth.login("jdoe", "wrong")

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Username / password incorrect"
        assert attempts.attempts("jdoe") == 1

    def test_success_clears_attempts(self, auth, store, attempts):
        add_user(store)
        for _ in range(3):
            with pytest.raises(AuthenticationFailed):
                auth.login("jdoe", "wrong")

        auth.login("jdoe", PASSWORD)

        assert attempts.attempts("jdoe") == 0

    def test_unknown_user(self, auth, attempts):
        with pytest.raises(IdentityNotFound) as exc_info:
            auth.login("ghost", PASSWORD)

        assert exc_info.value.message == "No user found by username: ghost"
        assert attempts.attempts("ghost") == 0

    def test_disabled_account(self, auth, store, attempts):
        add_user(store, is_active=False)

        with pytest.raises(AccountDisabled) as exc_info:
            auth.login("jdoe", PASSWORD)

        assert exc_info.value.error_code == "account_disabled"
        assert attempts.attempts("jdoe") == 0

    def test_login_dates_shift(self, auth, store, date_clock):
        add_user(store)
        first_at = date_clock.now

        first = auth.login("jdoe", PASSWORD).user
        assert first.last_login_date == first_at
        assert first.last_login_date_display is None

        date_clock.now += timedelta(hours=2)
        second = auth.login("jdoe", PASSWORD).user

        assert second.last_login_date == date_clock.now
        assert second.last_login_date_display == first_at
        assert store.find_by_username("jdoe") == second

    def test_failed_login_does_not_touch_dates(self, auth, store):
        add_user(store)

        with pytest.raises(AuthenticationFailed):
            auth.login("jdoe", "wrong")

        assert store.find_by_username("jdoe").last_login_date is None


class TestLockout:
    def test_five_failures_then_locked(self, auth, store, attempts):
        add_user(store)
        for _ in range(5):
            with pytest.raises(AuthenticationFailed):
                auth.login("jdoe", "wrong")
        assert attempts.has_exceeded_limit("jdoe")

        # Even the right password is refused once the limit is reached
        with pytest.raises(AccountLocked) as exc_info:
            auth.login("jdoe", PASSWORD)

        assert exc_info.value.error_code == "account_locked"
        assert store.find_by_username("jdoe").is_not_locked is False

    def test_four_failures_still_allowed(self, auth, store):
        add_user(store)
        for _ in range(4):
            with pytest.raises(AuthenticationFailed):
                auth.login("jdoe", "wrong")

        assert auth.login("jdoe", PASSWORD).user.is_not_locked

    def test_locked_account_clears_counter_and_stays_locked(self, auth, store, attempts):
        add_user(store, is_not_locked=False)
        attempts.record_attempt("jdoe")
        attempts.record_attempt("jdoe")

        with pytest.raises(AccountLocked):
            auth.login("jdoe", PASSWORD)

        assert attempts.attempts("jdoe") == 0
        assert store.find_by_username("jdoe").is_not_locked is False

    def test_lock_expires_with_counter_window(self, auth, store, fake_clock):
        add_user(store)
        for _ in range(4):
            with pytest.raises(AuthenticationFailed):
                auth.login("jdoe", "wrong")
        fake_clock.advance(900)

        with pytest.raises(AuthenticationFailed):
            auth.login("jdoe", "wrong")

        assert auth.login("jdoe", PASSWORD).user.is_not_locked


class TestEvaluateLockState:
    def test_unlocked_under_limit_unchanged(self, auth, store):
        user = add_user(store)
        assert auth.evaluate_lock_state(user) is user

    def test_unlocked_over_limit_locks(self, auth, store, attempts):
        user = add_user(store)
        for _ in range(5):
            attempts.record_attempt("jdoe")

        evaluated = auth.evaluate_lock_state(user)

        assert evaluated.is_not_locked is False
        # Evaluation alone does not persist
        assert store.find_by_username("jdoe").is_not_locked is True


class TestPrincipal:
    def test_missing_token(self, auth):
        with pytest.raises(TokenInvalid):
            auth.authenticate(None)

    def test_bearer_header(self, auth, store):
        add_user(store)
        token = auth.login("jdoe", PASSWORD).token.token

        principal = auth.authenticate(f"Bearer {token}")

        assert principal == Principal("jdoe", frozenset({USER_READ}))

    def test_require_authority(self, auth):
        principal = Principal("boss", Role.ROLE_ADMIN.authorities)

        assert auth.require_authority(principal, USER_CREATE) is principal
        with pytest.raises(Forbidden) as exc_info:
            auth.require_authority(principal, USER_DELETE)
        assert exc_info.value.status_code == 403

    def test_authorities_frozen_until_new_token(self, auth, store):
        user = add_user(store, role=Role.ROLE_SUPER_ADMIN)
        token = auth.login("jdoe", PASSWORD).token.token
        store.save(
            user.with_changes(
                role=Role.ROLE_USER.value, authorities=Role.ROLE_USER.authorities
            )
        )

        assert auth.authenticate(token).has_authority(USER_DELETE)
        fresh = auth.login("jdoe", PASSWORD).token.token
        assert not auth.authenticate(fresh).has_authority(USER_DELETE)


class DeleteAfterLookupStore(MemoryUserStore):
    """Deletes the identity right after it is read, as a concurrent admin would."""

    def find_by_username(self, username):
        user = super().find_by_username(username)
        if user is not None:
            self.delete_by_id(user.id)
        return user


class TestConcurrentDelete:
    def test_login_does_not_resurrect_deleted_user(self, attempts, settings, date_clock):
        store = DeleteAfterLookupStore()
        add_user(store)
        auth = AuthService(
            store, attempts, TokenService(settings, clock=date_clock), clock=date_clock
        )

        with pytest.raises(IdentityNotFound):
            auth.login("jdoe", PASSWORD)

        assert store.find_all() == []
