"""Tests for account registration, administration and password reset."""

import threading

import pytest

from storeauth.service.errors import (
    BadRequestError,
    EmailExists,
    EmailNotFound,
    IdentityNotFound,
    UnknownRole,
    UsernameExists,
)
from storeauth.service.login_attempts import LoginAttemptCache
from storeauth.service.passwords import verify_password
from storeauth.service.roles import USER_DELETE, USER_READ, Role
from storeauth.service.users import UserService
from storeauth.storage.memory import MemoryUserStore


class CapturingNotifier:
    def __init__(self):
        self.sent = []

    def send_new_password(self, user, password):
        self.sent.append((user.username, password))

    def last_password(self):
        return self.sent[-1][1]


class FakeImageStorage:
    def __init__(self):
        self.saved = {}

    def save(self, username, filename, content):
        self.saved[(username, filename)] = content


@pytest.fixture
def store():
    return MemoryUserStore()


@pytest.fixture
def attempts():
    return LoginAttemptCache()


@pytest.fixture
def notifier():
    return CapturingNotifier()


@pytest.fixture
def images():
    return FakeImageStorage()


@pytest.fixture
def users(store, settings, attempts, notifier, images):
    return UserService(
        store, settings, attempts=attempts, notifier=notifier, image_storage=images
    )


class TestRegister:
    def test_jane_doe(self, users, notifier):
        user = users.register("Jane", "Doe", "jdoe", "jane@example.com")

        assert user.id is not None
        assert len(user.user_id) == 10 and user.user_id.isdigit()
        assert user.role == "ROLE_USER"
        assert user.authorities == frozenset({USER_READ})
        assert user.is_active and user.is_not_locked
        assert user.last_login_date is None
        assert user.profile_image_url == "http://store.test/user/image/profile/Jane+Doe"

        username, password = notifier.sent[-1]
        assert username == "jdoe"
        assert len(password) == 10 and password.isalnum()
        assert user.password != password
        assert verify_password(password, user.password)

    def test_explicit_password(self, users):
        user = users.register("Jane", "Doe", "jdoe", "jane@example.com", password="Chosen-1")
        assert verify_password("Chosen-1", user.password)

    def test_duplicate_username(self, users):
        users.register("Jane", "Doe", "jdoe", "jane@example.com")

        with pytest.raises(UsernameExists):
            users.register("John", "Doe", "jdoe", "john@example.com")

    def test_duplicate_email(self, users):
        users.register("Jane", "Doe", "jdoe", "jane@example.com")

        with pytest.raises(EmailExists):
            users.register("Jane", "Roe", "jroe", "jane@example.com")

    def test_concurrent_registration_single_winner(self, users, store):
        barrier = threading.Barrier(6)
        outcomes = []
        lock = threading.Lock()

        def attempt(i):
            barrier.wait()
            try:
                users.register("Race", "Condition", "racer", f"racer{i}@example.com")
                result = "ok"
            except UsernameExists:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 5
        assert len([u for u in store.find_all() if u.username == "racer"]) == 1


class TestAddNewUser:
    def test_explicit_role_and_flags(self, users):
        user = users.add_new_user(
            "Ada", "Admin", "ada", "ada@example.com", "role_super_admin", False, True
        )

        assert user.role == "ROLE_SUPER_ADMIN"
        assert USER_DELETE in user.authorities
        assert user.is_not_locked is False

    def test_unknown_role_creates_nothing(self, users, store):
        with pytest.raises(UnknownRole):
            users.add_new_user("A", "B", "ab", "ab@example.com", "ROLE_GOD", True, True)
        assert store.find_all() == []

    def test_with_profile_image(self, users, images):
        user = users.add_new_user(
            "Ada", "Admin", "ada", "ada@example.com", "ROLE_ADMIN", True, True,
            profile_image=b"\xff\xd8jpeg",
        )

        assert images.saved[("ada", "ada.jpg")] == b"\xff\xd8jpeg"
        assert user.profile_image_url == "http://store.test/user/image/ada/ada.jpg"


class TestUpdateUser:
    def test_self_update_keeps_identity(self, users):
        users.register("Jane", "Doe", "jdoe", "jane@example.com")

        updated = users.update_user(
            "jdoe", "Janet", "Doe", "jdoe", "jane@example.com", "ROLE_HR", True, True
        )

        assert updated.first_name == "Janet"
        assert updated.role == "ROLE_HR"
        assert updated.authorities == Role.ROLE_HR.authorities

    def test_rename(self, users, store):
        original = users.register("Jane", "Doe", "jdoe", "jane@example.com")

        updated = users.update_user(
            "jdoe", "Jane", "Doe", "jane.doe", "jane@example.com", "ROLE_USER", True, True
        )

        assert updated.id == original.id
        assert store.find_by_username("jdoe") is None

    def test_email_taken_by_other(self, users):
        users.register("Jane", "Doe", "jdoe", "jane@example.com")
        users.register("John", "Roe", "jroe", "john@example.com")

        with pytest.raises(EmailExists):
            users.update_user(
                "jdoe", "Jane", "Doe", "jdoe", "john@example.com", "ROLE_USER", True, True
            )

    def test_username_taken_by_other(self, users):
        users.register("Jane", "Doe", "jdoe", "jane@example.com")
        users.register("John", "Roe", "jroe", "john@example.com")

        with pytest.raises(UsernameExists):
            users.update_user(
                "jdoe", "Jane", "Doe", "jroe", "jane@example.com", "ROLE_USER", True, True
            )

    def test_missing_current_user(self, users):
        with pytest.raises(IdentityNotFound):
            users.update_user(
                "ghost", "G", "H", "ghost", "ghost@example.com", "ROLE_USER", True, True
            )

    def test_unlock_clears_attempts(self, users, attempts):
        users.add_new_user("Jane", "Doe", "jdoe", "jane@example.com", "ROLE_USER", False, True)
        for _ in range(5):
            attempts.record_attempt("jdoe")

        updated = users.update_user(
            "jdoe", "Jane", "Doe", "jdoe", "jane@example.com", "ROLE_USER", True, True
        )

        assert updated.is_not_locked
        assert attempts.attempts("jdoe") == 0


class TestResetPassword:
    def test_issues_new_password(self, users, notifier):
        original = users.register("Jane", "Doe", "jdoe", "jane@example.com")
        first_password = notifier.last_password()

        updated = users.reset_password("jane@example.com")

        new_password = notifier.last_password()
        assert new_password != first_password
        assert updated.password != original.password
        assert verify_password(new_password, updated.password)
        assert not verify_password(first_password, updated.password)

    def test_unknown_email(self, users):
        with pytest.raises(EmailNotFound) as exc_info:
            users.reset_password("nobody@example.com")
        assert exc_info.value.message == "No user found for email: nobody@example.com"
        assert exc_info.value.status_code == 404


class TestMisc:
    def test_delete_and_list(self, users):
        jane = users.register("Jane", "Doe", "jdoe", "jane@example.com")
        users.register("John", "Roe", "jroe", "john@example.com")

        users.delete_user(jane.id)

        assert [u.username for u in users.list_users()] == ["jroe"]
        assert users.find_user_by_email("jane@example.com") is None

    def test_update_profile_image(self, users, images):
        users.register("Jane", "Doe", "jdoe", "jane@example.com")

        updated = users.update_profile_image("jdoe", b"img")

        assert images.saved[("jdoe", "jdoe.jpg")] == b"img"
        assert updated.profile_image_url.endswith("/user/image/jdoe/jdoe.jpg")

    def test_profile_image_without_storage(self, store, settings):
        bare = UserService(store, settings)
        bare.register("Jane", "Doe", "jdoe", "jane@example.com")

        with pytest.raises(BadRequestError):
            bare.update_profile_image("jdoe", b"img")
