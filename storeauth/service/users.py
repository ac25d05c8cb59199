from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol

from storeauth.config import Settings
from storeauth.logging import get_logger
from storeauth.service.errors import (
    BadRequestError,
    EmailExists,
    EmailNotFound,
    IdentityNotFound,
    UsernameExists,
)
from storeauth.service.login_attempts import AttemptTracker
from storeauth.service.passwords import generate_password, generate_user_id, hash_password
from storeauth.service.roles import DEFAULT_ROLE, resolve_role
from storeauth.service.uniqueness import IdentityUniquenessValidator
from storeauth.storage.common import UserStore
from storeauth.storage.errors import ConstraintViolation
from storeauth.storage.models import User

logger = get_logger(__name__)

JPG_EXTENSION = "jpg"


class PasswordNotifier(Protocol):
    """Delivers a generated password to the account owner."""

    def send_new_password(self, user: User, password: str) -> None: ...


class ProfileImageStorage(Protocol):
    """Stores uploaded profile images keyed by username."""

    def save(self, username: str, filename: str, content: bytes) -> None: ...


class LoggingPasswordNotifier:
    """Default notifier: records that a password was issued, never the password."""

    def send_new_password(self, user: User, password: str) -> None:
        logger.info(
            "password_issued",
            username=user.username,
            email=user.email,
            delivery="log",
        )


class UserService:
    """Account operations for store users.

    Every create/update passes through ``IdentityUniquenessValidator`` first.
    The store's constraint is the final word under concurrency: a
    ``ConstraintViolation`` on save surfaces as ``UsernameExists`` or
    ``EmailExists`` exactly like a read-time conflict.
    """

    def __init__(
        self,
        store: UserStore,
        settings: Settings,
        *,
        attempts: Optional[AttemptTracker] = None,
        notifier: Optional[PasswordNotifier] = None,
        image_storage: Optional[ProfileImageStorage] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.attempts = attempts
        self.notifier: PasswordNotifier = notifier or LoggingPasswordNotifier()
        self.image_storage = image_storage
        self.validator = IdentityUniquenessValidator(store)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock()

    def _default_profile_image_url(self, first_name: str, last_name: str) -> str:
        base = self.settings.app_base_url.rstrip("/")
        return f"{base}{self.settings.default_profile_image_path}{first_name}+{last_name}"

    def _profile_image_url(self, username: str) -> str:
        base = self.settings.app_base_url.rstrip("/")
        return (
            f"{base}{self.settings.user_image_path}"
            f"{username}/{username}.{JPG_EXTENSION}"
        )

    def _persist(self, user: User) -> User:
        try:
            return self.store.save(user)
        except ConstraintViolation as exc:
            field = exc.detail.get("field")
            logger.warning("user_save_conflict", username=user.username, field=field)
            if field == "id":
                raise IdentityNotFound(
                    f"No user found by username: {user.username}",
                    detail={"username": user.username},
                ) from exc
            if field == "email":
                raise EmailExists(
                    f"Email already exists by email: {user.email}",
                    detail={"field": "email"},
                ) from exc
            raise UsernameExists(
                f"Username already exists by username: {user.username}",
                detail={"field": "username"},
            ) from exc

    def _save_profile_image(self, user: User, profile_image: Optional[bytes]) -> User:
        if profile_image is None:
            return user
        if self.image_storage is None:
            raise BadRequestError("profile image uploads are not configured")
        filename = f"{user.username}.{JPG_EXTENSION}"
        self.image_storage.save(user.username, filename, profile_image)
        updated = self._persist(
            user.with_changes(profile_image_url=self._profile_image_url(user.username))
        )
        logger.info("profile_image_saved", username=user.username, size=len(profile_image))
        return updated

    def list_users(self) -> List[User]:
        return self.store.find_all()

    def find_user_by_username(self, username: str) -> Optional[User]:
        return self.store.find_by_username(username)

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self.store.find_by_email(email)

    def register(
        self,
        first_name: str,
        last_name: str,
        username: str,
        email: str,
        *,
        password: Optional[str] = None,
    ) -> User:
        """Self-service signup with the default role and a generated password."""
        self.validator.validate(None, username, email)
        plain = password or generate_password()
        user = self._persist(
            User(
                user_id=generate_user_id(),
                password=hash_password(plain),
                first_name=first_name,
                last_name=last_name,
                username=username,
                email=email,
                is_active=True,
                is_not_locked=True,
                join_date=self._now(),
                profile_image_url=self._default_profile_image_url(first_name, last_name),
                role=DEFAULT_ROLE.value,
                authorities=DEFAULT_ROLE.authorities,
            )
        )
        self.notifier.send_new_password(user, plain)
        logger.info("user_registered", username=username, user_id=user.user_id)
        return user

    def add_new_user(
        self,
        first_name: str,
        last_name: str,
        username: str,
        email: str,
        role: str,
        is_not_locked: bool,
        is_active: bool,
        profile_image: Optional[bytes] = None,
        *,
        password: Optional[str] = None,
    ) -> User:
        """Administrative create with explicit role and flags."""
        resolved = resolve_role(role)
        self.validator.validate(None, username, email)
        plain = password or generate_password()
        user = self._persist(
            User(
                user_id=generate_user_id(),
                password=hash_password(plain),
                first_name=first_name,
                last_name=last_name,
                username=username,
                email=email,
                is_active=is_active,
                is_not_locked=is_not_locked,
                join_date=self._now(),
                profile_image_url=self._default_profile_image_url(first_name, last_name),
                role=resolved.value,
                authorities=resolved.authorities,
            )
        )
        user = self._save_profile_image(user, profile_image)
        self.notifier.send_new_password(user, plain)
        logger.info("user_added", username=username, role=resolved.value)
        return user

    def update_user(
        self,
        current_username: str,
        new_first_name: str,
        new_last_name: str,
        new_username: str,
        new_email: str,
        role: str,
        is_not_locked: bool,
        is_active: bool,
        profile_image: Optional[bytes] = None,
    ) -> User:
        resolved = resolve_role(role)
        current = self.validator.validate(current_username, new_username, new_email)
        updated = self._persist(
            current.with_changes(
                first_name=new_first_name,
                last_name=new_last_name,
                username=new_username,
                email=new_email,
                is_active=is_active,
                is_not_locked=is_not_locked,
                role=resolved.value,
                authorities=resolved.authorities,
            )
        )
        if is_not_locked and not current.is_not_locked and self.attempts is not None:
            # Explicit unlock starts the attempt window afresh
            self.attempts.clear(current.username)
            self.attempts.clear(updated.username)
            logger.info("account_unlocked", username=updated.username)
        updated = self._save_profile_image(updated, profile_image)
        logger.info(
            "user_updated",
            current_username=current_username,
            username=updated.username,
            role=resolved.value,
        )
        return updated

    def delete_user(self, id: int) -> None:
        self.store.delete_by_id(id)
        logger.info("user_deleted", id=id)

    def reset_password(self, email: str) -> User:
        user = self.store.find_by_email(email) if email else None
        if user is None:
            raise EmailNotFound(
                f"No user found for email: {email}", detail={"email": email}
            )
        plain = generate_password()
        updated = self._persist(user.with_changes(password=hash_password(plain)))
        self.notifier.send_new_password(updated, plain)
        logger.info("password_reset", username=updated.username)
        return updated

    def update_profile_image(self, username: str, profile_image: bytes) -> User:
        current = self.validator.validate(username, None, None)
        return self._save_profile_image(current, profile_image)
