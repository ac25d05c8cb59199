from __future__ import annotations

from typing import Optional

from storeauth.logging import get_logger
from storeauth.service.errors import EmailExists, IdentityNotFound, UsernameExists
from storeauth.storage.common import UserStore
from storeauth.storage.models import User

logger = get_logger(__name__)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class IdentityUniquenessValidator:
    """Guard username/email uniqueness before an identity is created or updated.

    The check reads the store and then returns; it does not hold anything
    across the caller's subsequent write. Concurrent registrations can both
    pass here, and the store's own uniqueness constraint decides which one
    commits.
    """

    def __init__(self, store: UserStore) -> None:
        self.store = store

    def validate(
        self,
        current_username: Optional[str],
        candidate_username: Optional[str],
        candidate_email: Optional[str],
    ) -> Optional[User]:
        # Absent candidates are never looked up, so they cannot collide
        owner_of_username = (
            None
            if _is_blank(candidate_username)
            else self.store.find_by_username(candidate_username)
        )
        owner_of_email = (
            None
            if _is_blank(candidate_email)
            else self.store.find_by_email(candidate_email)
        )

        if _is_blank(current_username):
            if owner_of_username is not None:
                raise UsernameExists(
                    f"Username already exists by username: {candidate_username}",
                    detail={"field": "username"},
                )
            if owner_of_email is not None:
                raise EmailExists(
                    f"Email already exists by email: {candidate_email}",
                    detail={"field": "email"},
                )
            return None

        current = self.store.find_by_username(current_username)
        if current is None:
            logger.info("identity_lookup_missed", username=current_username)
            raise IdentityNotFound(
                f"No user found by username: {current_username}",
                detail={"username": current_username},
            )
        if owner_of_username is not None and owner_of_username.id != current.id:
            raise UsernameExists(
                f"Username already exists by username: {candidate_username}",
                detail={"field": "username"},
            )
        if owner_of_email is not None and owner_of_email.id != current.id:
            raise EmailExists(
                f"Email already exists by email: {candidate_email}",
                detail={"field": "email"},
            )
        return current
