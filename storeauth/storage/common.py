"""Storage contract shared by the account services and store implementations."""

from __future__ import annotations

from typing import List, Optional, Protocol

from storeauth.storage.models import User


class UserStore(Protocol):
    """Persistence collaborator for identities.

    Implementations must reject a ``save`` that would give two identities the
    same username or email by raising ``ConstraintViolation``; the services'
    read-time uniqueness checks are not transactional and rely on it. A save
    carrying the id of an identity that no longer exists is rejected the same
    way, with ``{"field": "id"}``.
    """

    def find_by_username(self, username: str) -> Optional[User]: ...

    def find_by_email(self, email: str) -> Optional[User]: ...

    def save(self, user: User) -> User: ...

    def delete_by_id(self, id: int) -> None: ...

    def find_all(self) -> List[User]: ...


__all__ = ["UserStore"]
