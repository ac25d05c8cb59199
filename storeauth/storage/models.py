from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class User:
    """A registered store identity.

    ``id`` is the storage key assigned by the store on first save; ``user_id``
    is the external-facing identifier shown to clients. Instances are
    immutable: every transition derives a new value via ``with_changes``.
    """

    username: str
    email: str
    password: str
    first_name: str = ""
    last_name: str = ""
    id: Optional[int] = None
    user_id: str = ""
    profile_image_url: Optional[str] = None
    last_login_date: Optional[datetime] = None
    last_login_date_display: Optional[datetime] = None
    join_date: datetime = field(default_factory=_utcnow)
    role: str = "ROLE_USER"
    authorities: FrozenSet[str] = frozenset()
    is_active: bool = True
    is_not_locked: bool = True

    def with_changes(self, **changes) -> "User":
        """Return a copy with the named fields overridden."""
        return dataclasses.replace(self, **changes)

    def locked(self) -> "User":
        return self.with_changes(is_not_locked=False)

    def record_login(self, now: datetime) -> "User":
        """Shift the previous login into the display slot and stamp ``now``."""
        return self.with_changes(
            last_login_date_display=self.last_login_date,
            last_login_date=now,
        )


__all__ = ["User"]
