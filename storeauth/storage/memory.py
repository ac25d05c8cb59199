from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from storeauth.logging import get_logger
from storeauth.storage.errors import ConstraintViolation
from storeauth.storage.models import User


class MemoryUserStore:
    """Thread-safe in-memory user store with optional JSON persistence.

    Username and email uniqueness is enforced inside ``save`` under the data
    lock, so two concurrent registrations that both passed the service-level
    checks cannot both commit.
    """

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self._id_seq: int = 1
        # RLock for all data operations; nested acquisition from _persist_state
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "users.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    def find_by_username(self, username: str) -> Optional[User]:
        if username is None:
            return None
        with self._data_lock:
            return next(
                (u for u in self.users.values() if u.username == username), None
            )

    def find_by_email(self, email: str) -> Optional[User]:
        if email is None:
            return None
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def find_by_id(self, id: int) -> Optional[User]:
        with self._data_lock:
            return self.users.get(id)

    def find_all(self) -> List[User]:
        with self._data_lock:
            return sorted(self.users.values(), key=lambda u: u.id)

    def save(self, user: User) -> User:
        with self._data_lock:
            if user.id is not None and user.id not in self.users:
                # Deleted identities are never resurrected by a stale write
                raise ConstraintViolation(
                    "user no longer exists", {"field": "id", "id": user.id}
                )
            for existing in self.users.values():
                if existing.id == user.id:
                    continue
                if existing.username == user.username:
                    raise ConstraintViolation(
                        "username already exists", {"field": "username"}
                    )
                if existing.email == user.email:
                    raise ConstraintViolation("email already exists", {"field": "email"})
            if user.id is None:
                user = user.with_changes(id=self._id_seq)
                self._id_seq += 1
            self.users[user.id] = user
            self._persist_state()
            return user

    def delete_by_id(self, id: int) -> None:
        with self._data_lock:
            if self.users.pop(id, None) is not None:
                self._persist_state()

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {
            "id_seq": self._id_seq,
            "users": [self._serialize_user(u) for u in self.users.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self._id_seq = max(
            [data.get("id_seq", 1)] + [uid + 1 for uid in self.users]
        )
        self.logger.info("user_store_loaded", users=len(self.users), path=str(path))
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "user_id": user.user_id,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "username": user.username,
            "password": user.password,
            "email": user.email,
            "profile_image_url": user.profile_image_url,
            "last_login_date": self._serialize_datetime(user.last_login_date),
            "last_login_date_display": self._serialize_datetime(
                user.last_login_date_display
            ),
            "join_date": self._serialize_datetime(user.join_date),
            "role": user.role,
            "authorities": sorted(user.authorities),
            "is_active": user.is_active,
            "is_not_locked": user.is_not_locked,
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=int(data["id"]),
            user_id=data.get("user_id", ""),
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
            username=data["username"],
            password=data["password"],
            email=data["email"],
            profile_image_url=data.get("profile_image_url"),
            last_login_date=self._deserialize_datetime(data.get("last_login_date")),
            last_login_date_display=self._deserialize_datetime(
                data.get("last_login_date_display")
            ),
            join_date=self._deserialize_datetime(data["join_date"]),
            role=data.get("role", "ROLE_USER"),
            authorities=frozenset(data.get("authorities", [])),
            is_active=data.get("is_active", True),
            is_not_locked=data.get("is_not_locked", True),
        )
