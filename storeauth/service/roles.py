"""Closed role set and the authorities each role grants."""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping

from storeauth.service.errors import UnknownRole

USER_READ = "user:read"
USER_CREATE = "user:create"
USER_UPDATE = "user:update"
USER_DELETE = "user:delete"


class Role(str, Enum):
    ROLE_USER = "ROLE_USER"
    ROLE_HR = "ROLE_HR"
    ROLE_MANAGER = "ROLE_MANAGER"
    ROLE_ADMIN = "ROLE_ADMIN"
    ROLE_SUPER_ADMIN = "ROLE_SUPER_ADMIN"

    @property
    def authorities(self) -> FrozenSet[str]:
        return ROLE_AUTHORITIES[self]


ROLE_AUTHORITIES: Mapping[Role, FrozenSet[str]] = MappingProxyType(
    {
        Role.ROLE_USER: frozenset({USER_READ}),
        Role.ROLE_HR: frozenset({USER_READ, USER_UPDATE}),
        Role.ROLE_MANAGER: frozenset({USER_READ, USER_UPDATE}),
        Role.ROLE_ADMIN: frozenset({USER_READ, USER_CREATE, USER_UPDATE}),
        Role.ROLE_SUPER_ADMIN: frozenset(
            {USER_READ, USER_CREATE, USER_UPDATE, USER_DELETE}
        ),
    }
)

DEFAULT_ROLE = Role.ROLE_USER


def resolve_role(role_name: str) -> Role:
    """Match ``role_name`` against the fixed roles, ignoring case."""
    if not isinstance(role_name, str):
        raise UnknownRole("unknown role", detail={"role": role_name})
    try:
        return Role(role_name.strip().upper())
    except ValueError as exc:
        raise UnknownRole(f"unknown role: {role_name}", detail={"role": role_name}) from exc


def authorities_for(role_name: str) -> FrozenSet[str]:
    return resolve_role(role_name).authorities


__all__ = [
    "Role",
    "ROLE_AUTHORITIES",
    "DEFAULT_ROLE",
    "USER_READ",
    "USER_CREATE",
    "USER_UPDATE",
    "USER_DELETE",
    "resolve_role",
    "authorities_for",
]
