"""Tests for the fixed role set and role name resolution."""

import pytest

from storeauth.service.errors import UnknownRole
from storeauth.service.roles import (
    DEFAULT_ROLE,
    ROLE_AUTHORITIES,
    USER_CREATE,
    USER_DELETE,
    USER_READ,
    USER_UPDATE,
    Role,
    authorities_for,
    resolve_role,
)


class TestRoleAuthorities:
    def test_every_role_has_authorities(self):
        assert set(ROLE_AUTHORITIES) == set(Role)

    @pytest.mark.parametrize(
        "role,expected",
        [
            (Role.ROLE_USER, {USER_READ}),
            (Role.ROLE_HR, {USER_READ, USER_UPDATE}),
            (Role.ROLE_MANAGER, {USER_READ, USER_UPDATE}),
            (Role.ROLE_ADMIN, {USER_READ, USER_CREATE, USER_UPDATE}),
            (Role.ROLE_SUPER_ADMIN, {USER_READ, USER_CREATE, USER_UPDATE, USER_DELETE}),
        ],
    )
    def test_role_grants(self, role, expected):
        assert role.authorities == frozenset(expected)

    def test_only_super_admin_can_delete(self):
        holders = [role for role in Role if USER_DELETE in role.authorities]
        assert holders == [Role.ROLE_SUPER_ADMIN]

    def test_mapping_is_read_only(self):
        with pytest.raises(TypeError):
            ROLE_AUTHORITIES[Role.ROLE_USER] = frozenset({USER_DELETE})

    def test_default_role_is_user(self):
        assert DEFAULT_ROLE is Role.ROLE_USER


class TestResolveRole:
    def test_exact_name(self):
        assert resolve_role("ROLE_ADMIN") is Role.ROLE_ADMIN

    def test_case_insensitive(self):
        assert resolve_role("role_manager") is Role.ROLE_MANAGER
        assert resolve_role("  Role_Hr ") is Role.ROLE_HR

    def test_unknown_name_rejected(self):
        with pytest.raises(UnknownRole) as exc_info:
            resolve_role("ROLE_OWNER")
        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == {"role": "ROLE_OWNER"}

    def test_empty_name_rejected(self):
        with pytest.raises(UnknownRole):
            resolve_role("")

    def test_non_string_rejected(self):
        with pytest.raises(UnknownRole):
            resolve_role(None)

    def test_authorities_for(self):
        assert authorities_for("role_super_admin") == frozenset(
            {USER_READ, USER_CREATE, USER_UPDATE, USER_DELETE}
        )
