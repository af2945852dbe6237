"""Tests for the auth guards module."""

from unittest.mock import MagicMock

import pytest
from litestar.exceptions import NotAuthorizedException, PermissionDeniedException

from arkiv.auth.caller import Caller
from arkiv.auth.guards import (
    ADMINISTRATOR_PERMISSION,
    AndRequirement,
    OrRequirement,
    Permission,
    Role,
    auth_guard,
)
from arkiv.auth.roles import (
    MIGRATE_STORAGE,
    UPLOAD_MEDIA,
    VIEW_MEDIA,
    ROLE_DEFINITIONS,
    permissions_for_role,
    register_role,
)
from arkiv.auth.tokens import create_access_token

SECRET = "guard-secret"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_caller(role: str = "instructor", permissions: set[str] | None = None) -> Caller:
    return Caller(
        tenant_id="t1",
        user_id="user-1",
        role=role,
        permissions=frozenset(permissions or set()),
    )


def _make_connection(role: str | None = None):
    connection = MagicMock()
    connection.scope = {"state": {}}
    connection.app.state.settings.secret_key = SECRET
    headers = {}
    if role is not None:
        headers["authorization"] = f"Bearer {create_access_token('t1', 'user-1', role, SECRET)}"
    connection.headers = headers
    return connection


def _make_route_handler(guards: list | None = None):
    handler = MagicMock()
    handler.guards = guards
    return handler


# ===========================================================================
# Requirement checks
# ===========================================================================

class TestPermissionCheck:
    async def test_has_permission(self):
        caller = _make_caller(permissions={UPLOAD_MEDIA, VIEW_MEDIA})
        assert await Permission(UPLOAD_MEDIA).check(caller) is True

    async def test_does_not_have_permission(self):
        caller = _make_caller(permissions={VIEW_MEDIA})
        assert await Permission(UPLOAD_MEDIA).check(caller) is False

    async def test_administrator_bypass(self):
        caller = _make_caller(permissions={ADMINISTRATOR_PERMISSION})
        assert await Permission("some_obscure_permission").check(caller) is True


class TestRoleCheck:
    async def test_has_role(self):
        assert await Role("instructor").check(_make_caller(role="instructor")) is True

    async def test_does_not_have_role(self):
        assert await Role("admin").check(_make_caller(role="learner")) is False

    async def test_administrator_bypass(self):
        caller = _make_caller(role="custom", permissions={ADMINISTRATOR_PERMISSION})
        assert await Role("instructor").check(caller) is True


class TestComposition:
    async def test_or_requirement(self):
        caller = _make_caller(permissions={VIEW_MEDIA})

        assert await OrRequirement(Permission(UPLOAD_MEDIA), Permission(VIEW_MEDIA)).check(caller) is True
        assert await OrRequirement(Permission(UPLOAD_MEDIA), Permission(MIGRATE_STORAGE)).check(caller) is False

    async def test_and_requirement(self):
        caller = _make_caller(role="instructor", permissions={UPLOAD_MEDIA})

        assert await AndRequirement(Permission(UPLOAD_MEDIA), Role("instructor")).check(caller) is True
        assert await AndRequirement(Permission(UPLOAD_MEDIA), Role("admin")).check(caller) is False

    def test_operators_build_composites(self):
        either = Permission("a") | Permission("b")
        both = Permission("a") & Role("admin")
        chained = Permission("a") | Permission("b") | Permission("c")

        assert isinstance(either, OrRequirement)
        assert isinstance(both, AndRequirement)
        assert both.right.role == "admin"
        assert isinstance(chained.left, OrRequirement)


# ===========================================================================
# auth_guard()
# ===========================================================================

class TestAuthGuard:
    async def test_missing_token_raises(self):
        with pytest.raises(NotAuthorizedException, match="Authentication required"):
            await auth_guard(_make_connection(), _make_route_handler())

    async def test_invalid_token_raises(self):
        connection = _make_connection()
        connection.headers = {"authorization": "Bearer forged.token"}

        with pytest.raises(NotAuthorizedException):
            await auth_guard(connection, _make_route_handler())

    async def test_authenticated_without_requirements(self):
        handler = _make_route_handler(guards=[MagicMock()])
        assert await auth_guard(_make_connection("learner"), handler) is None

    async def test_requirements_met(self):
        handler = _make_route_handler(guards=[auth_guard, Permission(UPLOAD_MEDIA)])
        assert await auth_guard(_make_connection("instructor"), handler) is None

    async def test_requirements_not_met(self):
        handler = _make_route_handler(guards=[auth_guard, Permission(UPLOAD_MEDIA)])
        with pytest.raises(PermissionDeniedException, match="Insufficient permissions"):
            await auth_guard(_make_connection("learner"), handler)

    async def test_admin_passes_everything(self):
        handler = _make_route_handler(guards=[Permission(MIGRATE_STORAGE), Role("instructor")])
        assert await auth_guard(_make_connection("admin"), handler) is None

    async def test_caller_is_memoized_on_the_connection(self):
        connection = _make_connection("instructor")
        await auth_guard(connection, _make_route_handler())

        assert connection.scope["state"]["arkiv_caller"].role == "instructor"

    async def test_requirement_objects_are_inert_when_called(self):
        assert await Permission(UPLOAD_MEDIA)(MagicMock(), MagicMock()) is None


class TestRoles:
    def test_builtin_role_permissions(self):
        assert permissions_for_role("learner") == {VIEW_MEDIA}
        assert UPLOAD_MEDIA in permissions_for_role("instructor")
        assert MIGRATE_STORAGE not in permissions_for_role("instructor")
        assert ADMINISTRATOR_PERMISSION in permissions_for_role("admin")

    def test_unknown_role_grants_nothing(self):
        assert permissions_for_role("nobody") == set()

    def test_register_role(self):
        role = register_role("auditor-test", VIEW_MEDIA, MIGRATE_STORAGE)
        try:
            assert role.display_name == "Auditor-Test"
            assert permissions_for_role("auditor-test") == {VIEW_MEDIA, MIGRATE_STORAGE}
        finally:
            ROLE_DEFINITIONS.pop("auditor-test", None)
