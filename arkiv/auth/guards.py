"""Litestar guards built on composable permission requirements.

    guards=[auth_guard, Permission("upload-media") | Permission("manage-media")]

``auth_guard`` authenticates the caller and evaluates every
``AuthRequirement`` found in the handler's guard list; the requirement objects
themselves are inert when Litestar calls them directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from litestar.exceptions import NotAuthorizedException, PermissionDeniedException

from arkiv.auth.caller import Caller, get_caller
from arkiv.auth.roles import ADMINISTRATOR_PERMISSION

if TYPE_CHECKING:
    from litestar.connection import ASGIConnection
    from litestar.handlers.base import BaseRouteHandler

__all__ = [
    "ADMINISTRATOR_PERMISSION",
    "AndRequirement",
    "AuthRequirement",
    "OrRequirement",
    "Permission",
    "Role",
    "auth_guard",
]


class AuthRequirement(ABC):
    @abstractmethod
    async def check(self, caller: Caller) -> bool:
        ...

    def __or__(self, other: AuthRequirement) -> OrRequirement:
        return OrRequirement(self, other)

    def __and__(self, other: AuthRequirement) -> AndRequirement:
        return AndRequirement(self, other)

    async def __call__(self, connection: ASGIConnection, handler: BaseRouteHandler) -> None:
        # Evaluated by auth_guard once the caller is known
        return None


class Permission(AuthRequirement):
    def __init__(self, permission: str) -> None:
        self.permission = permission

    async def check(self, caller: Caller) -> bool:
        return caller.has_permission(self.permission)


class Role(AuthRequirement):
    def __init__(self, role: str) -> None:
        self.role = role

    async def check(self, caller: Caller) -> bool:
        return caller.is_elevated or caller.role == self.role


class OrRequirement(AuthRequirement):
    def __init__(self, left: AuthRequirement, right: AuthRequirement) -> None:
        self.left = left
        self.right = right

    async def check(self, caller: Caller) -> bool:
        return await self.left.check(caller) or await self.right.check(caller)


class AndRequirement(AuthRequirement):
    def __init__(self, left: AuthRequirement, right: AuthRequirement) -> None:
        self.left = left
        self.right = right

    async def check(self, caller: Caller) -> bool:
        return await self.left.check(caller) and await self.right.check(caller)


async def auth_guard(connection: ASGIConnection, handler: BaseRouteHandler) -> None:
    """Require an authenticated caller satisfying the handler's requirements."""
    caller = get_caller(connection)
    if caller is None:
        raise NotAuthorizedException("Authentication required")

    requirements = [g for g in (handler.guards or []) if isinstance(g, AuthRequirement)]
    for requirement in requirements:
        if not await requirement.check(caller):
            raise PermissionDeniedException("Insufficient permissions")
