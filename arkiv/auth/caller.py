"""The authenticated caller of a request.

Callers are resolved from a signed bearer token. The tenant id a request
operates on always comes from here, never from request parameters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar import Request
from litestar.exceptions import NotAuthorizedException

from arkiv.auth.roles import ADMINISTRATOR_PERMISSION, permissions_for_role
from arkiv.auth.tokens import verify_signed_token

if TYPE_CHECKING:
    from litestar.connection import ASGIConnection

logger = logging.getLogger(__name__)

_STATE_KEY = "arkiv_caller"


@dataclass(frozen=True)
class Caller:
    tenant_id: str
    user_id: str
    role: str
    permissions: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_elevated(self) -> bool:
        return ADMINISTRATOR_PERMISSION in self.permissions

    def has_permission(self, permission: str) -> bool:
        return self.is_elevated or permission in self.permissions


def caller_from_payload(payload: dict[str, Any]) -> Caller | None:
    tenant_id = payload.get("tenant_id")
    user_id = payload.get("user_id")
    role = payload.get("role")
    if not (isinstance(tenant_id, str) and isinstance(user_id, str) and isinstance(role, str)):
        return None
    if not tenant_id or not user_id:
        return None
    return Caller(
        tenant_id=tenant_id,
        user_id=user_id,
        role=role,
        permissions=frozenset(permissions_for_role(role)),
    )


def resolve_caller(token: str | None, secret: str) -> Caller | None:
    """Verify a bearer token and build the caller it names."""
    if not token:
        return None
    payload = verify_signed_token(token, secret)
    if payload is None:
        logger.debug("Rejected invalid or expired access token")
        return None
    return caller_from_payload(payload)


def bearer_token(headers: Any) -> str | None:
    authorization = headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_caller(connection: ASGIConnection) -> Caller | None:
    """Resolve (and memoize on the connection) the caller for a request."""
    state = connection.scope.setdefault("state", {})
    if _STATE_KEY in state:
        return state[_STATE_KEY]

    secret = connection.app.state.settings.secret_key
    caller = resolve_caller(bearer_token(connection.headers), secret)
    state[_STATE_KEY] = caller
    return caller


async def provide_caller(request: Request) -> Caller:
    """Litestar dependency returning the authenticated caller."""
    caller = get_caller(request)
    if caller is None:
        raise NotAuthorizedException("Authentication required")
    return caller
