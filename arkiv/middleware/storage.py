"""ASGI middleware serving locally stored objects to their own tenant."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import parse_qs

from litestar.datastructures import Headers
from litestar.types import ASGIApp, Receive, Scope, Send

from arkiv.auth.caller import bearer_token, resolve_caller
from arkiv.lib.errors import ArkivError, RangeNotSatisfiableError, StorageIOError, ValidationError
from arkiv.lib.storage.base import BackendKind, tenant_prefix, validate_key
from arkiv.middleware.helpers import send_bytes, send_json_error
from arkiv.services.delivery import TENANT_CACHE_CONTROL, build_delivery

if TYPE_CHECKING:
    from arkiv.lib.storage.manager import StorageManager

logger = logging.getLogger(__name__)


class StorageFilesMiddleware:
    """Serve ``{route_prefix}/{key}`` from the local backend.

    The caller comes from a bearer token, or from a ``token`` query parameter
    so ``<img>`` and ``<video>`` tags can load assets. A key outside
    ``tenants/{caller_tenant}/`` is refused with 403 before anything touches
    the disk, so other tenants cannot even probe for existence.
    """

    def __init__(self, app: ASGIApp, storage: StorageManager, secret_key: str) -> None:
        self.app = app
        self._storage = storage
        self._secret_key = secret_key
        self._prefix = storage.config.route_prefix.rstrip("/") + "/"

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope["path"].startswith(self._prefix):
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        if method not in ("GET", "HEAD"):
            await send_json_error(send, 405, "Method not allowed.", "method_not_allowed", {"Allow": "GET, HEAD"})
            return

        headers = Headers.from_scope(scope)
        token = bearer_token(headers)
        if token is None:
            qs = scope.get("query_string", b"")
            params = parse_qs(qs.decode("latin-1") if isinstance(qs, bytes) else qs)
            token = params.get("token", [None])[0]

        caller = resolve_caller(token, self._secret_key)
        if caller is None:
            await send_json_error(send, 401, "Authentication required.", "unauthorized")
            return

        key = scope["path"][len(self._prefix):]
        if not key.startswith(tenant_prefix(caller.tenant_id)):
            logger.warning("Tenant %s denied access to %s", caller.tenant_id, key)
            await send_json_error(send, 403, "Unauthorized access.", "forbidden")
            return

        try:
            validate_key(key)
        except ValidationError:
            await send_json_error(send, 404, "File not found.", "not_found")
            return

        try:
            backend = await self._storage.get(BackendKind.LOCAL)
            data = await backend.download(key)
            result = build_delivery(
                data,
                file_name=key.rsplit("/", 1)[-1],
                range_header=headers.get("range"),
                cache_control=TENANT_CACHE_CONTROL,
            )
        except RangeNotSatisfiableError as exc:
            await send_json_error(
                send, exc.status_code, exc.message, exc.code, {"Content-Range": f"bytes */{exc.total}"}
            )
            return
        except StorageIOError as exc:
            logger.error("Serving %s failed: %r", key, exc.__cause__ or exc)
            await send_json_error(send, exc.status_code, exc.message, exc.code)
            return
        except ArkivError as exc:
            await send_json_error(send, exc.status_code, exc.message, exc.code)
            return

        body = b"" if method == "HEAD" else result.body
        await send_bytes(send, result.status_code, result.headers, body)
