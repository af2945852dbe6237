"""Litestar exception handlers rendering errors as ``{error, code, details?}`` JSON."""

import logging

from litestar import Request, Response
from litestar.exceptions import HTTPException
from litestar.status_codes import HTTP_500_INTERNAL_SERVER_ERROR

from arkiv.lib import observability
from arkiv.lib.errors import ArkivError, RangeNotSatisfiableError, StorageIOError

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    415: "unsupported_type",
}


def arkiv_exception_handler(request: Request, exc: ArkivError) -> Response:
    """Render domain errors with their own status and public message."""
    if isinstance(exc, StorageIOError):
        logger.error("Storage error on %s %s: %r", request.method, request.url.path, exc.__cause__ or exc)

    headers = {}
    if isinstance(exc, RangeNotSatisfiableError):
        headers["Content-Range"] = f"bytes */{exc.total}"

    return Response(
        content=exc.to_dict(),
        status_code=exc.status_code,
        media_type="application/json",
        headers=headers,
    )


def http_exception_handler(request: Request, exc: HTTPException) -> Response:
    """Render framework HTTP errors (auth guards, routing, validation) as JSON."""
    status_code = exc.status_code
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    body: dict = {"error": detail, "code": _HTTP_CODES.get(status_code, "http_error")}
    extra = getattr(exc, "extra", None)
    if extra:
        body["details"] = extra
    return Response(content=body, status_code=status_code, media_type="application/json")


def internal_server_error_handler(request: Request, exc: Exception) -> Response:
    """Log unexpected exceptions in full and return a generic 500."""
    if not observability.exception(
        "Unhandled exception on {method} {path}", method=request.method, path=request.url.path
    ):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    return Response(
        content={"error": "An unexpected error occurred.", "code": "internal_error"},
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/json",
    )


exception_handlers = {
    ArkivError: arkiv_exception_handler,
    HTTPException: http_exception_handler,
    Exception: internal_server_error_handler,
}
