"""Shared helpers for raw ASGI responses."""

import json

from litestar.types import Send


async def send_bytes(send: Send, status: int, headers: dict[str, str], body: bytes) -> None:
    await send({
        "type": "http.response.start",
        "status": status,
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()],
    })
    await send({"type": "http.response.body", "body": body})


async def send_json_error(
    send: Send,
    status: int,
    error: str,
    code: str,
    headers: dict[str, str] | None = None,
) -> None:
    """Send ``{"error", "code"}`` with the given status."""
    body = json.dumps({"error": error, "code": code}).encode()
    all_headers = {
        "Content-Type": "application/json",
        "Content-Length": str(len(body)),
        "X-Content-Type-Options": "nosniff",
        **(headers or {}),
    }
    await send_bytes(send, status, all_headers, body)
