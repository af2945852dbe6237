"""HMAC-SHA256 signed bearer tokens.

A token is ``base64url(json_payload).base64url(signature)``. Access tokens
carry ``tenant_id``, ``user_id``, ``role`` and an ``exp`` timestamp.
"""

import base64
import binascii
import hashlib
import hmac
import json
import time


def _sign(secret: str, payload_b64: str) -> bytes:
    return hmac.new(secret.encode(), payload_b64.encode(), hashlib.sha256).digest()


def create_signed_token(payload: dict, secret: str, expires_in: int) -> str:
    """Sign ``payload`` with an expiry ``expires_in`` seconds from now."""
    payload = {**payload, "exp": int(time.time()) + expires_in}
    payload_bytes = json.dumps(payload, separators=(",", ":")).encode()
    payload_b64 = base64.urlsafe_b64encode(payload_bytes).decode()
    sig_b64 = base64.urlsafe_b64encode(_sign(secret, payload_b64)).decode()
    return f"{payload_b64}.{sig_b64}"


def verify_signed_token(token: str, secret: str) -> dict | None:
    """Return the decoded payload, or ``None`` for malformed, tampered or expired tokens."""
    parts = token.split(".")
    if len(parts) != 2:
        return None
    payload_b64, sig_b64 = parts

    try:
        actual_sig = base64.urlsafe_b64decode(sig_b64)
    except (binascii.Error, ValueError):
        return None
    if not hmac.compare_digest(_sign(secret, payload_b64), actual_sig):
        return None

    try:
        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(payload, dict):
        return None

    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or time.time() > exp:
        return None
    return payload


def create_access_token(
    tenant_id: str,
    user_id: str,
    role: str,
    secret: str,
    expires_in: int = 3600,
) -> str:
    return create_signed_token(
        {"tenant_id": tenant_id, "user_id": user_id, "role": role},
        secret,
        expires_in,
    )
