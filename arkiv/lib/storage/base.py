"""Storage backend protocol and common types."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from arkiv.lib.errors import ValidationError


class BackendKind(str, Enum):
    LOCAL = "local"
    S3 = "s3"


@dataclass
class UploadResult:
    """What a backend reports back after storing an object."""

    key: str
    url: str
    size: int
    etag: str | None = None


@dataclass
class StorageObject:
    """A listed object."""

    key: str
    size: int
    last_modified: datetime
    etag: str | None = None


@dataclass
class ConnectionStatus:
    success: bool
    error: str | None = None

    def to_dict(self) -> dict:
        body: dict = {"success": self.success}
        if self.error:
            body["error"] = self.error
        return body


@runtime_checkable
class StorageBackend(Protocol):
    """Interface implemented identically by every storage backend.

    Keys are opaque, backend-agnostic strings such as
    ``tenants/{tenant}/{category}/{entity_type}/{entity_id}/{filename}``.
    """

    kind: BackendKind

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        is_public: bool = False,
        metadata: dict[str, str] | None = None,
    ) -> UploadResult:
        """Store data under the given key, replacing any existing object."""
        ...

    async def download(self, key: str) -> bytes:
        """Retrieve the raw bytes for a key."""
        ...

    async def delete(self, key: str, *, strict: bool = False) -> None:
        """Remove a key. Missing keys are ignored unless ``strict``."""
        ...

    async def delete_many(self, keys: list[str]) -> None:
        """Remove several keys, ignoring ones that are already gone."""
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def get_url(self, key: str, expires_in: int | None = None) -> str:
        """Return a public or signed URL for the key."""
        ...

    async def list(self, prefix: str = "") -> list[StorageObject]:
        """Return every object whose key starts with ``prefix``."""
        ...

    async def test_connection(self) -> ConnectionStatus:
        ...


_SEGMENT = re.compile(r"^[A-Za-z0-9_.\-]+$")


def validate_key(key: str) -> str:
    """Reject keys that could escape the key space or a storage root."""
    if not key or key.startswith("/") or "\\" in key or "\x00" in key:
        raise ValidationError("Invalid storage key.")
    for segment in key.split("/"):
        if segment in ("", ".", "..") or not _SEGMENT.match(segment):
            raise ValidationError("Invalid storage key.")
    return key


def tenant_prefix(tenant_id: str) -> str:
    return f"tenants/{tenant_id}/"


def build_key(
    tenant_id: str,
    category: str,
    entity_type: str,
    entity_id: str,
    filename: str,
) -> str:
    """Compose an asset key. Every part must be a single safe path segment."""
    key = "/".join(("tenants", tenant_id, category, entity_type, entity_id, filename))
    return validate_key(key)
