"""Swappable asset storage: local filesystem or S3-compatible object storage."""

from arkiv.lib.storage.base import (
    BackendKind,
    ConnectionStatus,
    StorageBackend,
    StorageObject,
    UploadResult,
    build_key,
    tenant_prefix,
    validate_key,
)
from arkiv.lib.storage.local import LocalStorageBackend
from arkiv.lib.storage.manager import StorageManager
from arkiv.lib.storage.s3 import S3StorageBackend

__all__ = [
    "BackendKind",
    "ConnectionStatus",
    "LocalStorageBackend",
    "S3StorageBackend",
    "StorageBackend",
    "StorageManager",
    "StorageObject",
    "UploadResult",
    "build_key",
    "tenant_prefix",
    "validate_key",
]
