"""Storage manager: builds the two backends and tracks which one takes new writes."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from arkiv.lib.errors import ConfigurationError
from arkiv.lib.hooks import STORAGE_BACKEND_ACTIVATED, hooks
from arkiv.lib.storage.base import BackendKind
from arkiv.lib.storage.local import LocalStorageBackend
from arkiv.lib.storage.s3 import S3StorageBackend

if TYPE_CHECKING:
    from arkiv.config import StorageConfig
    from arkiv.lib.storage.base import StorageBackend

logger = logging.getLogger(__name__)


def parse_backend_kind(value: str | BackendKind) -> BackendKind:
    try:
        return BackendKind(value)
    except ValueError as exc:
        raise ConfigurationError(
            f"Unknown storage backend '{value}'. Use 'local' or 's3'."
        ) from exc


class StorageManager:
    """Lazily creates and caches the local and S3 backends.

    Only one backend is *active* at a time; that is the one business logic
    receives from ``get()``. Switching happens through ``activate()``, either
    at the end of a clean migration or from the storage control surface.
    """

    def __init__(self, config: StorageConfig) -> None:
        self._config = config
        self._active = parse_backend_kind(config.backend)
        self._backends: dict[BackendKind, StorageBackend] = {}

    @property
    def config(self) -> StorageConfig:
        return self._config

    @property
    def active_kind(self) -> BackendKind:
        return self._active

    def is_configured(self, kind: BackendKind | str) -> bool:
        kind = parse_backend_kind(kind)
        if kind is BackendKind.LOCAL:
            return bool(self._config.local_path)
        return self._config.s3.is_configured

    def configured_kinds(self) -> list[BackendKind]:
        return [kind for kind in BackendKind if self.is_configured(kind)]

    async def get(self, kind: BackendKind | str | None = None) -> StorageBackend:
        """Return the backend for *kind* (the active one by default)."""
        kind = parse_backend_kind(kind) if kind is not None else self._active
        if not self.is_configured(kind):
            raise ConfigurationError(f"Storage backend '{kind.value}' is not configured.")
        if kind not in self._backends:
            self._backends[kind] = create_storage_backend(kind, self._config)
        return self._backends[kind]

    async def activate(self, kind: BackendKind | str) -> None:
        kind = parse_backend_kind(kind)
        if not self.is_configured(kind):
            raise ConfigurationError(f"Storage backend '{kind.value}' is not configured.")
        previous = self._active
        self._active = kind
        if previous is not kind:
            logger.info("Active storage backend switched from %s to %s", previous.value, kind.value)
            await hooks.do_action(STORAGE_BACKEND_ACTIVATED, kind, previous)

    async def close(self) -> None:
        """Release resources held by backends."""
        for backend in self._backends.values():
            close = getattr(backend, "close", None)
            if close is not None:
                await close()
        self._backends.clear()


def create_storage_backend(kind: BackendKind, config: StorageConfig) -> StorageBackend:
    """Instantiate a storage backend from configuration."""
    if kind is BackendKind.LOCAL:
        return LocalStorageBackend(
            base_path=Path(config.local_path),
            route_prefix=config.route_prefix,
        )
    return S3StorageBackend(config.s3)
