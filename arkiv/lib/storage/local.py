"""Local filesystem storage backend."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path

from arkiv.lib.errors import NotFoundError, ReadError, ValidationError, WriteError
from arkiv.lib.storage.base import (
    BackendKind,
    ConnectionStatus,
    StorageObject,
    UploadResult,
    validate_key,
)

logger = logging.getLogger(__name__)

_HEALTHCHECK_DIR = ".arkiv-healthcheck"


class LocalStorageBackend:
    """Store objects as files under ``base_path``, one file per key.

    The key maps directly onto the directory layout, so a key such as
    ``tenants/t1/courses/course/42/cover.jpg`` lives at
    ``{base_path}/tenants/t1/courses/course/42/cover.jpg``. Writes go to a
    temporary file in the target directory and are moved into place with
    ``os.replace``, so readers never observe a partially written object.
    """

    kind = BackendKind.LOCAL

    def __init__(self, base_path: Path, route_prefix: str = "/api/storage") -> None:
        self._base_path = Path(base_path)
        self._route_prefix = route_prefix.rstrip("/")

    @property
    def base_path(self) -> Path:
        return self._base_path

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        is_public: bool = False,
        metadata: dict[str, str] | None = None,
    ) -> UploadResult:
        path = self._key_to_path(key)
        try:
            await asyncio.to_thread(self._write_file, path, data)
        except OSError as exc:
            logger.error("Local write failed for %s at %s: %s", key, path, exc)
            raise WriteError() from exc
        return UploadResult(key=key, url=self._build_url(key), size=len(data))

    async def download(self, key: str) -> bytes:
        path = self._key_to_path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise NotFoundError() from exc
        except OSError as exc:
            logger.error("Local read failed for %s at %s: %s", key, path, exc)
            raise ReadError() from exc

    async def delete(self, key: str, *, strict: bool = False) -> None:
        path = self._key_to_path(key)
        try:
            removed = await asyncio.to_thread(self._unlink, path)
        except OSError as exc:
            logger.error("Local delete failed for %s at %s: %s", key, path, exc)
            raise WriteError("Failed to delete file.") from exc
        if strict and not removed:
            raise NotFoundError()

    async def delete_many(self, keys: list[str]) -> None:
        await asyncio.gather(*(self.delete(key) for key in keys))

    async def exists(self, key: str) -> bool:
        path = self._key_to_path(key)
        return await asyncio.to_thread(path.is_file)

    async def get_url(self, key: str, expires_in: int | None = None) -> str:
        # Local objects are served through the tenant-checked storage route;
        # expiry does not apply.
        return self._build_url(validate_key(key))

    async def list(self, prefix: str = "") -> list[StorageObject]:
        if ".." in prefix.split("/") or prefix.startswith("/"):
            raise ValidationError("Invalid storage prefix.")
        return await asyncio.to_thread(self._walk, prefix)

    async def test_connection(self) -> ConnectionStatus:
        try:
            await asyncio.to_thread(self._round_trip)
        except OSError as exc:
            logger.warning("Local storage health check failed: %s", exc)
            return ConnectionStatus(success=False, error="Local storage is not writable")
        return ConnectionStatus(success=True)

    # -- internal helpers --

    def _key_to_path(self, key: str) -> Path:
        validate_key(key)
        path = self._base_path.joinpath(*key.split("/"))
        if not path.resolve().is_relative_to(self._base_path.resolve()):
            raise ValidationError("Invalid storage key.")
        return path

    def _build_url(self, key: str) -> str:
        return f"{self._route_prefix}/{key}"

    @staticmethod
    def _write_file(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        self._prune_empty_dirs(path.parent)
        return True

    def _prune_empty_dirs(self, directory: Path) -> None:
        base = self._base_path.resolve()
        current = directory.resolve()
        while current != base and current.is_relative_to(base):
            try:
                current.rmdir()
            except OSError:
                # Not empty (or already gone); stop climbing
                return
            current = current.parent

    def _walk(self, prefix: str) -> list[StorageObject]:
        base = self._base_path
        if not base.exists():
            return []

        # Start from the deepest directory the prefix fully names
        directory_part = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        root = base.joinpath(*directory_part.split("/")) if directory_part else base
        if not root.is_dir():
            return []

        objects = []
        for path in root.rglob("*"):
            if not path.is_file() or path.name.endswith(".tmp"):
                continue
            key = path.relative_to(base).as_posix()
            if key.startswith(_HEALTHCHECK_DIR) or not key.startswith(prefix):
                continue
            stat = path.stat()
            objects.append(
                StorageObject(
                    key=key,
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        objects.sort(key=lambda obj: obj.key)
        return objects

    def _round_trip(self) -> None:
        probe_dir = self._base_path / _HEALTHCHECK_DIR
        probe_dir.mkdir(parents=True, exist_ok=True)
        probe = probe_dir / f"{uuid.uuid4().hex}.txt"
        probe.write_bytes(b"ok")
        try:
            if probe.read_bytes() != b"ok":
                raise OSError("health check read back different bytes")
        finally:
            probe.unlink(missing_ok=True)
            try:
                probe_dir.rmdir()
            except OSError:
                pass
