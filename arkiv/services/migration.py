"""Move a tenant's stored assets from one backend to the other.

A run downloads every recorded object from the source backend, uploads it
under the same key to the target, rewrites the record's cached URL and
optionally deletes the source copy. Item failures are counted and reported;
they never abort the run.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from arkiv.db.services import file_service
from arkiv.lib import observability
from arkiv.lib.errors import ArkivError, ConfigurationError, MigrationInProgressError, ValidationError
from arkiv.lib.hooks import MIGRATION_FILE_MIGRATED, MIGRATION_FINISHED, hooks
from arkiv.lib.storage.base import BackendKind, StorageObject, tenant_prefix

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from arkiv.db.models.uploaded_file import UploadedFile
    from arkiv.lib.storage.base import StorageBackend
    from arkiv.lib.storage.manager import StorageManager

logger = logging.getLogger(__name__)

MiB = 1024 * 1024

# Tenants with a migration in flight in this process
_active_migrations: set[str] = set()


class MigrationDirection(str, Enum):
    LOCAL_TO_S3 = "local-to-s3"
    S3_TO_LOCAL = "s3-to-local"

    @property
    def source(self) -> BackendKind:
        return BackendKind.LOCAL if self is MigrationDirection.LOCAL_TO_S3 else BackendKind.S3

    @property
    def target(self) -> BackendKind:
        return BackendKind.S3 if self is MigrationDirection.LOCAL_TO_S3 else BackendKind.LOCAL

    @classmethod
    def parse(cls, value: str | None) -> MigrationDirection:
        try:
            return cls(value)
        except ValueError as exc:
            allowed = " or ".join(f'"{d.value}"' for d in cls)
            raise ValidationError(f"Invalid direction. Must be {allowed}.") from exc


class MigrationStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MigrationProgress:
    """Counters for one run. ``skipped`` is a subset of ``completed``."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    current: str = ""
    status: MigrationStatus = MigrationStatus.IDLE
    errors: list[str] = field(default_factory=list)

    def snapshot(self) -> MigrationProgress:
        return replace(self, errors=list(self.errors))

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "current": self.current,
            "status": self.status.value,
            "errors": list(self.errors),
        }


ProgressObserver = Callable[[MigrationProgress], Awaitable[Any] | Any]
SessionMaker = Callable[[], "AsyncSession"]


def is_migration_running(tenant_id: str) -> bool:
    return tenant_id in _active_migrations


def _etag_matches(etag: str | None, data: bytes) -> bool:
    # Multipart ETags ("<hash>-<parts>") are not an MD5 of the object
    if not etag or "-" in etag:
        return False
    return hashlib.md5(data, usedforsecurity=False).hexdigest() == etag


class MigrationService:
    """One migration, pinned to a direction and a delete-source policy.

    Each URL rewrite runs in its own short session from ``session_maker``, so
    a failure on one file never rolls back another.
    """

    def __init__(
        self,
        storage: StorageManager,
        session_maker: SessionMaker,
        direction: MigrationDirection | str,
        *,
        delete_source: bool = False,
        skip_existing: bool = True,
        worker_limit: int = 4,
        activate: bool = False,
    ) -> None:
        if worker_limit < 1:
            raise ValueError("worker_limit must be at least 1")
        self.storage = storage
        self.session_maker = session_maker
        self.direction = MigrationDirection(direction)
        self.delete_source = delete_source
        self.skip_existing = skip_existing
        self.worker_limit = worker_limit
        self.activate = activate
        self._progress = MigrationProgress()
        self._observer: ProgressObserver | None = None
        self._observer_tasks: set[asyncio.Task] = set()

    @property
    def progress(self) -> MigrationProgress:
        return self._progress.snapshot()

    async def migrate(self, tenant_id: str, on_progress: ProgressObserver | None = None) -> MigrationProgress:
        """Run the migration for ``tenant_id`` and return the final report.

        Raises ``MigrationInProgressError`` when the tenant already has a run
        in flight and ``ConfigurationError`` when either backend is missing or
        the target fails its connection test. Nothing is migrated in those
        cases.
        """
        if self._progress.status is not MigrationStatus.IDLE:
            raise RuntimeError("A MigrationService instance runs only once")
        if tenant_id in _active_migrations:
            raise MigrationInProgressError()
        _active_migrations.add(tenant_id)
        self._observer = on_progress

        try:
            with observability.span(
                "storage.migrate", tenant_id=tenant_id, direction=self.direction.value
            ):
                source, target = await self._prepare()
                return await self._run(tenant_id, source, target)
        finally:
            _active_migrations.discard(tenant_id)

    async def _prepare(self) -> tuple[StorageBackend, StorageBackend]:
        source = await self.storage.get(self.direction.source)
        target = await self.storage.get(self.direction.target)
        status = await target.test_connection()
        if not status.success:
            raise ConfigurationError(
                f"Target storage '{self.direction.target.value}' is not reachable.",
                details={"error": status.error},
            )
        return source, target

    async def _run(self, tenant_id: str, source: StorageBackend, target: StorageBackend) -> MigrationProgress:
        progress = self._progress
        progress.status = MigrationStatus.RUNNING
        self._notify()

        try:
            async with self.session_maker() as session:
                records = await file_service.list_files_for_migration(session, tenant_id)
            progress.total = len(records)
            self._notify()

            existing: dict[str, StorageObject] = {}
            if self.skip_existing and records:
                existing = {obj.key: obj for obj in await target.list(tenant_prefix(tenant_id))}
        except Exception as exc:
            progress.status = MigrationStatus.FAILED
            progress.errors.append(exc.message if isinstance(exc, ArkivError) else "Migration could not start.")
            self._notify()
            raise

        logger.info(
            "Migrating %d files for tenant %s (%s, delete_source=%s)",
            progress.total, tenant_id, self.direction.value, self.delete_source,
        )

        semaphore = asyncio.Semaphore(self.worker_limit)
        await asyncio.gather(
            *(self._migrate_one(semaphore, record, source, target, existing) for record in records)
        )

        progress.status = MigrationStatus.FAILED if progress.failed else MigrationStatus.COMPLETED
        progress.current = ""
        self._notify()

        logger.info(
            "Migration for tenant %s finished: %d completed (%d skipped), %d failed",
            tenant_id, progress.completed, progress.skipped, progress.failed,
        )
        observability.info(
            "storage migration finished",
            tenant_id=tenant_id,
            direction=self.direction.value,
            completed=progress.completed,
            failed=progress.failed,
        )

        if self.activate and not progress.failed:
            await self.storage.activate(self.direction.target)

        report = progress.snapshot()
        await hooks.do_action(MIGRATION_FINISHED, tenant_id, self.direction, report)
        return report

    async def _migrate_one(
        self,
        semaphore: asyncio.Semaphore,
        record: UploadedFile,
        source: StorageBackend,
        target: StorageBackend,
        existing: dict[str, StorageObject],
    ) -> None:
        progress = self._progress
        async with semaphore:
            progress.current = record.file_name
            self._notify()
            try:
                with observability.span("storage.migrate.file", key=record.key):
                    skipped = await self._migrate_file(record, source, target, existing)
            except Exception as exc:
                if isinstance(exc, ArkivError):
                    logger.warning("Migrating %s failed: %r", record.key, exc.__cause__ or exc)
                    message = exc.message
                else:
                    logger.exception("Unexpected error migrating %s", record.key)
                    message = "Unexpected error."
                progress.failed += 1
                progress.errors.append(f"{record.file_name}: {message}")
            else:
                progress.completed += 1
                if skipped:
                    progress.skipped += 1
            self._notify()

    async def _migrate_file(
        self,
        record: UploadedFile,
        source: StorageBackend,
        target: StorageBackend,
        existing: dict[str, StorageObject],
    ) -> bool:
        """Copy one object and rewrite its URL. Returns True when the copy was skipped.

        A target object of the recorded size counts as already copied. When the
        source is about to be deleted, its ETag must also match the source
        bytes, otherwise the object is copied again.
        """
        current = existing.get(record.key) if self.skip_existing else None
        skipped = current is not None and current.size == record.file_size
        data = None
        if skipped and self.delete_source:
            data = await source.download(record.key)
            skipped = _etag_matches(current.etag, data)
            if not skipped:
                logger.info("Re-copying %s: target object could not be verified", record.key)
        if skipped:
            if record.is_public:
                url = await target.get_url(record.key)
            else:
                url = await target.get_url(record.key, expires_in=self.storage.config.s3.presign_ttl)
        else:
            if data is None:
                data = await source.download(record.key)
            result = await target.upload(
                record.key,
                data,
                record.mime_type,
                is_public=record.is_public,
                metadata={
                    "original-url": record.url,
                    "migrated-at": datetime.now(timezone.utc).isoformat(),
                },
            )
            url = result.url

        async with self.session_maker() as session:
            await file_service.update_file_url(session, record.id, url)

        if self.delete_source:
            await source.delete(record.key)

        await hooks.do_action(MIGRATION_FILE_MIGRATED, record, url, skipped)
        return skipped

    def _notify(self) -> None:
        if self._observer is None:
            return
        try:
            result = self._observer(self._progress.snapshot())
        except Exception:
            logger.exception("Migration progress observer raised")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._observer_tasks.add(task)
            task.add_done_callback(self._observer_done)

    def _observer_done(self, task: asyncio.Task) -> None:
        self._observer_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async migration progress observer failed", exc_info=task.exception())


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        return f"{math.ceil(seconds / 60)} minutes"
    return f"{math.ceil(seconds / 3600)} hours"


@dataclass
class MigrationEstimate:
    total_files: int
    total_size: int
    estimated_time: str

    def to_dict(self) -> dict:
        return {
            "totalFiles": self.total_files,
            "totalSize": self.total_size,
            "estimatedTime": self.estimated_time,
        }


async def estimate_migration(
    db_session: AsyncSession,
    tenant_id: str,
    throughput_bytes_per_second: int = MiB,
) -> MigrationEstimate:
    """Rough duration of a full migration at the given throughput."""
    total_files, total_size = await file_service.tenant_usage(db_session, tenant_id)
    seconds = math.ceil(total_size / max(throughput_bytes_per_second, 1))
    return MigrationEstimate(
        total_files=total_files,
        total_size=total_size,
        estimated_time=format_duration(seconds),
    )
