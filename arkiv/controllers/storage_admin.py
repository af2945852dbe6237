"""Storage control surface: migration, status, connection tests."""

from __future__ import annotations

import logging

from litestar import Controller, Request, get, post
from litestar.di import Provide
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from arkiv.auth.caller import Caller, provide_caller
from arkiv.auth.guards import Permission, auth_guard
from arkiv.auth.roles import MIGRATE_STORAGE
from arkiv.lib.errors import ConfigurationError
from arkiv.lib.storage.base import BackendKind
from arkiv.lib.storage.manager import StorageManager, parse_backend_kind
from arkiv.services.migration import (
    MigrationDirection,
    MigrationService,
    MigrationStatus,
    estimate_migration,
    is_migration_running,
)

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MigrateRequest(_CamelModel):
    direction: str
    delete_source: bool = False
    skip_existing: bool | None = None
    activate: bool = False


class BackendRequest(_CamelModel):
    backend: str


def _require_target(storage: StorageManager, direction: MigrationDirection) -> None:
    for kind in (direction.source, direction.target):
        if not storage.is_configured(kind):
            raise ConfigurationError(f"Storage backend '{kind.value}' is not configured.")


class StorageAdminController(Controller):
    path = "/api/storage-admin"
    dependencies = {"caller": Provide(provide_caller)}

    @get("/migrate", guards=[auth_guard, Permission(MIGRATE_STORAGE)])
    async def estimate(
        self,
        request: Request,
        db_session: AsyncSession,
        caller: Caller,
        direction: str | None = None,
    ) -> dict:
        """Estimate how long migrating the caller's tenant would take."""
        parsed = MigrationDirection.parse(direction)
        storage: StorageManager = request.app.state.storage_manager
        _require_target(storage, parsed)

        settings = request.app.state.settings
        estimate = await estimate_migration(
            db_session, caller.tenant_id, settings.migration.throughput_bytes_per_second
        )
        return {
            "success": True,
            "direction": parsed.value,
            "estimate": estimate.to_dict(),
            "running": is_migration_running(caller.tenant_id),
        }

    @post("/migrate", guards=[auth_guard, Permission(MIGRATE_STORAGE)], status_code=200)
    async def migrate(self, request: Request, caller: Caller, data: MigrateRequest) -> dict:
        """Run a migration for the caller's tenant and return the final report."""
        parsed = MigrationDirection.parse(data.direction)
        storage: StorageManager = request.app.state.storage_manager
        _require_target(storage, parsed)

        settings = request.app.state.settings
        skip_existing = settings.migration.skip_existing if data.skip_existing is None else data.skip_existing
        service = MigrationService(
            storage,
            request.app.state.session_factory,
            parsed,
            delete_source=data.delete_source,
            skip_existing=skip_existing,
            worker_limit=settings.migration.worker_limit,
            activate=data.activate,
        )

        logger.info("User %s started %s migration for tenant %s", caller.user_id, parsed.value, caller.tenant_id)
        report = await service.migrate(caller.tenant_id)
        return {
            "success": report.status is MigrationStatus.COMPLETED,
            "result": report.to_dict(),
            "activeBackend": storage.active_kind.value,
        }

    @get("/status", guards=[auth_guard, Permission(MIGRATE_STORAGE)])
    async def status(self, request: Request, caller: Caller) -> dict:
        storage: StorageManager = request.app.state.storage_manager
        s3 = storage.config.s3
        return {
            "activeBackend": storage.active_kind.value,
            "configuredBackends": [kind.value for kind in storage.configured_kinds()],
            "backends": {
                BackendKind.LOCAL.value: {
                    "configured": storage.is_configured(BackendKind.LOCAL),
                    "routePrefix": storage.config.route_prefix,
                },
                BackendKind.S3.value: {
                    "configured": storage.is_configured(BackendKind.S3),
                    "bucket": s3.bucket or None,
                    "publicUrl": s3.public_url or None,
                },
            },
            "migrationRunning": is_migration_running(caller.tenant_id),
        }

    @post("/test", guards=[auth_guard, Permission(MIGRATE_STORAGE)], status_code=200)
    async def test_connection(self, request: Request, data: BackendRequest) -> dict:
        storage: StorageManager = request.app.state.storage_manager
        kind = parse_backend_kind(data.backend)
        if not storage.is_configured(kind):
            return {"success": False, "error": f"Storage backend '{kind.value}' is not configured."}
        backend = await storage.get(kind)
        return (await backend.test_connection()).to_dict()

    @post("/activate", guards=[auth_guard, Permission(MIGRATE_STORAGE)], status_code=200)
    async def activate(self, request: Request, caller: Caller, data: BackendRequest) -> dict:
        """Switch which backend receives new uploads."""
        storage: StorageManager = request.app.state.storage_manager
        kind = parse_backend_kind(data.backend)
        backend = await storage.get(kind)
        status = await backend.test_connection()
        if not status.success:
            raise ConfigurationError(
                f"Storage backend '{kind.value}' is not reachable.", details={"error": status.error}
            )
        await storage.activate(kind)
        logger.info("User %s activated storage backend %s", caller.user_id, kind.value)
        return {"success": True, "activeBackend": storage.active_kind.value}
