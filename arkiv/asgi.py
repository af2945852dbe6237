"""ASGI application factory for Arkiv.

``create_app()`` builds the Litestar application and wraps it with the local
storage route. ``arkiv.asgi:app`` builds it lazily from the environment so
importing this module never requires a configured ``SECRET_KEY``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from advanced_alchemy.config import EngineConfig
from advanced_alchemy.extensions.litestar import (
    AsyncSessionConfig,
    SQLAlchemyAsyncConfig,
    SQLAlchemyPlugin,
)
from litestar import Litestar
from litestar.types import ASGIApp

from arkiv.config import MiB, Settings, get_settings
from arkiv.controllers.files import FilesController
from arkiv.controllers.media import MediaController
from arkiv.controllers.storage_admin import StorageAdminController
from arkiv.db.base import Base
from arkiv.lib import observability
from arkiv.lib.catalog import CatalogProvider, load_provider
from arkiv.lib.exceptions import exception_handlers
from arkiv.lib.hooks import LOGFIRE_CONFIGURED, hooks
from arkiv.lib.storage import BackendKind, StorageManager
from arkiv.middleware.storage import StorageFilesMiddleware
from arkiv.services.upload import CATEGORIES

# Importing the models registers them on Base.metadata
from arkiv.db.models import UploadedFile  # noqa: F401

logger = logging.getLogger(__name__)


def create_db_config(settings: Settings) -> SQLAlchemyAsyncConfig:
    if "sqlite" in settings.db.url:
        engine_config = EngineConfig(echo=settings.db.echo)
    else:
        engine_config = EngineConfig(
            pool_size=settings.db.pool_size,
            max_overflow=settings.db.pool_overflow,
            pool_timeout=settings.db.pool_timeout,
            pool_pre_ping=settings.db.pool_pre_ping,
            echo=settings.db.echo,
        )

    return SQLAlchemyAsyncConfig(
        connection_string=settings.db.url,
        metadata=Base.metadata,
        create_all=settings.db.create_all,
        session_config=AsyncSessionConfig(expire_on_commit=False),
        engine_config=engine_config,
    )


def max_request_body_size(settings: Settings) -> int:
    """Largest body any upload category may legitimately send, plus form overhead."""
    largest = max(
        [settings.uploads.max_upload_size]
        + [policy.max_size for policy in CATEGORIES.values() if policy.max_size is not None]
    )
    return largest + MiB


def create_litestar_app(
    settings: Settings,
    storage_manager: StorageManager,
    catalog: CatalogProvider,
    db_config: SQLAlchemyAsyncConfig | None = None,
) -> Litestar:
    """Build the Litestar application without the outer ASGI wrappers."""
    db_config = db_config or create_db_config(settings)

    async def on_startup(_app: Litestar) -> None:
        if storage_manager.is_configured(BackendKind.LOCAL):
            Path(settings.storage.local_path).mkdir(parents=True, exist_ok=True)

        observability.instrument_sqlalchemy(db_config.get_engine())
        await hooks.do_action(LOGFIRE_CONFIGURED)
        logger.info("Arkiv started with %s storage", storage_manager.active_kind.value)

    async def on_shutdown(_app: Litestar) -> None:
        await storage_manager.close()

    app = Litestar(
        on_startup=[on_startup],
        on_shutdown=[on_shutdown],
        route_handlers=[FilesController, MediaController, StorageAdminController],
        plugins=[SQLAlchemyPlugin(config=db_config)],
        exception_handlers=exception_handlers,
        request_max_body_size=max_request_body_size(settings),
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.storage_manager = storage_manager
    app.state.catalog = catalog
    app.state.session_factory = db_config.get_session
    return app


def create_app(settings: Settings | None = None, catalog: CatalogProvider | None = None) -> ASGIApp:
    """Create the full ASGI application."""
    settings = settings or get_settings()
    observability.configure(settings)

    storage_manager = StorageManager(settings.storage)
    if catalog is None:
        catalog = load_provider(settings.catalog.provider)

    app = create_litestar_app(settings, storage_manager, catalog)
    return StorageFilesMiddleware(
        observability.instrument_app(app),
        storage=storage_manager,
        secret_key=settings.secret_key,
    )


_app: ASGIApp | None = None


def __getattr__(name: str) -> Any:
    global _app
    if name == "app":
        if _app is None:
            _app = create_app()
        return _app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
