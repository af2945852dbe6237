"""Shared pytest fixtures."""

import asyncio
import hashlib
from collections import defaultdict
from datetime import datetime, timezone

import pytest
import yaml
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from arkiv.auth.tokens import create_access_token
from arkiv.config import DatabaseConfig, S3Config, Settings, StorageConfig
from arkiv.db.base import Base
from arkiv.db.models import UploadedFile  # noqa: F401
from arkiv.lib.errors import NotFoundError, WriteError
from arkiv.lib.hooks import hooks
from arkiv.lib.storage import (
    BackendKind,
    ConnectionStatus,
    StorageManager,
    StorageObject,
    UploadResult,
    validate_key,
)

SECRET = "test-secret-key"
TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


class MemoryBackend:
    """Dictionary-backed stand-in for the S3 backend.

    ``delay`` slows uploads down so tests can observe concurrency;
    ``fail_keys`` makes individual uploads raise ``WriteError``.
    """

    kind = BackendKind.S3

    def __init__(self, base_url: str = "https://cdn.test"):
        self.base_url = base_url
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict] = {}
        self.fail_keys: set[str] = set()
        self.healthy = True
        self.delay = 0.0
        self.active = 0
        self.max_active = 0

    async def upload(self, key, data, content_type, *, is_public=False, metadata=None):
        validate_key(key)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if key in self.fail_keys:
                raise WriteError()
            self.objects[key] = data
            self.metadata[key] = dict(metadata or {})
        finally:
            self.active -= 1
        url = await self.get_url(key, expires_in=None if is_public else 3600)
        return UploadResult(key=key, url=url, size=len(data))

    async def download(self, key):
        if key not in self.objects:
            raise NotFoundError()
        return self.objects[key]

    async def delete(self, key, *, strict=False):
        if self.objects.pop(key, None) is None and strict:
            raise NotFoundError()

    async def delete_many(self, keys):
        for key in keys:
            self.objects.pop(key, None)

    async def exists(self, key):
        return key in self.objects

    async def get_url(self, key, expires_in=None):
        url = f"{self.base_url}/{key}"
        return url if expires_in is None else f"{url}?expires={expires_in}"

    async def list(self, prefix=""):
        now = datetime.now(timezone.utc)
        return [
            StorageObject(key=key, size=len(data), last_modified=now, etag=hashlib.md5(data).hexdigest())
            for key, data in sorted(self.objects.items())
            if key.startswith(prefix)
        ]

    async def test_connection(self):
        if self.healthy:
            return ConnectionStatus(success=True)
        return ConnectionStatus(success=False, error="Bucket probe failed (AccessDenied)")


@pytest.fixture(autouse=True)
def clean_hooks():
    """Save and restore hooks state around every test."""
    original_filters = {name: list(handlers) for name, handlers in hooks._filters.items()}
    original_actions = {name: list(handlers) for name, handlers in hooks._actions.items()}
    yield
    hooks._filters = defaultdict(list, original_filters)
    hooks._actions = defaultdict(list, original_actions)


@pytest.fixture(autouse=True)
def clean_migration_registry():
    from arkiv.services import migration

    migration._active_migrations.clear()
    yield
    migration._active_migrations.clear()


@pytest.fixture
def temp_app_yaml(tmp_path):
    """Create a temporary app.yaml file for testing."""
    config_path = tmp_path / "app.yaml"

    def _create_config(config: dict):
        with open(config_path, "w") as f:
            yaml.safe_dump(config, f)
        return config_path

    return _create_config


@pytest.fixture
def s3_config():
    return S3Config(
        access_key_id="test-access",
        secret_access_key="test-secret",
        bucket="media",
        endpoint_url="https://s3.test",
        public_url="https://cdn.test",
    )


@pytest.fixture
def settings(tmp_path, s3_config):
    return Settings(
        secret_key=SECRET,
        db=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'arkiv.db'}", create_all=True),
        storage=StorageConfig(
            backend="local",
            local_path=str(tmp_path / "storage"),
            route_prefix="/api/storage",
            s3=s3_config,
        ),
    )


@pytest.fixture
def s3_backend():
    return MemoryBackend()


@pytest.fixture
def storage(settings, s3_backend):
    """A manager whose local backend is real and whose S3 backend is in memory."""
    manager = StorageManager(settings.storage)
    manager._backends[BackendKind.S3] = s3_backend
    return manager


@pytest.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'services.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def make_token():
    def _make(role: str = "instructor", tenant_id: str = TENANT, user_id: str = "user-1", expires_in: int = 3600):
        return create_access_token(tenant_id, user_id, role, SECRET, expires_in=expires_in)

    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(role: str = "instructor", tenant_id: str = TENANT, user_id: str = "user-1"):
        return {"Authorization": f"Bearer {make_token(role, tenant_id, user_id)}"}

    return _headers
