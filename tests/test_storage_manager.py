"""Tests for the storage manager and backend selection."""

import pytest

from arkiv.config import S3Config, StorageConfig
from arkiv.lib.errors import ConfigurationError
from arkiv.lib.hooks import STORAGE_BACKEND_ACTIVATED, hooks
from arkiv.lib.storage import BackendKind, LocalStorageBackend, S3StorageBackend, StorageManager
from arkiv.lib.storage.manager import parse_backend_kind


def _config(tmp_path, **overrides):
    values = {"backend": "local", "local_path": str(tmp_path), "s3": S3Config()}
    values.update(overrides)
    return StorageConfig(**values)


class TestParseBackendKind:
    def test_known_values(self):
        assert parse_backend_kind("local") is BackendKind.LOCAL
        assert parse_backend_kind(BackendKind.S3) is BackendKind.S3

    def test_unknown_value(self):
        with pytest.raises(ConfigurationError):
            parse_backend_kind("ftp")


class TestConfiguration:
    def test_unconfigured_s3(self, tmp_path):
        manager = StorageManager(_config(tmp_path))

        assert manager.is_configured(BackendKind.LOCAL)
        assert not manager.is_configured(BackendKind.S3)
        assert manager.configured_kinds() == [BackendKind.LOCAL]

    def test_r2_account_id_counts_as_endpoint(self, tmp_path):
        s3 = S3Config(access_key_id="a", secret_access_key="b", bucket="media", account_id="acct")
        manager = StorageManager(_config(tmp_path, s3=s3))

        assert s3.resolved_endpoint_url == "https://acct.r2.cloudflarestorage.com"
        assert manager.is_configured("s3")

    def test_unknown_active_backend_fails_fast(self, tmp_path):
        with pytest.raises(ConfigurationError):
            StorageManager(_config(tmp_path, backend="gcs"))


class TestGet:
    async def test_returns_active_backend_and_caches_it(self, tmp_path):
        manager = StorageManager(_config(tmp_path))

        first = await manager.get()
        second = await manager.get(BackendKind.LOCAL)

        assert isinstance(first, LocalStorageBackend)
        assert first is second

    async def test_unconfigured_backend_raises(self, tmp_path):
        manager = StorageManager(_config(tmp_path))
        with pytest.raises(ConfigurationError):
            await manager.get(BackendKind.S3)

    async def test_builds_s3_backend(self, tmp_path, s3_config):
        manager = StorageManager(_config(tmp_path, s3=s3_config))
        assert isinstance(await manager.get("s3"), S3StorageBackend)


class TestActivate:
    async def test_switches_active_backend_and_fires_hook(self, tmp_path, s3_config):
        manager = StorageManager(_config(tmp_path, s3=s3_config))
        seen = []
        hooks.add_action(STORAGE_BACKEND_ACTIVATED, lambda kind, previous: seen.append((kind, previous)))

        await manager.activate("s3")

        assert manager.active_kind is BackendKind.S3
        assert seen == [(BackendKind.S3, BackendKind.LOCAL)]

    async def test_reactivating_same_backend_is_quiet(self, tmp_path):
        manager = StorageManager(_config(tmp_path))
        seen = []
        hooks.add_action(STORAGE_BACKEND_ACTIVATED, lambda *args: seen.append(args))

        await manager.activate(BackendKind.LOCAL)

        assert seen == []

    async def test_cannot_activate_unconfigured_backend(self, tmp_path):
        manager = StorageManager(_config(tmp_path))
        with pytest.raises(ConfigurationError):
            await manager.activate(BackendKind.S3)
        assert manager.active_kind is BackendKind.LOCAL


async def test_close_drops_cached_backends(tmp_path):
    manager = StorageManager(_config(tmp_path))
    first = await manager.get()

    await manager.close()

    assert await manager.get() is not first
