"""Tests for the S3-compatible storage backend against a fake aioboto3 session."""

import hashlib
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from arkiv.config import S3Config
from arkiv.lib.errors import NotFoundError, ReadError, WriteError
from arkiv.lib.storage import S3StorageBackend
from arkiv.lib.storage.s3 import DELETE_BATCH_SIZE

KEY = "tenants/t1/lesson_video/lesson/7/1700000000000_intro.mp4"


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _Body:
    def __init__(self, data: bytes):
        self._data = data

    async def read(self) -> bytes:
        return self._data


class _Paginator:
    def __init__(self, client):
        self._client = client

    async def paginate(self, Bucket, Prefix):
        keys = sorted(k for k in self._client.objects if k.startswith(Prefix))
        # Two pages to exercise pagination
        for chunk in (keys[:1], keys[1:]):
            yield {
                "Contents": [
                    {
                        "Key": k,
                        "Size": len(self._client.objects[k]),
                        "ETag": f'"{hashlib.md5(self._client.objects[k]).hexdigest()}"',
                        "LastModified": datetime(2026, 1, 1, tzinfo=timezone.utc),
                    }
                    for k in chunk
                ]
            }


class FakeS3Client:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.calls: list[tuple[str, dict]] = []
        self.fail_with: Exception | None = None
        self.delete_errors: list[dict] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def _record(self, name, kwargs):
        self.calls.append((name, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    async def put_object(self, **kwargs):
        self._record("put_object", kwargs)
        self.objects[kwargs["Key"]] = kwargs["Body"]
        return {"ETag": '"abc123"'}

    async def get_object(self, **kwargs):
        self._record("get_object", kwargs)
        if kwargs["Key"] not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        return {"Body": _Body(self.objects[kwargs["Key"]])}

    async def head_object(self, **kwargs):
        self._record("head_object", kwargs)
        if kwargs["Key"] not in self.objects:
            raise _client_error("404", "HeadObject")
        return {"ContentLength": len(self.objects[kwargs["Key"]])}

    async def delete_object(self, **kwargs):
        self._record("delete_object", kwargs)
        self.objects.pop(kwargs["Key"], None)
        return {}

    async def delete_objects(self, **kwargs):
        self._record("delete_objects", kwargs)
        for item in kwargs["Delete"]["Objects"]:
            self.objects.pop(item["Key"], None)
        return {"Errors": self.delete_errors} if self.delete_errors else {}

    async def generate_presigned_url(self, operation, Params, ExpiresIn):
        self._record("generate_presigned_url", {"Params": Params, "ExpiresIn": ExpiresIn})
        return f"https://s3.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    def get_paginator(self, name):
        return _Paginator(self)

    async def list_objects_v2(self, **kwargs):
        self._record("list_objects_v2", kwargs)
        return {"KeyCount": 0}


class FakeSession:
    def __init__(self, client: FakeS3Client):
        self.client_instance = client
        self.client_kwargs: dict | None = None

    def client(self, service_name, **kwargs):
        assert service_name == "s3"
        self.client_kwargs = kwargs
        return self.client_instance


@pytest.fixture
def client():
    return FakeS3Client()


@pytest.fixture
def session(client):
    return FakeSession(client)


@pytest.fixture
def backend(s3_config, session):
    return S3StorageBackend(s3_config, session=session)


class TestUpload:
    async def test_public_upload_returns_public_url(self, backend, client):
        result = await backend.upload(KEY, b"video", "video/mp4", is_public=True, metadata={"tenant-id": "t1"})

        name, kwargs = client.calls[0]
        assert name == "put_object"
        assert kwargs["Bucket"] == "media"
        assert kwargs["ContentType"] == "video/mp4"
        assert kwargs["Metadata"] == {"tenant-id": "t1"}
        assert result.url == f"https://cdn.test/{KEY}"
        assert result.etag == "abc123"
        assert result.size == 5

    async def test_private_upload_returns_presigned_url(self, backend, s3_config):
        result = await backend.upload(KEY, b"video", "video/mp4")
        assert result.url.endswith(f"X-Amz-Expires={s3_config.presign_ttl}")

    async def test_client_error_becomes_write_error(self, backend, client):
        client.fail_with = _client_error("AccessDenied", "PutObject")
        with pytest.raises(WriteError):
            await backend.upload(KEY, b"video", "video/mp4")

    async def test_endpoint_and_credentials_passed_to_client(self, backend, session):
        await backend.upload(KEY, b"video", "video/mp4", is_public=True)

        assert session.client_kwargs["endpoint_url"] == "https://s3.test"
        assert session.client_kwargs["aws_access_key_id"] == "test-access"
        assert session.client_kwargs["aws_secret_access_key"] == "test-secret"


class TestDownloadAndExists:
    async def test_download(self, backend, client):
        client.objects[KEY] = b"bytes"
        assert await backend.download(KEY) == b"bytes"

    async def test_missing_key_is_not_found(self, backend):
        with pytest.raises(NotFoundError):
            await backend.download(KEY)

    async def test_other_client_errors_are_read_errors(self, backend, client):
        client.fail_with = _client_error("InternalError", "GetObject")
        with pytest.raises(ReadError):
            await backend.download(KEY)

    async def test_network_errors_are_read_errors(self, backend, client):
        client.fail_with = EndpointConnectionError(endpoint_url="https://s3.test")
        with pytest.raises(ReadError):
            await backend.download(KEY)

    async def test_exists(self, backend, client):
        assert await backend.exists(KEY) is False
        client.objects[KEY] = b"x"
        assert await backend.exists(KEY) is True


class TestDelete:
    async def test_delete(self, backend, client):
        client.objects[KEY] = b"x"
        await backend.delete(KEY)
        assert KEY not in client.objects

    async def test_strict_delete_missing_raises(self, backend):
        with pytest.raises(NotFoundError):
            await backend.delete(KEY, strict=True)

    async def test_delete_many_batches_requests(self, backend, client):
        keys = [f"tenants/t1/question_image/question/q/{i}.png" for i in range(DELETE_BATCH_SIZE + 5)]

        await backend.delete_many(keys)

        batches = [kwargs for name, kwargs in client.calls if name == "delete_objects"]
        assert [len(b["Delete"]["Objects"]) for b in batches] == [DELETE_BATCH_SIZE, 5]

    async def test_delete_many_with_no_keys_makes_no_request(self, backend, client):
        await backend.delete_many([])
        assert client.calls == []

    async def test_delete_many_reported_errors_raise(self, backend, client):
        client.delete_errors = [{"Key": KEY, "Code": "AccessDenied"}]
        with pytest.raises(WriteError):
            await backend.delete_many([KEY])


class TestUrlsAndListing:
    async def test_get_url_without_expiry_uses_public_url(self, backend):
        assert await backend.get_url(KEY) == f"https://cdn.test/{KEY}"

    async def test_get_url_with_expiry_is_presigned(self, backend):
        url = await backend.get_url(KEY, expires_in=120)
        assert url == f"https://s3.test/media/{KEY}?X-Amz-Expires=120"

    async def test_get_url_without_public_url_is_presigned(self, session):
        config = S3Config(
            access_key_id="a", secret_access_key="b", bucket="media", endpoint_url="https://s3.test"
        )
        backend = S3StorageBackend(config, session=session)

        url = await backend.get_url(KEY)

        assert url.endswith(f"X-Amz-Expires={config.presign_ttl}")

    async def test_list_collects_every_page(self, backend, client):
        client.objects.update({
            "tenants/t1/a/b/1/x.txt": b"12",
            "tenants/t1/a/b/1/y.txt": b"123",
            "tenants/t2/a/b/1/z.txt": b"1",
        })

        objects = await backend.list("tenants/t1/")

        assert [(o.key, o.size) for o in objects] == [
            ("tenants/t1/a/b/1/x.txt", 2),
            ("tenants/t1/a/b/1/y.txt", 3),
        ]
        assert objects[0].etag == hashlib.md5(b"12").hexdigest()


class TestConnection:
    async def test_success(self, backend, client):
        status = await backend.test_connection()

        assert status.success is True
        assert client.calls[0] == ("list_objects_v2", {"Bucket": "media", "MaxKeys": 1})

    async def test_client_error_reports_code_only(self, backend, client):
        client.fail_with = _client_error("NoSuchBucket", "ListObjectsV2")

        status = await backend.test_connection()

        assert status.success is False
        assert status.error == "Bucket probe failed (NoSuchBucket)"

    async def test_unreachable_endpoint(self, backend, client):
        client.fail_with = EndpointConnectionError(endpoint_url="https://s3.test")

        status = await backend.test_connection()

        assert status.success is False
        assert "s3.test" not in status.error
