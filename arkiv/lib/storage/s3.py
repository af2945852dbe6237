"""S3-compatible storage backend (AWS S3, Cloudflare R2, MinIO)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from arkiv.lib.errors import NotFoundError, ReadError, WriteError
from arkiv.lib.storage.base import (
    BackendKind,
    ConnectionStatus,
    StorageObject,
    UploadResult,
    validate_key,
)

if TYPE_CHECKING:
    from arkiv.config import S3Config

logger = logging.getLogger(__name__)

# DeleteObjects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3StorageBackend:
    """Store objects in an S3-compatible bucket.

    Keys are used verbatim as object keys. When ``public_url`` is configured
    (a CDN or R2 public bucket domain) plain ``get_url`` calls return
    ``{public_url}/{key}``; passing ``expires_in`` always yields a presigned
    URL, which is how private assets are handed out.
    """

    kind = BackendKind.S3

    def __init__(self, config: S3Config, session: Any = None) -> None:
        self._config = config
        self._session = session or aioboto3.Session()

    def _client_kwargs(self) -> dict:
        kwargs: dict = {
            "region_name": self._config.region or "auto",
            "config": BotoConfig(
                connect_timeout=10,
                read_timeout=60,
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        }
        endpoint = self._config.resolved_endpoint_url
        if endpoint:
            kwargs["endpoint_url"] = endpoint
        if self._config.access_key_id:
            kwargs["aws_access_key_id"] = self._config.access_key_id
        if self._config.secret_access_key:
            kwargs["aws_secret_access_key"] = self._config.secret_access_key
        return kwargs

    def _client(self):
        return self._session.client("s3", **self._client_kwargs())

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        is_public: bool = False,
        metadata: dict[str, str] | None = None,
    ) -> UploadResult:
        validate_key(key)
        put_kwargs: dict = {
            "Bucket": self._config.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if metadata:
            put_kwargs["Metadata"] = {k: str(v) for k, v in metadata.items()}

        try:
            async with self._client() as s3:
                response = await s3.put_object(**put_kwargs)
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 put_object failed for %s: %s", key, exc)
            raise WriteError() from exc

        etag = response.get("ETag")
        expires_in = None if is_public else self._config.presign_ttl
        return UploadResult(
            key=key,
            url=await self.get_url(key, expires_in=expires_in),
            size=len(data),
            etag=etag.strip('"') if etag else None,
        )

    async def download(self, key: str) -> bytes:
        validate_key(key)
        try:
            async with self._client() as s3:
                response = await s3.get_object(Bucket=self._config.bucket, Key=key)
                return await response["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                raise NotFoundError() from exc
            logger.error("S3 get_object failed for %s: %s", key, exc)
            raise ReadError() from exc
        except BotoCoreError as exc:
            logger.error("S3 get_object failed for %s: %s", key, exc)
            raise ReadError() from exc

    async def delete(self, key: str, *, strict: bool = False) -> None:
        validate_key(key)
        if strict and not await self.exists(key):
            raise NotFoundError()
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self._config.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 delete_object failed for %s: %s", key, exc)
            raise WriteError("Failed to delete file.") from exc

    async def delete_many(self, keys: list[str]) -> None:
        for key in keys:
            validate_key(key)
        if not keys:
            return

        try:
            async with self._client() as s3:
                for start in range(0, len(keys), DELETE_BATCH_SIZE):
                    batch = keys[start:start + DELETE_BATCH_SIZE]
                    response = await s3.delete_objects(
                        Bucket=self._config.bucket,
                        Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                    )
                    errors = response.get("Errors") or []
                    if errors:
                        logger.error("S3 delete_objects reported %d errors: %s", len(errors), errors)
                        raise WriteError("Failed to delete files.")
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 delete_objects failed: %s", exc)
            raise WriteError("Failed to delete files.") from exc

    async def exists(self, key: str) -> bool:
        validate_key(key)
        try:
            async with self._client() as s3:
                await s3.head_object(Bucket=self._config.bucket, Key=key)
                return True
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return False
            logger.error("S3 head_object failed for %s: %s", key, exc)
            raise ReadError() from exc
        except BotoCoreError as exc:
            logger.error("S3 head_object failed for %s: %s", key, exc)
            raise ReadError() from exc

    async def get_url(self, key: str, expires_in: int | None = None) -> str:
        validate_key(key)

        # CDN / public bucket domain
        if expires_in is None and self._config.public_url:
            base = self._config.public_url.rstrip("/")
            return f"{base}/{key}"

        async with self._client() as s3:
            return await s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._config.bucket, "Key": key},
                ExpiresIn=expires_in or self._config.presign_ttl,
            )

    async def list(self, prefix: str = "") -> list[StorageObject]:
        objects = []
        try:
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self._config.bucket, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        objects.append(
                            StorageObject(
                                key=obj["Key"],
                                size=obj["Size"],
                                last_modified=obj["LastModified"],
                                etag=obj["ETag"].strip('"') if obj.get("ETag") else None,
                            )
                        )
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 list_objects_v2 failed for prefix %r: %s", prefix, exc)
            raise ReadError("Failed to list files.") from exc
        return objects

    async def test_connection(self) -> ConnectionStatus:
        try:
            async with self._client() as s3:
                await s3.list_objects_v2(Bucket=self._config.bucket, MaxKeys=1)
        except ClientError as exc:
            code = _error_code(exc) or "ClientError"
            logger.warning("S3 bucket probe failed: %s", exc)
            return ConnectionStatus(success=False, error=f"Bucket probe failed ({code})")
        except BotoCoreError as exc:
            logger.warning("S3 bucket probe failed: %s", exc)
            return ConnectionStatus(success=False, error="Could not reach the storage endpoint")
        return ConnectionStatus(success=True)

    async def close(self) -> None:
        """No persistent resources to clean up."""
