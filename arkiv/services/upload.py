"""Upload pipeline: validate, optimize, store, record.

Storage first, metadata second. A failed write leaves the metadata store
untouched; a failed metadata write removes the freshly stored object before
the error propagates.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING
from uuid import UUID

from arkiv.config import MiB, UploadConfig
from arkiv.db.services import file_service
from arkiv.lib import observability
from arkiv.lib.errors import (
    ArkivError,
    NotFoundError,
    PayloadTooLargeError,
    UnsupportedTypeError,
    ValidationError,
)
from arkiv.lib.hooks import (
    AFTER_MEDIA_DELETE,
    AFTER_MEDIA_UPLOAD,
    BEFORE_MEDIA_DELETE,
    BEFORE_MEDIA_UPLOAD,
    MEDIA_UPLOAD_DATA,
    hooks,
)
from arkiv.lib.imaging import (
    OptimizationResult,
    detect_image_content_type,
    is_image,
    optimize_image,
    recommended_settings,
)
from arkiv.lib.storage.base import BackendKind, build_key

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from arkiv.db.models.uploaded_file import UploadedFile
    from arkiv.lib.storage.base import StorageBackend
    from arkiv.lib.storage.manager import StorageManager

logger = logging.getLogger(__name__)

IMAGE_TYPES = ("image/",)
VIDEO_TYPES = ("video/",)
AUDIO_TYPES = ("audio/",)
DOCUMENT_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain",
    "text/csv",
)

# Formats Pillow would flatten or cannot read; stored as uploaded
_SKIP_OPTIMIZATION = {"image/svg+xml", "image/gif"}


@dataclass(frozen=True)
class CategoryPolicy:
    """Upload rules for one asset category.

    ``max_size`` of None means the generic ``UploadConfig.max_upload_size``.
    Singleton categories keep one asset per entity: a new upload replaces
    the previous ones once it is safely stored.
    """

    name: str
    allowed_types: tuple[str, ...]
    max_size: int | None = None
    is_public: bool = False
    singleton: bool = False

    def allows(self, content_type: str) -> bool:
        return any(
            content_type.startswith(allowed) if allowed.endswith("/") else content_type == allowed
            for allowed in self.allowed_types
        )


CATEGORIES: dict[str, CategoryPolicy] = {
    policy.name: policy
    for policy in [
        CategoryPolicy("student_photo", IMAGE_TYPES, 5 * MiB, is_public=True, singleton=True),
        CategoryPolicy("course_featured_image", IMAGE_TYPES, 5 * MiB, is_public=True, singleton=True),
        CategoryPolicy("course_intro_video", VIDEO_TYPES, 200 * MiB, is_public=True, singleton=True),
        CategoryPolicy("question_image", IMAGE_TYPES, 5 * MiB),
        CategoryPolicy("question_audio", AUDIO_TYPES),
        CategoryPolicy("student_document", DOCUMENT_TYPES + IMAGE_TYPES),
        CategoryPolicy("course_material", DOCUMENT_TYPES + IMAGE_TYPES + AUDIO_TYPES),
        CategoryPolicy("assignment_submission", DOCUMENT_TYPES + IMAGE_TYPES),
        CategoryPolicy("lesson_document", DOCUMENT_TYPES, 50 * MiB),
        CategoryPolicy("lesson_video", VIDEO_TYPES, 500 * MiB),
    ]
}


def get_policy(category: str) -> CategoryPolicy:
    policy = CATEGORIES.get(category)
    if policy is None:
        raise ValidationError(
            f"Unknown category '{category}'.",
            details={"allowed": sorted(CATEGORIES)},
        )
    return policy


@dataclass
class MediaMetadata:
    """Optional descriptive fields stored alongside the record."""

    author: str | None = None
    description: str | None = None
    alt_text: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None


@dataclass
class UploadOutcome:
    record: UploadedFile
    optimization: OptimizationResult | None = None

    def to_dict(self) -> dict:
        body = {
            "success": True,
            "id": str(self.record.id),
            "url": self.record.url,
            "key": self.record.key,
            "fileName": self.record.file_name,
            "fileSize": self.record.file_size,
            "mimeType": self.record.mime_type,
        }
        if self.optimization is not None:
            body["optimization"] = self.optimization.to_dict()
        return body


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\-]+")


def sanitize_filename(name: str) -> str:
    """Reduce a client file name to a single safe key segment."""
    base = PurePosixPath(name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    if not cleaned:
        return "file"
    if len(cleaned) > 100:
        suffix = PurePosixPath(cleaned).suffix[:16]
        cleaned = cleaned[:100 - len(suffix)] + suffix
    return cleaned


def stored_filename(name: str, now_ms: int | None = None) -> str:
    """``{timestamp_ms}_{sanitized}``, unique enough per entity and sortable."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{stamp}_{sanitize_filename(name)}"


def _replace_extension(name: str, extension: str) -> str:
    path = PurePosixPath(name)
    return f"{path.stem}.{extension}" if path.suffix else f"{name}.{extension}"


def backend_kind_for_record(storage: StorageManager, record: UploadedFile) -> BackendKind:
    """Which backend holds a record's bytes, judged by its cached URL."""
    prefix = storage.config.route_prefix.rstrip("/") + "/"
    if record.url.startswith(prefix):
        return BackendKind.LOCAL
    if storage.is_configured(BackendKind.S3):
        return BackendKind.S3
    return storage.active_kind


async def backend_for_record(storage: StorageManager, record: UploadedFile) -> StorageBackend:
    return await storage.get(backend_kind_for_record(storage, record))


async def upload_media(
    db_session: AsyncSession,
    storage: StorageManager,
    *,
    tenant_id: str,
    data: bytes,
    file_name: str,
    content_type: str,
    category: str,
    entity_type: str,
    entity_id: str,
    is_public: bool | None = None,
    metadata: MediaMetadata | None = None,
    config: UploadConfig | None = None,
) -> UploadOutcome:
    """Store an uploaded asset for ``tenant_id`` and record it.

    Raises ``ValidationError`` for unknown categories or malformed key parts,
    ``PayloadTooLargeError`` past the category limit, ``UnsupportedTypeError``
    for MIME types the category does not accept and ``WriteError`` when the
    backend cannot store the bytes.
    """
    config = config or UploadConfig()
    metadata = metadata or MediaMetadata()
    policy = get_policy(category)

    limit = policy.max_size or config.max_upload_size
    if len(data) > limit:
        raise PayloadTooLargeError(
            f"File exceeds the {limit // MiB} MB limit for {category}.",
            details={"maxSize": limit, "size": len(data)},
        )
    if not data:
        raise ValidationError("File is empty.")

    content_type = (content_type or "application/octet-stream").split(";")[0].strip().lower()
    if is_image(content_type):
        content_type = detect_image_content_type(data) or content_type
    if not policy.allows(content_type):
        raise UnsupportedTypeError(
            f"File type {content_type} is not allowed for {category}.",
            details={"mimeType": content_type},
        )

    public = policy.is_public if is_public is None else is_public
    name = stored_filename(file_name)

    with observability.span("media.upload", tenant_id=tenant_id, category=category, size=len(data)):
        await hooks.do_action(BEFORE_MEDIA_UPLOAD, tenant_id=tenant_id, category=category, file_name=name)
        data = await hooks.apply_filters(
            MEDIA_UPLOAD_DATA, data, file_name=name, content_type=content_type
        )

        optimization = None
        if config.optimizer.enabled and is_image(content_type) and content_type not in _SKIP_OPTIMIZATION:
            result = await asyncio.to_thread(
                optimize_image, data, recommended_settings(content_type, config.optimizer)
            )
            # A re-encode that grew the file without resizing it is discarded
            if result.was_optimized and result.compression_ratio < 1 and not result.resized:
                logger.debug("Keeping original %s: re-encode was larger", name)
            elif result.was_optimized:
                optimization = result
                data = result.data
                if result.content_type != content_type:
                    content_type = result.content_type
                    name = _replace_extension(name, result.extension)
            if metadata.width is None and metadata.height is None:
                metadata.width, metadata.height = result.width, result.height

        key = build_key(tenant_id, category, entity_type, entity_id, name)
        previous = await file_service.get_file_by_key(db_session, tenant_id, key)
        backend = await storage.get()
        stored = await backend.upload(
            key,
            data,
            content_type,
            is_public=public,
            metadata={"tenant-id": tenant_id, "category": category},
        )

        try:
            record = await file_service.upsert_file(
                db_session,
                tenant_id,
                key,
                url=stored.url,
                file_name=name,
                mime_type=content_type,
                file_size=stored.size,
                category=category,
                entity_type=entity_type,
                entity_id=entity_id,
                is_public=public,
                author=metadata.author,
                description=metadata.description,
                alt_text=metadata.alt_text,
                width=metadata.width,
                height=metadata.height,
                duration=metadata.duration,
            )
        except Exception:
            await db_session.rollback()
            if previous is not None:
                # The existing record still points at this key
                logger.error("Recording upload %s failed; keeping object of existing record", key)
                raise
            logger.error("Recording upload %s failed; removing stored object", key)
            try:
                await backend.delete(key)
            except ArkivError as cleanup_exc:
                logger.warning("Could not remove orphaned object %s: %s", key, cleanup_exc)
            raise

        if policy.singleton:
            await _remove_previous(db_session, storage, record)

        logger.info(
            "Stored %s for tenant %s (%d bytes, %s)",
            key, tenant_id, record.file_size, backend.kind.value,
        )
        await hooks.do_action(AFTER_MEDIA_UPLOAD, record)

    return UploadOutcome(record=record, optimization=optimization)


async def _remove_previous(db_session: AsyncSession, storage: StorageManager, record: UploadedFile) -> None:
    """Delete the other assets of a singleton category's entity."""
    siblings = await file_service.list_files(
        db_session,
        record.tenant_id,
        category=record.category,
        entity_type=record.entity_type,
        entity_id=record.entity_id,
        limit=1000,
    )
    stale = [sibling for sibling in siblings if sibling.id != record.id]
    if not stale:
        return

    for sibling in stale:
        try:
            backend = await backend_for_record(storage, sibling)
            await backend.delete(sibling.key)
        except ArkivError as exc:
            logger.warning("Could not delete replaced asset %s: %s", sibling.key, exc)
    await file_service.delete_file_records(db_session, record.tenant_id, [s.id for s in stale])


async def delete_media(
    db_session: AsyncSession,
    storage: StorageManager,
    tenant_id: str,
    file_id: UUID,
) -> UploadedFile:
    """Delete an asset's bytes, then its record."""
    record = await file_service.get_file(db_session, tenant_id, file_id)
    if record is None:
        raise NotFoundError()

    await hooks.do_action(BEFORE_MEDIA_DELETE, record)
    backend = await backend_for_record(storage, record)
    await backend.delete(record.key)
    await file_service.delete_file_records(db_session, tenant_id, [record.id])
    await hooks.do_action(AFTER_MEDIA_DELETE, record)
    return record


async def delete_entity_media(
    db_session: AsyncSession,
    storage: StorageManager,
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    category: str | None = None,
) -> int:
    """Delete every asset attached to an entity (e.g. when a question is removed)."""
    records = []
    offset = 0
    while True:
        page = await file_service.list_files(
            db_session,
            tenant_id,
            category=category,
            entity_type=entity_type,
            entity_id=entity_id,
            limit=500,
            offset=offset,
        )
        records.extend(page)
        if len(page) < 500:
            break
        offset += 500
    if not records:
        return 0

    by_backend: dict[BackendKind, list[str]] = {}
    for record in records:
        await hooks.do_action(BEFORE_MEDIA_DELETE, record)
        by_backend.setdefault(backend_kind_for_record(storage, record), []).append(record.key)

    for kind, keys in by_backend.items():
        backend = await storage.get(kind)
        await backend.delete_many(keys)

    deleted = await file_service.delete_file_records(db_session, tenant_id, [r.id for r in records])
    for record in records:
        await hooks.do_action(AFTER_MEDIA_DELETE, record)
    return deleted


async def list_media(
    db_session: AsyncSession,
    tenant_id: str,
    *,
    category: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[UploadedFile], int]:
    """One page of a tenant's records (newest first) and the total count."""
    if page < 1 or not 1 <= limit <= 200:
        raise ValidationError("page must be >= 1 and limit between 1 and 200.")
    records = await file_service.list_files(
        db_session,
        tenant_id,
        category=category,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=limit,
        offset=(page - 1) * limit,
    )
    total = await file_service.count_files(
        db_session, tenant_id, category=category, entity_type=entity_type, entity_id=entity_id
    )
    return records, total


async def resolve_url(storage: StorageManager, record: UploadedFile) -> str:
    """A usable URL for the record now: presigned again for private remote objects."""
    backend = await backend_for_record(storage, record)
    if record.is_public:
        return await backend.get_url(record.key)
    return await backend.get_url(record.key, expires_in=storage.config.s3.presign_ttl)
