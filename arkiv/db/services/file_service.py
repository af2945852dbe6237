"""Uploaded file records: lookups, upsert and deletion. Always tenant-scoped."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from arkiv.db.models.uploaded_file import UploadedFile


async def get_file(db_session: AsyncSession, tenant_id: str, file_id: UUID) -> UploadedFile | None:
    result = await db_session.execute(
        select(UploadedFile).where(
            and_(UploadedFile.id == file_id, UploadedFile.tenant_id == tenant_id)
        )
    )
    return result.scalar_one_or_none()


async def get_file_by_key(db_session: AsyncSession, tenant_id: str, key: str) -> UploadedFile | None:
    result = await db_session.execute(
        select(UploadedFile).where(
            and_(UploadedFile.tenant_id == tenant_id, UploadedFile.key == key)
        )
    )
    return result.scalar_one_or_none()


async def upsert_file(
    db_session: AsyncSession,
    tenant_id: str,
    key: str,
    **fields: Any,
) -> UploadedFile:
    """Insert the record for ``(tenant_id, key)`` or overwrite the existing one.

    Re-uploading to the same key refreshes ``uploaded_at`` and keeps the id.
    """
    fields.setdefault("uploaded_at", datetime.now(timezone.utc))
    record = await get_file_by_key(db_session, tenant_id, key)
    if record is None:
        record = UploadedFile(tenant_id=tenant_id, key=key, **fields)
        db_session.add(record)
    else:
        for name, value in fields.items():
            setattr(record, name, value)

    await db_session.commit()
    await db_session.refresh(record)
    return record


def _filters(
    tenant_id: str,
    category: str | None,
    entity_type: str | None,
    entity_id: str | None,
) -> list:
    filters = [UploadedFile.tenant_id == tenant_id]
    if category is not None:
        filters.append(UploadedFile.category == category)
    if entity_type is not None:
        filters.append(UploadedFile.entity_type == entity_type)
    if entity_id is not None:
        filters.append(UploadedFile.entity_id == entity_id)
    return filters


async def list_files(
    db_session: AsyncSession,
    tenant_id: str,
    category: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[UploadedFile]:
    """Newest first."""
    query = (
        select(UploadedFile)
        .where(and_(*_filters(tenant_id, category, entity_type, entity_id)))
        .order_by(UploadedFile.uploaded_at.desc(), UploadedFile.id)
    )
    if offset:
        query = query.offset(offset)
    query = query.limit(limit)

    result = await db_session.execute(query)
    return list(result.scalars().all())


async def count_files(
    db_session: AsyncSession,
    tenant_id: str,
    category: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> int:
    result = await db_session.execute(
        select(func.count())
        .select_from(UploadedFile)
        .where(and_(*_filters(tenant_id, category, entity_type, entity_id)))
    )
    return result.scalar() or 0


async def list_files_for_migration(db_session: AsyncSession, tenant_id: str) -> list[UploadedFile]:
    """Every record of a tenant, oldest first."""
    result = await db_session.execute(
        select(UploadedFile)
        .where(UploadedFile.tenant_id == tenant_id)
        .order_by(UploadedFile.uploaded_at.asc(), UploadedFile.id)
    )
    return list(result.scalars().all())


async def tenant_usage(db_session: AsyncSession, tenant_id: str) -> tuple[int, int]:
    """Return ``(file_count, total_bytes)`` for a tenant."""
    result = await db_session.execute(
        select(func.count(), func.coalesce(func.sum(UploadedFile.file_size), 0))
        .select_from(UploadedFile)
        .where(UploadedFile.tenant_id == tenant_id)
    )
    count, total = result.one()
    return int(count or 0), int(total or 0)


async def update_file_url(db_session: AsyncSession, file_id: UUID, url: str) -> None:
    await db_session.execute(
        update(UploadedFile).where(UploadedFile.id == file_id).values(url=url)
    )
    await db_session.commit()


async def delete_file_records(db_session: AsyncSession, tenant_id: str, file_ids: list[UUID]) -> int:
    if not file_ids:
        return 0
    result = await db_session.execute(
        delete(UploadedFile).where(
            and_(UploadedFile.tenant_id == tenant_id, UploadedFile.id.in_(file_ids))
        )
    )
    await db_session.commit()
    return result.rowcount or 0
