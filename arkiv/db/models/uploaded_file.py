"""Metadata record for a stored tenant asset."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from arkiv.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadedFile(Base):
    """One stored object. ``(tenant_id, key)`` identifies it uniquely.

    ``url`` is a cache: it can always be re-derived from ``key`` and the active
    storage backend, and the migration service rewrites it when bytes move.
    """

    __tablename__ = "uploaded_files"
    __table_args__ = (
        UniqueConstraint("tenant_id", "key", name="uq_uploaded_files_tenant_key"),
        Index("ix_uploaded_files_entity", "tenant_id", "entity_type", "entity_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    key: Mapped[str] = mapped_column(String(1024), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    author: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    alt_text: Mapped[str | None] = mapped_column(String(500), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "key": self.key,
            "url": self.url,
            "fileName": self.file_name,
            "mimeType": self.mime_type,
            "fileSize": self.file_size,
            "category": self.category,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "isPublic": self.is_public,
            "uploadedAt": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "author": self.author,
            "description": self.description,
            "altText": self.alt_text,
            "width": self.width,
            "height": self.height,
            "duration": self.duration,
        }
