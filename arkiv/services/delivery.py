"""Secure media delivery: access decision, watermark seam, range slicing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from arkiv.db.services import file_service
from arkiv.lib import observability
from arkiv.lib.access import authorize, descriptor_for_record
from arkiv.lib.errors import NotFoundError
from arkiv.lib.hooks import MEDIA_DELIVERY_BODY, MEDIA_DELIVERY_HEADERS, hooks
from arkiv.lib.mime import content_type_for
from arkiv.lib.ranges import parse_range
from arkiv.services.upload import backend_for_record

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from arkiv.auth.caller import Caller
    from arkiv.lib.catalog import CatalogProvider
    from arkiv.lib.storage.manager import StorageManager

logger = logging.getLogger(__name__)

PROTECTED_CACHE_CONTROL = "private, no-cache, no-store, must-revalidate"
TENANT_CACHE_CONTROL = "private, max-age=3600"


@dataclass
class DeliveryResult:
    status_code: int
    headers: dict[str, str]
    body: bytes


def content_disposition(file_name: str, attachment: bool) -> str:
    if not attachment:
        return "inline"
    safe = file_name.replace("\\", "_").replace('"', "_")
    return f'attachment; filename="{safe}"'


def build_delivery(
    data: bytes,
    *,
    file_name: str,
    range_header: str | None = None,
    cache_control: str = PROTECTED_CACHE_CONTROL,
    attachment: bool = False,
) -> DeliveryResult:
    """Shape a full (200) or partial (206) response for ``data``.

    Raises ``RangeNotSatisfiableError`` for ranges outside the body.
    """
    total = len(data)
    headers = {
        "Content-Type": content_type_for(file_name),
        "Accept-Ranges": "bytes",
        "Cache-Control": cache_control,
        "Content-Disposition": content_disposition(file_name, attachment),
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "SAMEORIGIN",
    }

    window = parse_range(range_header, total)
    if window is None:
        headers["Content-Length"] = str(total)
        return DeliveryResult(status_code=200, headers=headers, body=data)

    headers["Content-Range"] = window.content_range
    headers["Content-Length"] = str(window.length)
    return DeliveryResult(status_code=206, headers=headers, body=window.slice(data))


async def deliver_media(
    db_session: AsyncSession,
    storage: StorageManager,
    catalog: CatalogProvider,
    caller: Caller,
    file_id: UUID,
    *,
    password: str | None = None,
    download: bool = False,
    range_header: str | None = None,
) -> DeliveryResult:
    """Serve a recorded file to ``caller`` if the catalog's rules allow it.

    The record is looked up within the caller's tenant only, so ids from
    other tenants are indistinguishable from missing ones.
    """
    record = await file_service.get_file(db_session, caller.tenant_id, file_id)
    if record is None:
        raise NotFoundError()

    descriptor = await catalog.get_access_descriptor(
        caller.tenant_id, record.entity_type, record.entity_id
    )
    if descriptor is None:
        descriptor = descriptor_for_record(record.is_public)

    async def enrollment_check() -> bool:
        return await catalog.is_enrolled(
            caller.tenant_id, caller.user_id, record.entity_type, record.entity_id
        )

    await authorize(
        descriptor,
        elevated=caller.is_elevated,
        password=password,
        enrollment_check=enrollment_check,
    )

    with observability.span("media.deliver", tenant_id=caller.tenant_id, key=record.key):
        backend = await backend_for_record(storage, record)
        data = await backend.download(record.key)
        data = await hooks.apply_filters(MEDIA_DELIVERY_BODY, data, record, caller)

        result = build_delivery(
            data,
            file_name=record.file_name,
            range_header=range_header,
            cache_control=PROTECTED_CACHE_CONTROL,
            attachment=download and descriptor.allow_download,
        )
        result.headers = await hooks.apply_filters(MEDIA_DELIVERY_HEADERS, result.headers, record, caller)

    logger.debug("Delivered %s to %s (%d)", record.key, caller.user_id, result.status_code)
    return result
