"""Upload, list and delete tenant files."""

from __future__ import annotations

from typing import Annotated, Any
from uuid import UUID

from litestar import Controller, Request, delete, get, post
from litestar.datastructures import UploadFile
from litestar.di import Provide
from litestar.enums import RequestEncodingType
from litestar.params import Body, Parameter
from litestar.response import Response
from sqlalchemy.ext.asyncio import AsyncSession

from arkiv.auth.caller import Caller, provide_caller
from arkiv.auth.guards import Permission, auth_guard
from arkiv.auth.roles import MANAGE_MEDIA, UPLOAD_MEDIA
from arkiv.lib.errors import ValidationError
from arkiv.lib.storage.manager import StorageManager
from arkiv.services.upload import MediaMetadata, delete_media, list_media, upload_media

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _required(form: dict[str, Any], name: str) -> str:
    value = form.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Missing required field '{name}'.")
    return value.strip()


def _optional_str(form: dict[str, Any], name: str) -> str | None:
    value = form.get(name)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _optional_bool(form: dict[str, Any], name: str) -> bool | None:
    value = _optional_str(form, name)
    if value is None:
        return None
    if value.lower() in _TRUE:
        return True
    if value.lower() in _FALSE:
        return False
    raise ValidationError(f"Field '{name}' must be a boolean.")


def _optional_number(form: dict[str, Any], name: str, kind: type) -> Any:
    value = _optional_str(form, name)
    if value is None:
        return None
    try:
        number = kind(value)
    except ValueError as exc:
        raise ValidationError(f"Field '{name}' must be a number.") from exc
    if number < 0:
        raise ValidationError(f"Field '{name}' must not be negative.")
    return number


class FilesController(Controller):
    path = "/api/files"
    dependencies = {"caller": Provide(provide_caller)}

    @post("/upload", guards=[auth_guard, Permission(UPLOAD_MEDIA)], status_code=201)
    async def upload(
        self,
        request: Request,
        db_session: AsyncSession,
        caller: Caller,
        data: Annotated[dict[str, Any], Body(media_type=RequestEncodingType.MULTI_PART)],
    ) -> dict:
        """Store an uploaded file for the caller's tenant."""
        upload = data.get("file")
        if not isinstance(upload, UploadFile):
            raise ValidationError("Missing required field 'file'.")

        content = await upload.read()
        metadata = MediaMetadata(
            author=_optional_str(data, "author"),
            description=_optional_str(data, "description"),
            alt_text=_optional_str(data, "altText"),
            width=_optional_number(data, "width", int),
            height=_optional_number(data, "height", int),
            duration=_optional_number(data, "duration", float),
        )

        storage: StorageManager = request.app.state.storage_manager
        outcome = await upload_media(
            db_session,
            storage,
            tenant_id=caller.tenant_id,
            data=content,
            file_name=upload.filename or "untitled",
            content_type=upload.content_type or "application/octet-stream",
            category=_required(data, "category"),
            entity_type=_required(data, "entityType"),
            entity_id=_required(data, "entityId"),
            is_public=_optional_bool(data, "isPublic"),
            metadata=metadata,
            config=request.app.state.settings.uploads,
        )
        return outcome.to_dict()

    @get("/", guards=[auth_guard, Permission(MANAGE_MEDIA)])
    async def list_files(
        self,
        db_session: AsyncSession,
        caller: Caller,
        category: str | None = None,
        entity_type: Annotated[str | None, Parameter(query="entityType")] = None,
        entity_id: Annotated[str | None, Parameter(query="entityId")] = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        records, total = await list_media(
            db_session,
            caller.tenant_id,
            category=category,
            entity_type=entity_type,
            entity_id=entity_id,
            page=page,
            limit=limit,
        )
        return {
            "files": [record.to_dict() for record in records],
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": max(1, (total + limit - 1) // limit),
        }

    @delete("/{file_id:uuid}", guards=[auth_guard, Permission(MANAGE_MEDIA)], status_code=200)
    async def delete_file(
        self,
        request: Request,
        db_session: AsyncSession,
        caller: Caller,
        file_id: UUID,
    ) -> Response:
        storage: StorageManager = request.app.state.storage_manager
        record = await delete_media(db_session, storage, caller.tenant_id, file_id)
        return Response(content={"success": True, "id": str(record.id)}, status_code=200)
