"""Secure delivery of recorded media."""

from __future__ import annotations

from uuid import UUID

from litestar import Controller, Request, get
from litestar.di import Provide
from litestar.response import Response
from sqlalchemy.ext.asyncio import AsyncSession

from arkiv.auth.caller import Caller, provide_caller
from arkiv.auth.guards import Permission, auth_guard
from arkiv.auth.roles import VIEW_MEDIA
from arkiv.services.delivery import deliver_media


class MediaController(Controller):
    path = "/api/media"
    dependencies = {"caller": Provide(provide_caller)}

    @get("/{file_id:uuid}", guards=[auth_guard, Permission(VIEW_MEDIA)])
    async def serve(
        self,
        request: Request,
        db_session: AsyncSession,
        caller: Caller,
        file_id: UUID,
        password: str | None = None,
        download: bool = False,
    ) -> Response:
        """Stream a file to the caller, honouring Range requests."""
        result = await deliver_media(
            db_session,
            request.app.state.storage_manager,
            request.app.state.catalog,
            caller,
            file_id,
            password=password,
            download=download,
            range_header=request.headers.get("range"),
        )

        headers = dict(result.headers)
        media_type = headers.pop("Content-Type", "application/octet-stream")
        # Litestar derives Content-Length from the body
        headers.pop("Content-Length", None)
        return Response(
            content=result.body,
            status_code=result.status_code,
            media_type=media_type,
            headers=headers,
        )
