"""Error taxonomy for media storage and delivery.

Every error carries an HTTP status, a stable machine-readable ``code`` and a
message that is safe to show to clients. Internal detail (paths, backend
responses) belongs in the log, never in ``message``.
"""

from __future__ import annotations

from typing import Any


class ArkivError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ArkivError):
    """Malformed request fields or storage keys."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request."


class ConfigurationError(ArkivError):
    """A storage backend is not configured or not reachable."""

    status_code = 400
    code = "storage_not_configured"
    default_message = "Storage backend is not configured."


class ForbiddenError(ArkivError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied."


class NotFoundError(ArkivError):
    """A file record or the bytes behind it are missing."""

    status_code = 404
    code = "not_found"
    default_message = "File not found."


class MigrationInProgressError(ArkivError):
    status_code = 409
    code = "migration_in_progress"
    default_message = "A storage migration is already running for this tenant."


class PayloadTooLargeError(ArkivError):
    status_code = 413
    code = "payload_too_large"
    default_message = "File is too large."


class UnsupportedTypeError(ArkivError):
    status_code = 415
    code = "unsupported_type"
    default_message = "File type is not supported."


class RangeNotSatisfiableError(ArkivError):
    """Requested byte range lies outside the resource."""

    status_code = 416
    code = "range_not_satisfiable"
    default_message = "Requested range not satisfiable."

    def __init__(self, total: int, message: str | None = None) -> None:
        self.total = total
        super().__init__(message)


class StorageIOError(ArkivError):
    """Backend I/O failure. The public message is always generic."""

    status_code = 500
    code = "storage_error"
    default_message = "Storage operation failed."


class WriteError(StorageIOError):
    code = "storage_write_error"
    default_message = "Failed to store file."


class ReadError(StorageIOError):
    code = "storage_read_error"
    default_message = "Failed to read file."
