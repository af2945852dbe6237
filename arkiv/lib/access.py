"""Access decisions for protected media."""

from __future__ import annotations

import hmac
import logging
from collections.abc import Awaitable, Callable

from arkiv.lib.catalog import AccessDescriptor, AccessType
from arkiv.lib.errors import ForbiddenError

logger = logging.getLogger(__name__)

EnrollmentCheck = Callable[[], Awaitable[bool]]


def descriptor_for_record(is_public: bool) -> AccessDescriptor:
    """Fallback descriptor for files the catalog knows nothing about."""
    if is_public:
        return AccessDescriptor(access_type=AccessType.PUBLIC)
    return AccessDescriptor(access_type=AccessType.ENROLLED_ONLY)


def _password_matches(expected: str | None, supplied: str | None) -> bool:
    if not expected or supplied is None:
        return False
    return hmac.compare_digest(expected.encode(), supplied.encode())


async def authorize(
    descriptor: AccessDescriptor,
    *,
    elevated: bool = False,
    password: str | None = None,
    enrollment_check: EnrollmentCheck | None = None,
) -> None:
    """Raise ``ForbiddenError`` unless the caller may read the resource.

    Rules apply in order and the first match wins: elevated callers, public
    or preview content, the password gate, then enrollment.
    """
    if elevated:
        return
    if descriptor.access_type is AccessType.PUBLIC or descriptor.is_preview:
        return

    if descriptor.access_type is AccessType.PASSWORD:
        if _password_matches(descriptor.password, password):
            return
        raise ForbiddenError("Invalid password.")

    if enrollment_check is None:
        logger.debug("No enrollment check available; denying %s", descriptor.access_type.value)
        raise ForbiddenError("You must be enrolled to view this content.")
    if not await enrollment_check():
        raise ForbiddenError("You must be enrolled to view this content.")
