"""Role definitions and the permissions they grant."""

from __future__ import annotations

from dataclasses import dataclass, field

# Bypasses every permission check and marks the caller as elevated for delivery
ADMINISTRATOR_PERMISSION = "administrator"

UPLOAD_MEDIA = "upload-media"
MANAGE_MEDIA = "manage-media"
VIEW_MEDIA = "view-media"
MIGRATE_STORAGE = "migrate-storage"


@dataclass
class RoleDefinition:
    name: str
    permissions: set[str] = field(default_factory=set)
    display_name: str | None = None
    description: str | None = None


def create_role(
    name: str,
    *permissions: str,
    display_name: str | None = None,
    description: str | None = None,
) -> RoleDefinition:
    return RoleDefinition(
        name=name,
        permissions=set(permissions),
        display_name=display_name or name.title(),
        description=description,
    )


ADMIN = create_role(
    "admin",
    ADMINISTRATOR_PERMISSION,
    MIGRATE_STORAGE,
    MANAGE_MEDIA,
    UPLOAD_MEDIA,
    VIEW_MEDIA,
    display_name="Administrator",
    description="Full tenant access, including storage administration",
)

INSTRUCTOR = create_role(
    "instructor",
    UPLOAD_MEDIA,
    MANAGE_MEDIA,
    VIEW_MEDIA,
    display_name="Instructor",
    description="Uploads and manages course media",
)

LEARNER = create_role(
    "learner",
    VIEW_MEDIA,
    display_name="Learner",
    description="Views media they have access to",
)

ROLE_DEFINITIONS: dict[str, RoleDefinition] = {
    role.name: role for role in [ADMIN, INSTRUCTOR, LEARNER]
}


def get_role_definition(name: str) -> RoleDefinition | None:
    return ROLE_DEFINITIONS.get(name)


def permissions_for_role(name: str) -> set[str]:
    """Permissions granted by a role name; unknown roles grant nothing."""
    role = ROLE_DEFINITIONS.get(name)
    return set(role.permissions) if role else set()


def register_role(
    name: str,
    *permissions: str,
    display_name: str | None = None,
    description: str | None = None,
) -> RoleDefinition:
    """Register a custom role at startup, e.g. a read-only "auditor"."""
    role = create_role(name, *permissions, display_name=display_name, description=description)
    ROLE_DEFINITIONS[role.name] = role
    return role
