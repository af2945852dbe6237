"""Catalog collaborator seam.

The course catalog decides who may see which lesson; this subsystem only
asks it two questions through ``CatalogProvider``. Deployments plug their own
provider in with ``catalog.provider = "module:ClassName"``.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class AccessType(str, Enum):
    PUBLIC = "PUBLIC"
    PASSWORD = "PASSWORD"
    PREVIEW = "PREVIEW"
    ENROLLED_ONLY = "ENROLLED_ONLY"


@dataclass(frozen=True)
class AccessDescriptor:
    """Read-only access rules for one catalog entity."""

    access_type: AccessType
    password: str | None = None
    allow_download: bool = False
    is_preview: bool = False


@runtime_checkable
class CatalogProvider(Protocol):
    async def get_access_descriptor(
        self, tenant_id: str, entity_type: str, entity_id: str
    ) -> AccessDescriptor | None: ...

    async def is_enrolled(
        self, tenant_id: str, user_id: str, entity_type: str, entity_id: str
    ) -> bool: ...


class InMemoryCatalog:
    """Dictionary-backed catalog used by default and in tests."""

    def __init__(self) -> None:
        self._descriptors: dict[tuple[str, str, str], AccessDescriptor] = {}
        self._enrollments: set[tuple[str, str, str, str]] = set()

    def set_descriptor(
        self, tenant_id: str, entity_type: str, entity_id: str, descriptor: AccessDescriptor
    ) -> None:
        self._descriptors[(tenant_id, entity_type, entity_id)] = descriptor

    def enroll(self, tenant_id: str, user_id: str, entity_type: str, entity_id: str) -> None:
        self._enrollments.add((tenant_id, user_id, entity_type, entity_id))

    async def get_access_descriptor(
        self, tenant_id: str, entity_type: str, entity_id: str
    ) -> AccessDescriptor | None:
        return self._descriptors.get((tenant_id, entity_type, entity_id))

    async def is_enrolled(
        self, tenant_id: str, user_id: str, entity_type: str, entity_id: str
    ) -> bool:
        return (tenant_id, user_id, entity_type, entity_id) in self._enrollments


def load_provider(spec: str) -> CatalogProvider:
    """Instantiate a catalog provider from a ``module:ClassName`` string.

    An empty spec yields an ``InMemoryCatalog``.
    """
    if not spec:
        return InMemoryCatalog()
    parts = spec.split(":")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid catalog provider '{spec}': must be in format 'module:ClassName'")
    module_path, class_name = parts
    module = importlib.import_module(module_path)
    return getattr(module, class_name)()
