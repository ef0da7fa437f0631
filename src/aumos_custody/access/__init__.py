"""Document registration, read-access checks and actor-facing grant operations."""
from __future__ import annotations

from aumos_custody.access.control import AccessControlService
from aumos_custody.access.document_access import DocumentAccessService, Operation
from aumos_custody.access.registry import DocumentRegistry

__all__ = [
    "AccessControlService",
    "DocumentAccessService",
    "DocumentRegistry",
    "Operation",
]
