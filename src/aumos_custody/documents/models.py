"""Document record as seen by the custody engine.

Documents are owned by the upload pipeline; the engine only reads the two
origin columns and performs the one-way manager assignment.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Document:
    """Authority-relevant view of a document.

    Attributes
    ----------
    id:
        Opaque unique identifier (a UUID string in practice).
    origin_manager_id:
        Manager holding permanent authority.  Once set it is never cleared.
    origin_user_context_id:
        Uploading user holding temporary authority until a manager is
        assigned.  Kept for audit afterwards but no longer authoritative.
    created_at:
        UTC datetime the document was registered with the engine.
    """

    id: str
    origin_manager_id: int | None
    origin_user_context_id: int | None
    created_at: datetime

    @property
    def has_origin_manager(self) -> bool:
        return self.origin_manager_id is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "originManagerId": self.origin_manager_id,
            "originUserContextId": self.origin_user_context_id,
            "createdAt": self.created_at.isoformat(),
        }
