"""Access grant records.

A grant gives one subject (user or manager) access to one document.  Grants
are append-only: revocation stamps ``revoked_at`` and the revoker, and the
row stays queryable for audit forever.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from aumos_custody.identity.actor import Actor, ActorKind


class GrantType(str, Enum):
    """Authority level carried by a grant."""

    OWNER = "owner"
    DELEGATED = "delegated"
    DERIVED = "derived"


@dataclass(frozen=True)
class AccessGrant:
    """A single access grant row.

    Attributes
    ----------
    id:
        Store-assigned identifier.
    document_id:
        The document the grant applies to.
    subject_type / subject_id:
        Who holds the grant.
    grant_type:
        ``owner``, ``delegated`` or ``derived``.
    granted_by_type / granted_by_id:
        Who issued the grant.  For ``derived`` grants this is the lineage
        link followed by cascade revocation.
    created_at:
        UTC datetime of creation.
    revoked_at / revoked_by_type / revoked_by_id:
        Revocation stamp; all ``None`` while the grant is active.
    """

    id: int
    document_id: str
    subject_type: ActorKind
    subject_id: int
    grant_type: GrantType
    granted_by_type: ActorKind
    granted_by_id: int
    created_at: datetime
    revoked_at: datetime | None = None
    revoked_by_type: ActorKind | None = None
    revoked_by_id: int | None = None

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    @property
    def subject(self) -> Actor:
        return Actor(self.subject_type, self.subject_id)

    @property
    def granted_by(self) -> Actor:
        return Actor(self.granted_by_type, self.granted_by_id)

    def to_dict(self) -> dict[str, object]:
        """Serialise to the camelCase resource shape used by the REST API."""
        return {
            "id": self.id,
            "documentId": self.document_id,
            "subjectType": self.subject_type.value,
            "subjectId": self.subject_id,
            "grantType": self.grant_type.value,
            "grantedByType": self.granted_by_type.value,
            "grantedById": self.granted_by_id,
            "createdAt": self.created_at.isoformat(),
            "revokedAt": self.revoked_at.isoformat() if self.revoked_at else None,
            "revokedByType": self.revoked_by_type.value if self.revoked_by_type else None,
            "revokedById": self.revoked_by_id,
        }
