"""Revocation request records and their closed enumerations."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from aumos_custody.identity.actor import Actor, ActorKind


class RequestStatus(str, Enum):
    """Lifecycle states; everything except PENDING is terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


class RequestType(str, Enum):
    """Whose access a request asks to revoke."""

    SELF_REVOCATION = "self_revocation"
    USER_REVOCATION = "user_revocation"
    MANAGER_REVOCATION = "manager_revocation"


@dataclass(frozen=True)
class RevocationRequest:
    """A request to revoke one subject's access to a document.

    Attributes
    ----------
    id:
        Store-assigned identifier.
    document_id:
        The document whose access is being revoked.
    requested_by_type / requested_by_id:
        The requester.  Only the requester may cancel.
    request_type:
        ``self_revocation``, ``user_revocation`` or ``manager_revocation``.
    target_subject_type / target_subject_id:
        The subject whose grant is revoked on approval.  Equal to the
        requester for ``self_revocation``.
    status:
        Current lifecycle state.
    cascade_to_secondary_managers:
        When True, approval also revokes the derived grants issued by the
        target (transitively).
    review_notes / reviewed_by_type / reviewed_by_id / reviewed_at:
        Write-once review stamp set by the origin authority on approve or
        deny.
    created_at / updated_at:
        UTC timestamps.
    """

    id: int
    document_id: str
    requested_by_type: ActorKind
    requested_by_id: int
    request_type: RequestType
    target_subject_type: ActorKind
    target_subject_id: int
    status: RequestStatus
    cascade_to_secondary_managers: bool
    created_at: datetime
    updated_at: datetime
    review_notes: str | None = None
    reviewed_by_type: ActorKind | None = None
    reviewed_by_id: int | None = None
    reviewed_at: datetime | None = None

    @property
    def requester(self) -> Actor:
        return Actor(self.requested_by_type, self.requested_by_id)

    @property
    def target(self) -> Actor:
        return Actor(self.target_subject_type, self.target_subject_id)

    def to_dict(self) -> dict[str, object]:
        """Serialise to the camelCase resource shape used by the REST API."""
        return {
            "id": self.id,
            "documentId": self.document_id,
            "requestedByType": self.requested_by_type.value,
            "requestedById": self.requested_by_id,
            "requestType": self.request_type.value,
            "targetSubjectType": self.target_subject_type.value,
            "targetSubjectId": self.target_subject_id,
            "status": self.status.value,
            "cascadeToSecondaryManagers": self.cascade_to_secondary_managers,
            "reviewNotes": self.review_notes,
            "reviewedByType": self.reviewed_by_type.value if self.reviewed_by_type else None,
            "reviewedById": self.reviewed_by_id,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
