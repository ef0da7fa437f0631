"""Persistence seam for the custody engine.

Every engine operation runs inside exactly one store transaction::

    with store.transaction() as tx:
        grant = tx.find_active_grant(document_id, kind, subject_id)
        ...

A transaction either commits all of its writes or none of them.  Writers
rely on two store-level conflict guards instead of in-process locks:

- :meth:`CustodyTransaction.insert_grant` raises
  :class:`~aumos_custody.errors.DuplicateActiveGrantError` when an active
  grant already exists for the tuple, including when a concurrent
  transaction inserted it first.
- :meth:`CustodyTransaction.transition_request` and
  :meth:`CustodyTransaction.mark_grant_revoked` are conditional updates that
  return ``None`` when the row is no longer in the expected state.
"""
from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol

from aumos_custody.documents.models import Document
from aumos_custody.grants.models import AccessGrant, GrantType
from aumos_custody.identity.actor import ActorKind
from aumos_custody.revocation.models import RequestStatus, RequestType, RevocationRequest


class CustodyTransaction(Protocol):
    """Operations available inside a single atomic unit of work."""

    # Documents

    def get_document(self, document_id: str) -> Document | None: ...

    def insert_document(self, document: Document) -> Document: ...

    def assign_origin_manager(self, document_id: str, manager_id: int) -> Document | None:
        """Set the origin manager only if none is set yet; ``None`` otherwise."""
        ...

    def documents_under_authority(self, subject_type: ActorKind, subject_id: int) -> list[Document]:
        """Documents whose current origin authority is the given subject."""
        ...

    # Grants

    def get_grant(self, grant_id: int) -> AccessGrant | None: ...

    def find_active_grant(
        self,
        document_id: str,
        subject_type: ActorKind,
        subject_id: int,
    ) -> AccessGrant | None: ...

    def insert_grant(
        self,
        *,
        document_id: str,
        subject_type: ActorKind,
        subject_id: int,
        grant_type: GrantType,
        granted_by_type: ActorKind,
        granted_by_id: int,
        created_at: datetime,
    ) -> AccessGrant: ...

    def mark_grant_revoked(
        self,
        grant_id: int,
        *,
        revoked_by_type: ActorKind,
        revoked_by_id: int,
        revoked_at: datetime,
    ) -> AccessGrant | None:
        """Stamp revocation on an active grant; ``None`` if it was already revoked."""
        ...

    def list_grants(
        self,
        *,
        document_id: str | None = None,
        subject_type: ActorKind | None = None,
        subject_id: int | None = None,
        granted_by_type: ActorKind | None = None,
        granted_by_id: int | None = None,
        grant_type: GrantType | None = None,
        active_only: bool = False,
    ) -> list[AccessGrant]: ...

    # Revocation requests

    def get_request(self, request_id: int) -> RevocationRequest | None: ...

    def insert_request(
        self,
        *,
        document_id: str,
        requested_by_type: ActorKind,
        requested_by_id: int,
        request_type: RequestType,
        target_subject_type: ActorKind,
        target_subject_id: int,
        cascade_to_secondary_managers: bool,
        created_at: datetime,
    ) -> RevocationRequest: ...

    def transition_request(
        self,
        request_id: int,
        *,
        status: RequestStatus,
        updated_at: datetime,
        review_notes: str | None = None,
        reviewed_by_type: ActorKind | None = None,
        reviewed_by_id: int | None = None,
        reviewed_at: datetime | None = None,
    ) -> RevocationRequest | None:
        """Move a PENDING request to ``status``; ``None`` if it is no longer pending."""
        ...

    def list_requests(
        self,
        *,
        document_id: str | None = None,
        requested_by_type: ActorKind | None = None,
        requested_by_id: int | None = None,
        status: RequestStatus | None = None,
        request_type: RequestType | None = None,
    ) -> list[RevocationRequest]: ...


class CustodyStore(Protocol):
    """Factory for transactions against shared durable state."""

    def transaction(self) -> AbstractContextManager[CustodyTransaction]: ...
