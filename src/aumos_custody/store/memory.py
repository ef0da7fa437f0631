"""In-memory custody store.

All state is held in process memory.  A transaction holds the store lock
for its whole duration, which makes transactions serialisable, and takes a
snapshot of every table on entry so that an exception anywhere inside the
``with`` block restores the pre-transaction state.  Records are frozen
dataclasses, so a shallow copy of each table is a complete snapshot.

Example
-------
>>> store = InMemoryStore()
>>> with store.transaction() as tx:
...     tx.get_document("missing") is None
True
"""
from __future__ import annotations

import dataclasses
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from aumos_custody.documents.models import Document
from aumos_custody.errors import (
    BadRequestError,
    DuplicateActiveGrantError,
    DuplicatePendingRequestError,
)
from aumos_custody.grants.models import AccessGrant, GrantType
from aumos_custody.identity.actor import ActorKind
from aumos_custody.revocation.models import RequestStatus, RequestType, RevocationRequest


@dataclasses.dataclass
class _Tables:
    documents: dict[str, Document]
    grants: dict[int, AccessGrant]
    requests: dict[int, RevocationRequest]
    next_grant_id: int
    next_request_id: int

    def copy(self) -> _Tables:
        return _Tables(
            documents=dict(self.documents),
            grants=dict(self.grants),
            requests=dict(self.requests),
            next_grant_id=self.next_grant_id,
            next_request_id=self.next_request_id,
        )

    def restore(self, snapshot: _Tables) -> None:
        self.documents = snapshot.documents
        self.grants = snapshot.grants
        self.requests = snapshot.requests
        self.next_grant_id = snapshot.next_grant_id
        self.next_request_id = snapshot.next_request_id


class InMemoryStore:
    """Thread-safe, process-local :class:`~aumos_custody.store.base.CustodyStore`."""

    def __init__(self) -> None:
        self._tables = _Tables(
            documents={},
            grants={},
            requests={},
            next_grant_id=1,
            next_request_id=1,
        )
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[_MemoryTransaction]:
        """Open a serialised transaction; roll back on any exception."""
        with self._lock:
            snapshot = self._tables.copy()
            try:
                yield _MemoryTransaction(self._tables)
            except BaseException:
                self._tables.restore(snapshot)
                raise


class _MemoryTransaction:
    """Transaction view over the live tables.  Only valid inside the lock."""

    def __init__(self, tables: _Tables) -> None:
        self._t = tables

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def get_document(self, document_id: str) -> Document | None:
        return self._t.documents.get(document_id)

    def insert_document(self, document: Document) -> Document:
        if document.id in self._t.documents:
            raise BadRequestError(f"Document {document.id} is already registered.")
        self._t.documents[document.id] = document
        return document

    def assign_origin_manager(self, document_id: str, manager_id: int) -> Document | None:
        current = self._t.documents.get(document_id)
        if current is None or current.origin_manager_id is not None:
            return None
        updated = dataclasses.replace(current, origin_manager_id=manager_id)
        self._t.documents[document_id] = updated
        return updated

    def documents_under_authority(self, subject_type: ActorKind, subject_id: int) -> list[Document]:
        if subject_type is ActorKind.MANAGER:
            found = [d for d in self._t.documents.values() if d.origin_manager_id == subject_id]
        elif subject_type is ActorKind.USER:
            found = [
                d
                for d in self._t.documents.values()
                if d.origin_manager_id is None and d.origin_user_context_id == subject_id
            ]
        else:
            found = []
        return sorted(found, key=lambda d: (d.created_at, d.id))

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def get_grant(self, grant_id: int) -> AccessGrant | None:
        return self._t.grants.get(grant_id)

    def find_active_grant(
        self,
        document_id: str,
        subject_type: ActorKind,
        subject_id: int,
    ) -> AccessGrant | None:
        for grant in self._t.grants.values():
            if (
                grant.is_active
                and grant.document_id == document_id
                and grant.subject_type is subject_type
                and grant.subject_id == subject_id
            ):
                return grant
        return None

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
    ) -> AccessGrant:
        if self.find_active_grant(document_id, subject_type, subject_id) is not None:
            raise DuplicateActiveGrantError(
                "An active grant already exists for this document and subject."
            )
        grant = AccessGrant(
            id=self._t.next_grant_id,
            document_id=document_id,
            subject_type=subject_type,
            subject_id=subject_id,
            grant_type=grant_type,
            granted_by_type=granted_by_type,
            granted_by_id=granted_by_id,
            created_at=created_at,
        )
        self._t.grants[grant.id] = grant
        self._t.next_grant_id += 1
        return grant

    def mark_grant_revoked(
        self,
        grant_id: int,
        *,
        revoked_by_type: ActorKind,
        revoked_by_id: int,
        revoked_at: datetime,
    ) -> AccessGrant | None:
        current = self._t.grants.get(grant_id)
        if current is None or not current.is_active:
            return None
        updated = dataclasses.replace(
            current,
            revoked_at=revoked_at,
            revoked_by_type=revoked_by_type,
            revoked_by_id=revoked_by_id,
        )
        self._t.grants[grant_id] = updated
        return updated

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
    ) -> list[AccessGrant]:
        results: list[AccessGrant] = []
        for grant in self._t.grants.values():
            if document_id is not None and grant.document_id != document_id:
                continue
            if subject_type is not None and grant.subject_type is not subject_type:
                continue
            if subject_id is not None and grant.subject_id != subject_id:
                continue
            if granted_by_type is not None and grant.granted_by_type is not granted_by_type:
                continue
            if granted_by_id is not None and grant.granted_by_id != granted_by_id:
                continue
            if grant_type is not None and grant.grant_type is not grant_type:
                continue
            if active_only and not grant.is_active:
                continue
            results.append(grant)
        return sorted(results, key=lambda g: g.id)

    # ------------------------------------------------------------------
    # Revocation requests
    # ------------------------------------------------------------------

    def get_request(self, request_id: int) -> RevocationRequest | None:
        return self._t.requests.get(request_id)

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
    ) -> RevocationRequest:
        duplicate = self.list_requests(
            document_id=document_id,
            requested_by_type=requested_by_type,
            requested_by_id=requested_by_id,
            status=RequestStatus.PENDING,
            request_type=request_type,
        )
        if duplicate:
            raise DuplicatePendingRequestError(
                "A pending revocation request of this type already exists for this document."
            )
        request = RevocationRequest(
            id=self._t.next_request_id,
            document_id=document_id,
            requested_by_type=requested_by_type,
            requested_by_id=requested_by_id,
            request_type=request_type,
            target_subject_type=target_subject_type,
            target_subject_id=target_subject_id,
            status=RequestStatus.PENDING,
            cascade_to_secondary_managers=cascade_to_secondary_managers,
            created_at=created_at,
            updated_at=created_at,
        )
        self._t.requests[request.id] = request
        self._t.next_request_id += 1
        return request

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
        current = self._t.requests.get(request_id)
        if current is None or current.status is not RequestStatus.PENDING:
            return None
        updated = dataclasses.replace(
            current,
            status=status,
            updated_at=updated_at,
            review_notes=review_notes,
            reviewed_by_type=reviewed_by_type,
            reviewed_by_id=reviewed_by_id,
            reviewed_at=reviewed_at,
        )
        self._t.requests[request_id] = updated
        return updated

    def list_requests(
        self,
        *,
        document_id: str | None = None,
        requested_by_type: ActorKind | None = None,
        requested_by_id: int | None = None,
        status: RequestStatus | None = None,
        request_type: RequestType | None = None,
    ) -> list[RevocationRequest]:
        results: list[RevocationRequest] = []
        for request in self._t.requests.values():
            if document_id is not None and request.document_id != document_id:
                continue
            if requested_by_type is not None and request.requested_by_type is not requested_by_type:
                continue
            if requested_by_id is not None and request.requested_by_id != requested_by_id:
                continue
            if status is not None and request.status is not status:
                continue
            if request_type is not None and request.request_type is not request_type:
                continue
            results.append(request)
        return sorted(results, key=lambda r: r.id)
