"""Read-access checks on documents.

DocumentAccessService is the gate adjacent modules use before returning
document metadata.  It never confirms the existence of a document to an
actor without access: both "missing" and "no access" answer
:class:`~aumos_custody.errors.NotFoundError`.  Administrators are
hard-denied with :class:`~aumos_custody.errors.ForbiddenError`.

Operation matrix
----------------
========== ===================================
view        origin authority or active grant
download    origin authority or active grant
trigger-ocr origin authority only
delete      origin authority only
========== ===================================
"""
from __future__ import annotations

import logging
from enum import Enum

from aumos_custody.audit.events import AuditEvent, AuditSink, emit
from aumos_custody.documents.authority import is_origin_authority
from aumos_custody.documents.models import Document
from aumos_custody.errors import BadRequestError, ForbiddenError, NotFoundError
from aumos_custody.grants.engine import AccessGrantEngine
from aumos_custody.identity.actor import Actor
from aumos_custody.pagination import Page, check_page_params, paginate
from aumos_custody.store.base import CustodyStore

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Document operations subject to access control."""

    VIEW = "view"
    DOWNLOAD = "download"
    TRIGGER_OCR = "trigger-ocr"
    DELETE = "delete"


_AUTHORITY_ONLY: frozenset[Operation] = frozenset([Operation.TRIGGER_OCR, Operation.DELETE])


class DocumentAccessService:
    """Enforces read access to documents and records every attempt.

    Parameters
    ----------
    store:
        The custody store.
    grants:
        The grant engine answering access checks.
    audit:
        Optional audit sink; receives ``DOCUMENT_ACCESSED`` and
        ``UNAUTHORIZED_DOCUMENT_ACCESS`` records.
    """

    def __init__(
        self,
        store: CustodyStore,
        grants: AccessGrantEngine,
        audit: AuditSink | None = None,
    ) -> None:
        self._store = store
        self._grants = grants
        self._audit = audit

    def get_document(
        self,
        document_id: str,
        actor: Actor,
    ) -> Document:
        """Return the document if ``actor`` may read it.

        Raises
        ------
        ForbiddenError
            When ``actor`` is an administrator.
        NotFoundError
            When the document does not exist or ``actor`` has no access.
        """
        if actor.is_admin:
            self._record(document_id, actor, Operation.VIEW, success=False)
            raise ForbiddenError("Admins do not have document-level access.")

        with self._store.transaction() as t:
            document = t.get_document(document_id)
            if document is None:
                raise NotFoundError("Document not found.")
            allowed = self._grants.has_access(document_id, actor.kind, actor.id, tx=t)

        if not allowed:
            logger.warning("Read of document %s denied for %s", document_id, actor)
            self._record(document_id, actor, Operation.VIEW, success=False)
            raise NotFoundError("Document not found.")

        self._record(document_id, actor, Operation.VIEW, success=True)
        return document

    def can_perform(
        self,
        document_id: str,
        operation: Operation | str,
        actor: Actor,
    ) -> bool:
        """Return True when ``actor`` may perform ``operation`` on the document.

        Raises
        ------
        BadRequestError
            When ``operation`` is not a known operation.
        """
        try:
            op = Operation(operation)
        except ValueError:
            raise BadRequestError(f"Unknown operation {operation!r}.") from None
        if actor.is_admin:
            return False
        with self._store.transaction() as t:
            document = t.get_document(document_id)
            if document is None:
                return False
            if op in _AUTHORITY_ONLY:
                return is_origin_authority(document, actor)
            return self._grants.has_access(document_id, actor.kind, actor.id, tx=t)

    def list_documents(
        self,
        actor: Actor,
        page: int | None = None,
        limit: int | None = None,
    ) -> Page[Document]:
        """Return the documents ``actor`` can read, oldest first.

        Covers documents under the actor's origin authority and documents
        reached through an active grant.  Administrators get an empty page.
        """
        page, limit = check_page_params(page, limit)
        if actor.is_admin:
            return Page(data=[], has_next_page=False, page=page, limit=limit)

        with self._store.transaction() as t:
            found: dict[str, Document] = {
                d.id: d for d in t.documents_under_authority(actor.kind, actor.id)
            }
            for grant in t.list_grants(
                subject_type=actor.kind, subject_id=actor.id, active_only=True
            ):
                if grant.document_id not in found:
                    document = t.get_document(grant.document_id)
                    if document is not None:
                        found[document.id] = document
        ordered = sorted(found.values(), key=lambda d: (d.created_at, d.id))
        return paginate(ordered, page, limit)

    def _record(self, document_id: str, actor: Actor, operation: Operation, *, success: bool) -> None:
        emit(
            self._audit,
            AuditEvent.DOCUMENT_ACCESSED if success else AuditEvent.UNAUTHORIZED_DOCUMENT_ACCESS,
            actor,
            success=success,
            documentId=document_id,
            operation=operation.value,
        )
