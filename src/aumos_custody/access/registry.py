"""Document registration and the one-way manager assignment.

DocumentRegistry is where origin authority is established:

* a manager upload makes that manager the permanent origin authority;
* a user upload makes the uploading user the temporary origin authority,
  unless the user selected a manager at intake, in which case the manager
  is the authority from the start and the uploader receives a delegated
  grant;
* :meth:`DocumentRegistry.assign_manager` later moves a self-managed
  document under a manager.  The move is irreversible.

Every establishment writes an explicit ``owner`` grant for the authority.

Example
-------
>>> from aumos_custody.store import InMemoryStore
>>> from aumos_custody.grants.engine import AccessGrantEngine
>>> store = InMemoryStore()
>>> registry = DocumentRegistry(store, AccessGrantEngine(store))
>>> doc = registry.register(Actor.user(42), "doc-1")
>>> doc.origin_user_context_id
42
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable

from aumos_custody.audit.events import AuditEvent, AuditSink, emit
from aumos_custody.documents.authority import origin_authority_of
from aumos_custody.documents.models import Document
from aumos_custody.errors import BadRequestError, ForbiddenError, NotFoundError
from aumos_custody.grants.engine import AccessGrantEngine, utcnow
from aumos_custody.grants.models import AccessGrant, GrantType
from aumos_custody.identity.actor import Actor, ActorKind, require_subject_kind
from aumos_custody.store.base import CustodyStore

logger = logging.getLogger(__name__)


class DocumentRegistry:
    """Registers documents and performs manager assignment.

    Parameters
    ----------
    store:
        The custody store.
    grants:
        Grant engine used to write owner and delegated grants in the same
        transaction as the document change.
    audit:
        Optional audit sink.
    """

    def __init__(
        self,
        store: CustodyStore,
        grants: AccessGrantEngine,
        audit: AuditSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._grants = grants
        self._audit = audit
        self._clock = clock

    def register(
        self,
        uploader: Actor,
        document_id: str | None = None,
        *,
        origin_manager_id: int | None = None,
    ) -> Document:
        """Register a new document uploaded by ``uploader``.

        Parameters
        ----------
        uploader:
            The uploading user or manager.
        document_id:
            Identifier to register under.  A random UUID when omitted.
        origin_manager_id:
            Manager selected by a user at intake.  Ignored for manager
            uploads unless it names the uploader.

        Raises
        ------
        ForbiddenError
            When ``uploader`` is an administrator.
        BadRequestError
            When the identifier is already registered, or a manager upload
            names a different origin manager.
        """
        kind = require_subject_kind(uploader.kind)
        document_id = document_id or str(uuid.uuid4())

        if kind is ActorKind.MANAGER:
            if origin_manager_id is not None and origin_manager_id != uploader.id:
                raise BadRequestError("A manager upload is always under the uploading manager.")
            document = Document(
                id=document_id,
                origin_manager_id=uploader.id,
                origin_user_context_id=None,
                created_at=self._clock(),
            )
        else:
            document = Document(
                id=document_id,
                origin_manager_id=origin_manager_id,
                origin_user_context_id=uploader.id,
                created_at=self._clock(),
            )

        authority = origin_authority_of(document)
        with self._store.transaction() as tx:
            tx.insert_document(document)
            created = [
                self._grants.grant(
                    document.id,
                    authority.kind,
                    authority.id,
                    GrantType.OWNER,
                    authority,
                    establishing=True,
                    tx=tx,
                )
            ]
            if authority != uploader:
                created.append(
                    self._grants.grant(
                        document.id,
                        uploader.kind,
                        uploader.id,
                        GrantType.DELEGATED,
                        authority,
                        tx=tx,
                    )
                )

        logger.info("Document %s registered under %s", document.id, authority)
        emit(
            self._audit,
            AuditEvent.DOCUMENT_REGISTERED,
            uploader,
            documentId=document.id,
            originAuthorityType=authority.kind.value,
            originAuthorityId=authority.id,
        )
        self._audit_granted(created)
        return document

    def assign_manager(self, document_id: str, manager_id: int, actor: Actor) -> Document:
        """Move a self-managed document under ``manager_id``.

        Only the uploading user may assign, and only once.  In the same
        transaction the user's owner grant is revoked, the manager receives
        the owner grant and the user keeps access through a delegated grant
        from the manager.

        Raises
        ------
        ForbiddenError
            When ``actor`` is an administrator or not the uploading user.
        NotFoundError
            When the document does not exist.
        BadRequestError
            When the document already has a manager.
        """
        require_subject_kind(actor.kind)
        manager = Actor.manager(manager_id)
        with self._store.transaction() as tx:
            document = tx.get_document(document_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found.")
            if document.has_origin_manager:
                raise BadRequestError("Document already has a manager.")
            if not actor.matches(ActorKind.USER, document.origin_user_context_id):
                logger.warning("Manager assignment on %s rejected for %s", document_id, actor)
                raise ForbiddenError("Only the user who uploaded the document can assign a manager.")

            updated = tx.assign_origin_manager(document_id, manager_id)
            if updated is None:
                raise BadRequestError("Document already has a manager.")

            revoked: list[AccessGrant] = []
            for holder in (actor, manager):
                if tx.find_active_grant(document_id, holder.kind, holder.id) is not None:
                    revoked.append(
                        self._grants.revoke(document_id, holder.kind, holder.id, actor, tx=tx)
                    )
            created = [
                self._grants.grant(
                    document_id,
                    ActorKind.MANAGER,
                    manager_id,
                    GrantType.OWNER,
                    manager,
                    establishing=True,
                    tx=tx,
                ),
                self._grants.grant(
                    document_id,
                    actor.kind,
                    actor.id,
                    GrantType.DELEGATED,
                    manager,
                    tx=tx,
                ),
            ]

        logger.info("Document %s assigned to %s by %s", document_id, manager, actor)
        emit(
            self._audit,
            AuditEvent.MANAGER_ASSIGNED,
            actor,
            documentId=document_id,
            managerId=manager_id,
        )
        for grant in revoked:
            emit(
                self._audit,
                AuditEvent.ACCESS_REVOKED,
                actor,
                documentId=document_id,
                grantId=grant.id,
                subjectType=grant.subject_type.value,
                subjectId=grant.subject_id,
                cascade=False,
            )
        self._audit_granted(created)
        return updated

    def _audit_granted(self, grants: list[AccessGrant]) -> None:
        for grant in grants:
            emit(
                self._audit,
                AuditEvent.ACCESS_GRANTED,
                grant.granted_by,
                documentId=grant.document_id,
                grantId=grant.id,
                subjectType=grant.subject_type.value,
                subjectId=grant.subject_id,
                grantType=grant.grant_type.value,
            )
