"""Access grant engine.

AccessGrantEngine is the single writer of the access grant table.  It
answers "does this subject currently have access to this document", creates
grants under the delegation rules, revokes them by stamping the revocation
fields (never deleting a row) and cascades revocation along derived-grant
lineage.

Every public method runs inside one store transaction.  Callers that compose
several engine calls into one atomic unit pass their own ``tx``; in that case
the engine writes no audit records and the caller audits after commit.

Delegation rules
----------------
* ``owner`` grants are written only while authority is being established,
  for the origin authority itself.
* ``delegated`` grants are issued only by the origin authority.
* ``derived`` grants are issued only by the holder of an active
  ``delegated`` or ``derived`` grant; ``granted_by`` on a derived grant is
  the lineage link followed by :meth:`AccessGrantEngine.cascade_revoke_secondary`.
* Administrators never issue or receive grants.

Example
-------
>>> from aumos_custody.store import InMemoryStore
>>> engine = AccessGrantEngine(InMemoryStore())
>>> engine.has_access("missing-doc", "user", 1)
False
"""
from __future__ import annotations

import logging
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator

from aumos_custody.audit.events import AuditEvent, AuditSink, emit
from aumos_custody.documents.authority import origin_authority_of
from aumos_custody.documents.models import Document
from aumos_custody.errors import (
    BadRequestError,
    ForbiddenError,
    NoActiveGrantError,
    NotFoundError,
)
from aumos_custody.grants.models import AccessGrant, GrantType
from aumos_custody.identity.actor import Actor, ActorKind, require_subject_kind
from aumos_custody.store.base import CustodyStore, CustodyTransaction

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class AccessGrantEngine:
    """Creates, checks and revokes document access grants.

    Parameters
    ----------
    store:
        The custody store holding documents and grants.
    audit:
        Optional audit sink; receives ``ACCESS_GRANTED`` and
        ``ACCESS_REVOKED`` records for operations that own their transaction.
    clock:
        Returns the current UTC datetime.  Overridable for tests.
    """

    def __init__(
        self,
        store: CustodyStore,
        audit: AuditSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock

    @contextmanager
    def _unit(self, tx: CustodyTransaction | None) -> Iterator[CustodyTransaction]:
        if tx is not None:
            yield tx
            return
        with self._store.transaction() as own:
            yield own

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    def has_access(
        self,
        document_id: str,
        subject_type: ActorKind | str,
        subject_id: int,
        *,
        tx: CustodyTransaction | None = None,
    ) -> bool:
        """Return True when the subject currently has access to the document.

        Access means an active grant for the exact (document, subject) tuple,
        or being the document's resolved origin authority.  Administrators
        and unknown documents never have access.
        """
        try:
            kind = ActorKind(subject_type)
        except ValueError:
            raise BadRequestError(f"Unknown subject kind {subject_type!r}.") from None
        if kind is ActorKind.ADMIN:
            return False
        with self._unit(tx) as t:
            document = t.get_document(document_id)
            if document is None:
                return False
            return self._has_access(t, document, Actor(kind, subject_id))

    def _has_access(self, t: CustodyTransaction, document: Document, subject: Actor) -> bool:
        if subject.is_admin:
            return False
        if t.find_active_grant(document.id, subject.kind, subject.id) is not None:
            return True
        return origin_authority_of(document) == subject

    # ------------------------------------------------------------------
    # Grant creation
    # ------------------------------------------------------------------

    def grant(
        self,
        document_id: str,
        subject_type: ActorKind | str,
        subject_id: int,
        grant_type: GrantType | str,
        granted_by: Actor,
        *,
        establishing: bool = False,
        tx: CustodyTransaction | None = None,
    ) -> AccessGrant:
        """Create a new active grant.

        Parameters
        ----------
        document_id:
            Document to grant access to.
        subject_type / subject_id:
            The grantee.
        grant_type:
            ``owner``, ``delegated`` or ``derived``.
        granted_by:
            The grantor.  Must currently have access unless an ``owner``
            grant is being written while establishing authority.
        establishing:
            True only when the document registry writes the origin
            authority's ``owner`` grant.

        Returns
        -------
        AccessGrant
            The newly created grant.

        Raises
        ------
        NotFoundError
            When the document does not exist.
        ForbiddenError
            When an administrator is involved or the grantor lacks the
            authority required for ``grant_type``.
        BadRequestError
            For an invalid grant type, an owner grant outside authority
            establishment, or a non-owner grant to the origin authority.
        DuplicateActiveGrantError
            When the subject already holds an active grant on the document.
        """
        owned = tx is None
        with self._unit(tx) as t:
            created = self._grant(
                t, document_id, subject_type, subject_id, grant_type, granted_by, establishing
            )
        logger.info(
            "Grant %d created: document=%s subject=%s type=%s by=%s",
            created.id,
            created.document_id,
            created.subject,
            created.grant_type.value,
            created.granted_by,
        )
        if owned:
            emit(
                self._audit,
                AuditEvent.ACCESS_GRANTED,
                granted_by,
                documentId=created.document_id,
                grantId=created.id,
                subjectType=created.subject_type.value,
                subjectId=created.subject_id,
                grantType=created.grant_type.value,
            )
        return created

    def _grant(
        self,
        t: CustodyTransaction,
        document_id: str,
        subject_type: ActorKind | str,
        subject_id: int,
        grant_type: GrantType | str,
        granted_by: Actor,
        establishing: bool,
    ) -> AccessGrant:
        subject = Actor(require_subject_kind(subject_type), subject_id)
        require_subject_kind(granted_by.kind)
        try:
            kind = GrantType(grant_type)
        except ValueError:
            raise BadRequestError(f"Unknown grant type {grant_type!r}.") from None

        document = t.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found.")
        authority = origin_authority_of(document)

        if kind is GrantType.OWNER:
            if not establishing:
                raise BadRequestError("Owner grants are only written when authority is established.")
            if subject != authority or granted_by != authority:
                raise BadRequestError("Only the origin authority can hold an owner grant.")
        else:
            if not self._has_access(t, document, granted_by):
                logger.warning(
                    "Grant rejected: %s has no access to document %s", granted_by, document_id
                )
                raise ForbiddenError(
                    "Grantor does not have authority to create access grants for this document."
                )
            if subject == authority:
                raise BadRequestError(
                    "Cannot create a grant for the origin authority; it already holds owner access."
                )
            if kind is GrantType.DELEGATED and granted_by != authority:
                raise ForbiddenError("Only the origin authority can delegate access.")
            if kind is GrantType.DERIVED:
                held = t.find_active_grant(document_id, granted_by.kind, granted_by.id)
                if held is None or held.grant_type not in (GrantType.DELEGATED, GrantType.DERIVED):
                    raise ForbiddenError(
                        "Only holders of a delegated or derived grant can issue derived access."
                    )

        return t.insert_grant(
            document_id=document_id,
            subject_type=subject.kind,
            subject_id=subject.id,
            grant_type=kind,
            granted_by_type=granted_by.kind,
            granted_by_id=granted_by.id,
            created_at=self._clock(),
        )

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(
        self,
        document_id: str,
        subject_type: ActorKind | str,
        subject_id: int,
        revoked_by: Actor,
        *,
        tx: CustodyTransaction | None = None,
    ) -> AccessGrant:
        """Revoke the active grant for (document, subject).

        Performs no authorisation of its own: callers (the revocation
        workflow and :meth:`revoke_grant`) decide who may revoke.

        Raises
        ------
        NoActiveGrantError
            When the tuple has no active grant, including when it was
            already revoked by an earlier or concurrent call.
        """
        owned = tx is None
        with self._unit(tx) as t:
            revoked = self._revoke(t, document_id, subject_type, subject_id, revoked_by)
        if owned:
            self._audit_revoked([revoked], revoked_by)
        return revoked

    def _revoke(
        self,
        t: CustodyTransaction,
        document_id: str,
        subject_type: ActorKind | str,
        subject_id: int,
        revoked_by: Actor,
    ) -> AccessGrant:
        kind = require_subject_kind(subject_type)
        require_subject_kind(revoked_by.kind)
        active = t.find_active_grant(document_id, kind, subject_id)
        if active is None:
            raise NoActiveGrantError("No active grant exists for this document and subject.")
        return self._mark_revoked(t, active, revoked_by)

    def _mark_revoked(self, t: CustodyTransaction, grant: AccessGrant, revoked_by: Actor) -> AccessGrant:
        updated = t.mark_grant_revoked(
            grant.id,
            revoked_by_type=revoked_by.kind,
            revoked_by_id=revoked_by.id,
            revoked_at=self._clock(),
        )
        if updated is None:
            raise NoActiveGrantError("Grant is already revoked.")
        logger.info("Grant %d revoked by %s", updated.id, revoked_by)
        return updated

    def cascade_revoke_secondary(
        self,
        document_id: str,
        root_subject: Actor,
        revoked_by: Actor,
        *,
        tx: CustodyTransaction | None = None,
    ) -> list[AccessGrant]:
        """Revoke every active derived grant tracing back to ``root_subject``.

        Walks the lineage breadth-first: first the derived grants issued by
        ``root_subject``, then those issued by each newly revoked subject,
        and so on.  Grants issued by anyone else are untouched.

        Returns
        -------
        list[AccessGrant]
            The grants revoked, in the order they were revoked.
        """
        owned = tx is None
        with self._unit(tx) as t:
            revoked = self._cascade(t, document_id, root_subject, revoked_by)
        if owned:
            self._audit_revoked(revoked, revoked_by, cascade=True)
        return revoked

    def _cascade(
        self,
        t: CustodyTransaction,
        document_id: str,
        root_subject: Actor,
        revoked_by: Actor,
    ) -> list[AccessGrant]:
        revoked: list[AccessGrant] = []
        seen = {root_subject}
        queue: deque[Actor] = deque([root_subject])
        while queue:
            grantor = queue.popleft()
            derived = t.list_grants(
                document_id=document_id,
                granted_by_type=grantor.kind,
                granted_by_id=grantor.id,
                grant_type=GrantType.DERIVED,
                active_only=True,
            )
            for grant in derived:
                revoked.append(self._mark_revoked(t, grant, revoked_by))
                if grant.subject not in seen:
                    seen.add(grant.subject)
                    queue.append(grant.subject)
        if revoked:
            logger.info(
                "Cascade from %s on document %s revoked %d derived grant(s)",
                root_subject,
                document_id,
                len(revoked),
            )
        return revoked

    def revoke_grant(
        self,
        grant_id: int,
        actor: Actor,
        *,
        cascade: bool = False,
        tx: CustodyTransaction | None = None,
    ) -> list[AccessGrant]:
        """Revoke a grant by id on behalf of ``actor``.

        The origin authority may revoke any grant on its document; any
        other actor may revoke only grants it issued itself.

        Returns
        -------
        list[AccessGrant]
            The revoked grant first, followed by any derived grants revoked
            by the cascade.

        Raises
        ------
        NotFoundError
            When the grant does not exist.
        ForbiddenError
            When ``actor`` is an administrator or lacks revocation rights.
        BadRequestError
            When the grant is an owner grant.
        NoActiveGrantError
            When the grant is already revoked.
        """
        owned = tx is None
        require_subject_kind(actor.kind)
        with self._unit(tx) as t:
            grant = t.get_grant(grant_id)
            if grant is None:
                raise NotFoundError(f"Grant {grant_id} not found.")
            if not grant.is_active:
                raise NoActiveGrantError("Grant is already revoked.")
            document = t.get_document(grant.document_id)
            if document is None:
                raise NotFoundError(f"Document {grant.document_id} not found.")
            if origin_authority_of(document) != actor and grant.granted_by != actor:
                logger.warning("Revoke of grant %d rejected for %s", grant_id, actor)
                raise ForbiddenError("Revoker does not have authority to revoke this grant.")
            if grant.grant_type is GrantType.OWNER:
                raise BadRequestError("Owner grants cannot be revoked directly.")
            revoked = [self._mark_revoked(t, grant, actor)]
            if cascade:
                revoked.extend(self._cascade(t, grant.document_id, grant.subject, actor))
        if owned:
            self._audit_revoked(revoked[:1], actor)
            self._audit_revoked(revoked[1:], actor, cascade=True)
        return revoked

    def _audit_revoked(
        self,
        grants: list[AccessGrant],
        actor: Actor,
        *,
        cascade: bool = False,
    ) -> None:
        for grant in grants:
            emit(
                self._audit,
                AuditEvent.ACCESS_REVOKED,
                actor,
                documentId=grant.document_id,
                grantId=grant.id,
                subjectType=grant.subject_type.value,
                subjectId=grant.subject_id,
                cascade=cascade,
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_grant(self, grant_id: int, *, tx: CustodyTransaction | None = None) -> AccessGrant:
        """Return a grant by id, active or revoked.

        Raises
        ------
        NotFoundError
            When the grant does not exist.
        """
        with self._unit(tx) as t:
            grant = t.get_grant(grant_id)
        if grant is None:
            raise NotFoundError(f"Grant {grant_id} not found.")
        return grant

    def active_grants(
        self,
        document_id: str,
        *,
        tx: CustodyTransaction | None = None,
    ) -> list[AccessGrant]:
        """Return the active grants of a document ordered by id."""
        with self._unit(tx) as t:
            return t.list_grants(document_id=document_id, active_only=True)

    def grants_for_subject(
        self,
        subject_type: ActorKind | str,
        subject_id: int,
        *,
        active_only: bool = True,
        tx: CustodyTransaction | None = None,
    ) -> list[AccessGrant]:
        """Return the grants held by a subject across all documents."""
        kind = require_subject_kind(subject_type)
        with self._unit(tx) as t:
            return t.list_grants(subject_type=kind, subject_id=subject_id, active_only=active_only)

    def history(
        self,
        document_id: str,
        *,
        tx: CustodyTransaction | None = None,
    ) -> list[AccessGrant]:
        """Return every grant ever written for a document, revoked ones included."""
        with self._unit(tx) as t:
            return t.list_grants(document_id=document_id)
