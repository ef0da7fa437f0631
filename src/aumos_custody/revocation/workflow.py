"""Revocation request state machine.

RevocationWorkflow manages the lifecycle of revocation requests: creation
by an actor with access, review (approve or deny) by the document's origin
authority, and cancellation by the requester.

State machine::

    pending ──approve (origin authority)──▶ approved
       │    ──deny    (origin authority)──▶ denied
       └────cancel    (requester)─────────▶ cancelled

Terminal states have no outgoing transitions.  Every transition is a
conditional store update that only succeeds while the request is still
pending, so of two concurrent reviews exactly one wins and the other fails
with :class:`~aumos_custody.errors.InvalidTransitionError`.

Approval revokes the target's grant (and, when requested, cascades along
derived-grant lineage) in the same transaction as the status change.

Example
-------
>>> request = workflow.create_request("doc-1", "self_revocation", False, Actor.user(42))
>>> request.status
<RequestStatus.PENDING: 'pending'>
>>> workflow.approve_request(request.id, "ok", Actor.user(42)).status
<RequestStatus.APPROVED: 'approved'>
"""
from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, TypeVar

from aumos_custody.access.document_access import DocumentAccessService
from aumos_custody.audit.events import AuditEvent, AuditSink, emit
from aumos_custody.documents.authority import origin_authority_of
from aumos_custody.documents.models import Document
from aumos_custody.errors import (
    BadRequestError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from aumos_custody.grants.engine import AccessGrantEngine, utcnow
from aumos_custody.grants.models import AccessGrant
from aumos_custody.identity.actor import Actor, ActorKind
from aumos_custody.pagination import Page, check_page_params, paginate
from aumos_custody.revocation.models import RequestStatus, RequestType, RevocationRequest
from aumos_custody.store.base import CustodyStore, CustodyTransaction

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

_TARGET_KIND: dict[RequestType, ActorKind] = {
    RequestType.USER_REVOCATION: ActorKind.USER,
    RequestType.MANAGER_REVOCATION: ActorKind.MANAGER,
}


class RevocationWorkflow:
    """Creates and resolves revocation requests.

    Parameters
    ----------
    store:
        The custody store.
    grants:
        Grant engine used for access checks and for revocation on approval.
    documents:
        Document read-access check used when listing a document's requests.
    audit:
        Optional audit sink.
    clock:
        Returns the current UTC datetime.
    """

    def __init__(
        self,
        store: CustodyStore,
        grants: AccessGrantEngine,
        documents: DocumentAccessService,
        audit: AuditSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._grants = grants
        self._documents = documents
        self._audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_request(
        self,
        document_id: str,
        request_type: RequestType | str,
        cascade_to_secondary_managers: bool,
        actor: Actor,
        target: Actor | None = None,
    ) -> RevocationRequest:
        """Open a pending revocation request.

        Parameters
        ----------
        document_id:
            The document whose access is to be revoked.
        request_type:
            ``self_revocation``, ``user_revocation`` or ``manager_revocation``.
        cascade_to_secondary_managers:
            When True, approval also revokes derived grants issued by the
            target.
        actor:
            The requester.  Must currently have access to the document.
        target:
            The subject whose access is revoked.  Defaults to ``actor`` for
            ``self_revocation`` and is required for the other types.  It
            must hold an active grant, and only a self revocation may
            target the origin authority.

        Returns
        -------
        RevocationRequest
            The new request in PENDING status.

        Raises
        ------
        NotFoundError
            When the document does not exist.
        ForbiddenError
            When ``actor`` has no access to the document (administrators
            never do).
        BadRequestError
            For an admin requester, an invalid type or target, a target
            without an active grant, or a duplicate pending request.
        """
        kind = _parse(RequestType, request_type, "request type")
        with self._store.transaction() as t:
            document = t.get_document(document_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found.")
            if not self._grants.has_access(document_id, actor.kind, actor.id, tx=t):
                logger.warning("Revocation request on %s rejected for %s", document_id, actor)
                raise ForbiddenError("Requester does not have access to this document.")
            if actor.is_admin:
                raise BadRequestError("Admins cannot create revocation requests.")
            subject = self._resolve_target(t, document, kind, actor, target)
            request = t.insert_request(
                document_id=document_id,
                requested_by_type=actor.kind,
                requested_by_id=actor.id,
                request_type=kind,
                target_subject_type=subject.kind,
                target_subject_id=subject.id,
                cascade_to_secondary_managers=bool(cascade_to_secondary_managers),
                created_at=self._clock(),
            )

        logger.info(
            "Revocation request %d opened by %s on document %s (%s, target %s)",
            request.id,
            actor,
            document_id,
            kind.value,
            subject,
        )
        emit(
            self._audit,
            AuditEvent.REVOCATION_REQUESTED,
            actor,
            requestId=request.id,
            documentId=document_id,
            requestType=kind.value,
            targetSubjectType=subject.kind.value,
            targetSubjectId=subject.id,
            cascadeToSecondaryManagers=request.cascade_to_secondary_managers,
        )
        return request

    def _resolve_target(
        self,
        t: CustodyTransaction,
        document: Document,
        kind: RequestType,
        actor: Actor,
        target: Actor | None,
    ) -> Actor:
        # Approval revokes a grant row, so the target must hold one.
        if kind is RequestType.SELF_REVOCATION:
            if target is not None and target != actor:
                raise BadRequestError("A self revocation can only target the requester.")
            subject = actor
        else:
            if target is None:
                raise BadRequestError(f"A {kind.value} request requires a target subject.")
            if target.kind is not _TARGET_KIND[kind]:
                raise BadRequestError(
                    f"A {kind.value} request must target a {_TARGET_KIND[kind].value}."
                )
            if origin_authority_of(document) == target:
                raise BadRequestError("The origin authority cannot be the target of this request.")
            subject = target
        if t.find_active_grant(document.id, subject.kind, subject.id) is None:
            raise BadRequestError("The target subject holds no active grant on this document.")
        return subject

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def approve_request(
        self,
        request_id: int,
        review_notes: str | None,
        actor: Actor,
    ) -> RevocationRequest:
        """Approve a pending request and revoke the target's access.

        Raises
        ------
        NotFoundError
            When the request or its document does not exist.
        InvalidTransitionError
            When the request is not pending, including when a concurrent
            review won.
        ForbiddenError
            When ``actor`` is not exactly the origin authority.
        NoActiveGrantError
            When the target no longer holds an active grant; nothing is
            changed and the request stays pending.
        """
        with self._store.transaction() as t:
            request = self._reviewable(t, request_id, actor, "approve")
            now = self._clock()
            updated = self._transition(
                t,
                request,
                RequestStatus.APPROVED,
                now,
                review_notes=review_notes,
                reviewed_by=actor,
            )
            target = request.target
            revoked: list[AccessGrant] = [
                self._grants.revoke(request.document_id, target.kind, target.id, actor, tx=t)
            ]
            if request.cascade_to_secondary_managers:
                revoked.extend(
                    self._grants.cascade_revoke_secondary(request.document_id, target, actor, tx=t)
                )

        logger.info(
            "Revocation request %d approved by %s; %d grant(s) revoked",
            request_id,
            actor,
            len(revoked),
        )
        emit(
            self._audit,
            AuditEvent.REVOCATION_APPROVED,
            actor,
            requestId=request_id,
            documentId=request.document_id,
            cascadeToSecondaryManagers=request.cascade_to_secondary_managers,
            revokedGrantIds=[g.id for g in revoked],
        )
        for index, grant in enumerate(revoked):
            emit(
                self._audit,
                AuditEvent.ACCESS_REVOKED,
                actor,
                documentId=grant.document_id,
                grantId=grant.id,
                subjectType=grant.subject_type.value,
                subjectId=grant.subject_id,
                cascade=index > 0,
                requestId=request_id,
            )
        return updated

    def deny_request(
        self,
        request_id: int,
        review_notes: str | None,
        actor: Actor,
    ) -> RevocationRequest:
        """Deny a pending request.  No grant is touched.

        Raises the same errors as :meth:`approve_request` except
        ``NoActiveGrantError``.
        """
        with self._store.transaction() as t:
            request = self._reviewable(t, request_id, actor, "deny")
            updated = self._transition(
                t,
                request,
                RequestStatus.DENIED,
                self._clock(),
                review_notes=review_notes,
                reviewed_by=actor,
            )

        logger.info("Revocation request %d denied by %s", request_id, actor)
        emit(
            self._audit,
            AuditEvent.REVOCATION_DENIED,
            actor,
            requestId=request_id,
            documentId=request.document_id,
        )
        return updated

    def cancel_request(self, request_id: int, actor: Actor) -> RevocationRequest:
        """Withdraw a pending request.  Only the requester may cancel.

        Raises
        ------
        NotFoundError
            When the request does not exist.
        InvalidTransitionError
            When the request is not pending.
        ForbiddenError
            When ``actor`` is not exactly the requester, including when it
            is the origin authority.
        """
        with self._store.transaction() as t:
            request = t.get_request(request_id)
            if request is None:
                raise NotFoundError(f"Revocation request {request_id} not found.")
            if request.status is not RequestStatus.PENDING:
                raise InvalidTransitionError(
                    f"Cannot cancel request in status: {request.status.value}"
                )
            if request.requester != actor:
                logger.warning("Cancel of request %d rejected for %s", request_id, actor)
                raise ForbiddenError("Only the requester can cancel a revocation request.")
            updated = self._transition(t, request, RequestStatus.CANCELLED, self._clock())

        logger.info("Revocation request %d cancelled by %s", request_id, actor)
        emit(
            self._audit,
            AuditEvent.REVOCATION_CANCELLED,
            actor,
            requestId=request_id,
            documentId=request.document_id,
        )
        return updated

    def _reviewable(
        self,
        t: CustodyTransaction,
        request_id: int,
        actor: Actor,
        verb: str,
    ) -> RevocationRequest:
        request = t.get_request(request_id)
        if request is None:
            raise NotFoundError(f"Revocation request {request_id} not found.")
        if request.status is not RequestStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot {verb} request in status: {request.status.value}"
            )
        document = t.get_document(request.document_id)
        if document is None:
            raise NotFoundError(f"Document {request.document_id} not found.")
        if origin_authority_of(document) != actor:
            logger.warning("%s of request %d rejected for %s", verb.capitalize(), request_id, actor)
            raise ForbiddenError(f"Only the origin authority can {verb} revocation requests.")
        return request

    def _transition(
        self,
        t: CustodyTransaction,
        request: RevocationRequest,
        status: RequestStatus,
        now: datetime,
        *,
        review_notes: str | None = None,
        reviewed_by: Actor | None = None,
    ) -> RevocationRequest:
        updated = t.transition_request(
            request.id,
            status=status,
            updated_at=now,
            review_notes=review_notes,
            reviewed_by_type=reviewed_by.kind if reviewed_by else None,
            reviewed_by_id=reviewed_by.id if reviewed_by else None,
            reviewed_at=now if reviewed_by else None,
        )
        if updated is None:
            raise InvalidTransitionError("Revocation request is no longer pending.")
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: int, actor: Actor) -> RevocationRequest:
        """Return a request visible to ``actor``.

        Only the document's origin authority and the requester may view a
        request.  Unlike :meth:`list_requests` with ``document_id``, there is
        no document read check here: a requester keeps sight of its request
        after losing access to the document, for example once the request
        itself is approved.

        Raises
        ------
        NotFoundError
            When the request does not exist.
        ForbiddenError
            For any other actor, administrators included.
        """
        with self._store.transaction() as t:
            request = t.get_request(request_id)
            if request is None:
                raise NotFoundError(f"Revocation request {request_id} not found.")
            document = t.get_document(request.document_id)
            if document is None:
                raise NotFoundError(f"Document {request.document_id} not found.")
            authority = origin_authority_of(document)
        if actor.is_admin or (actor != authority and actor != request.requester):
            raise ForbiddenError("Actor does not have permission to view this request.")
        return request

    def list_requests(
        self,
        actor: Actor,
        *,
        document_id: str | None = None,
        status: RequestStatus | str | None = None,
        request_type: RequestType | str | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> Page[RevocationRequest]:
        """List requests visible to ``actor``, oldest first.

        With ``document_id`` the actor must pass the document read check;
        the origin authority then sees every request on the document and
        anyone else only their own.  Without ``document_id`` the actor sees
        the requests it raised.

        Raises
        ------
        ForbiddenError
            When ``actor`` is an administrator.
        NotFoundError
            When ``document_id`` is given and the actor cannot read it.
        BadRequestError
            For invalid filters or pagination parameters.
        """
        page, limit = check_page_params(page, limit)
        if actor.is_admin:
            raise ForbiddenError("Admins do not have document-level access.")
        status_filter = _parse(RequestStatus, status, "status") if status is not None else None
        type_filter = (
            _parse(RequestType, request_type, "request type") if request_type is not None else None
        )

        sees_all = False
        if document_id is not None:
            document = self._documents.get_document(document_id, actor)
            sees_all = origin_authority_of(document) == actor

        with self._store.transaction() as t:
            if document_id is not None:
                requests = t.list_requests(
                    document_id=document_id,
                    requested_by_type=None if sees_all else actor.kind,
                    requested_by_id=None if sees_all else actor.id,
                    status=status_filter,
                    request_type=type_filter,
                )
            else:
                requests = t.list_requests(
                    requested_by_type=actor.kind,
                    requested_by_id=actor.id,
                    status=status_filter,
                    request_type=type_filter,
                )
        return paginate(requests, page, limit)


def _parse(enum_cls: type[E], value: object, label: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        raise BadRequestError(f"Unknown {label} {value!r}.") from None
