"""Tests for RevocationWorkflow: creation, review, cancellation and visibility."""
from __future__ import annotations

import threading

import pytest

from aumos_custody.audit.events import AuditEvent
from aumos_custody.audit.logger import InMemoryAuditLogger
from aumos_custody.audit.search import AuditSearch
from aumos_custody.convenience import CustodyEngine
from aumos_custody.documents.models import Document
from aumos_custody.errors import (
    BadRequestError,
    DuplicatePendingRequestError,
    ForbiddenError,
    InvalidTransitionError,
    NoActiveGrantError,
    NotFoundError,
)
from aumos_custody.identity.actor import Actor
from aumos_custody.revocation.models import RequestStatus, RequestType, RevocationRequest
from aumos_custody.store.memory import InMemoryStore

MANAGER = Actor.manager(7)
USER = Actor.user(3)


@pytest.fixture()
def delegated_doc(custody: CustodyEngine, manager_doc: Document) -> Document:
    """doc-D under manager:7 with user:3 holding a delegated grant."""
    custody.grants.grant(manager_doc.id, "user", 3, "delegated", MANAGER)
    return manager_doc


@pytest.fixture()
def self_request(custody: CustodyEngine, delegated_doc: Document) -> RevocationRequest:
    return custody.workflow.create_request(delegated_doc.id, "self_revocation", False, USER)


# ---------------------------------------------------------------------------
# create_request
# ---------------------------------------------------------------------------


class TestCreateRequest:
    def test_self_revocation_defaults_target(self, self_request: RevocationRequest) -> None:
        assert self_request.status is RequestStatus.PENDING
        assert self_request.request_type is RequestType.SELF_REVOCATION
        assert self_request.target == USER
        assert self_request.requester == USER

    def test_user_revocation_by_authority(self, custody: CustodyEngine, delegated_doc: Document) -> None:
        request = custody.workflow.create_request(
            delegated_doc.id, "user_revocation", True, MANAGER, target=USER
        )
        assert request.target == USER
        assert request.cascade_to_secondary_managers is True

    def test_missing_document(self, custody: CustodyEngine) -> None:
        with pytest.raises(NotFoundError):
            custody.workflow.create_request("missing", "self_revocation", False, USER)

    def test_requester_without_access(self, custody: CustodyEngine, delegated_doc: Document) -> None:
        with pytest.raises(ForbiddenError):
            custody.workflow.create_request(delegated_doc.id, "self_revocation", False, Actor.user(99))

    def test_admin_requester(self, custody: CustodyEngine, delegated_doc: Document) -> None:
        with pytest.raises(ForbiddenError):
            custody.workflow.create_request(delegated_doc.id, "self_revocation", False, Actor.admin(1))

    def test_invalid_type(self, custody: CustodyEngine, delegated_doc: Document) -> None:
        with pytest.raises(BadRequestError, match="request type"):
            custody.workflow.create_request(delegated_doc.id, "total_revocation", False, USER)

    def test_target_required_for_user_revocation(self, custody: CustodyEngine, delegated_doc: Document) -> None:
        with pytest.raises(BadRequestError, match="target"):
            custody.workflow.create_request(delegated_doc.id, "user_revocation", False, MANAGER)

    def test_target_kind_must_match_type(self, custody: CustodyEngine, delegated_doc: Document) -> None:
        with pytest.raises(BadRequestError):
            custody.workflow.create_request(
                delegated_doc.id, "manager_revocation", False, MANAGER, target=USER
            )

    def test_target_without_access(self, custody: CustodyEngine, delegated_doc: Document) -> None:
        with pytest.raises(BadRequestError, match="no active grant"):
            custody.workflow.create_request(
                delegated_doc.id, "user_revocation", False, MANAGER, target=Actor.user(99)
            )

    def test_delegate_cannot_target_origin_authority(
        self, custody: CustodyEngine, manager_doc: Document
    ) -> None:
        custody.grants.grant(manager_doc.id, "manager", 8, "delegated", MANAGER)
        with pytest.raises(BadRequestError):
            custody.workflow.create_request(
                manager_doc.id, "manager_revocation", False, Actor.manager(8), target=MANAGER
            )
        owner_rows = [g for g in custody.grants.active_grants(manager_doc.id) if g.subject == MANAGER]
        assert len(owner_rows) == 1

    def test_self_revocation_other_target(self, custody: CustodyEngine, delegated_doc: Document) -> None:
        with pytest.raises(BadRequestError):
            custody.workflow.create_request(
                delegated_doc.id, "self_revocation", False, USER, target=Actor.user(4)
            )

    def test_duplicate_pending(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        with pytest.raises(DuplicatePendingRequestError):
            custody.workflow.create_request(self_request.document_id, "self_revocation", False, USER)

    def test_creation_is_audited(
        self, self_request: RevocationRequest, audit: InMemoryAuditLogger
    ) -> None:
        record = AuditSearch(audit).by_event(AuditEvent.REVOCATION_REQUESTED)[0]
        assert record["metadata"]["requestId"] == self_request.id  # type: ignore[index]


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


class TestApprove:
    def test_authority_approves(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        approved = custody.workflow.approve_request(self_request.id, "granted", MANAGER)
        assert approved.status is RequestStatus.APPROVED
        assert approved.review_notes == "granted"
        assert (approved.reviewed_by_type, approved.reviewed_by_id) == (MANAGER.kind, MANAGER.id)
        assert approved.reviewed_at is not None
        assert not custody.grants.has_access(self_request.document_id, "user", 3)

    def test_requester_cannot_approve(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        with pytest.raises(ForbiddenError):
            custody.workflow.approve_request(self_request.id, None, USER)

    def test_same_id_other_kind_cannot_approve(
        self, custody: CustodyEngine, self_request: RevocationRequest
    ) -> None:
        with pytest.raises(ForbiddenError):
            custody.workflow.approve_request(self_request.id, None, Actor.user(7))

    def test_admin_cannot_approve(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        with pytest.raises(ForbiddenError):
            custody.workflow.approve_request(self_request.id, None, Actor.admin(7))

    def test_missing_request(self, custody: CustodyEngine) -> None:
        with pytest.raises(NotFoundError):
            custody.workflow.approve_request(404, None, MANAGER)

    def test_terminal_states_are_closed(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        custody.workflow.approve_request(self_request.id, None, MANAGER)
        with pytest.raises(InvalidTransitionError, match="Cannot approve request in status: approved"):
            custody.workflow.approve_request(self_request.id, None, MANAGER)
        with pytest.raises(InvalidTransitionError):
            custody.workflow.deny_request(self_request.id, None, MANAGER)
        with pytest.raises(InvalidTransitionError):
            custody.workflow.cancel_request(self_request.id, USER)

    def test_target_already_revoked_keeps_request_pending(
        self, custody: CustodyEngine, self_request: RevocationRequest
    ) -> None:
        custody.grants.revoke(self_request.document_id, "user", 3, MANAGER)
        with pytest.raises(NoActiveGrantError):
            custody.workflow.approve_request(self_request.id, None, MANAGER)
        assert custody.workflow.get_request(self_request.id, MANAGER).status is RequestStatus.PENDING

    def test_cascade_on_approval(self, custody: CustodyEngine, manager_doc: Document) -> None:
        custody.grants.grant(manager_doc.id, "manager", 8, "delegated", MANAGER)
        custody.grants.grant(manager_doc.id, "user", 4, "derived", Actor.manager(8))
        custody.grants.grant(manager_doc.id, "user", 5, "derived", Actor.user(4))
        request = custody.workflow.create_request(
            manager_doc.id, "manager_revocation", True, MANAGER, target=Actor.manager(8)
        )
        custody.workflow.approve_request(request.id, None, MANAGER)
        for kind, subject_id in (("manager", 8), ("user", 4), ("user", 5)):
            assert not custody.grants.has_access(manager_doc.id, kind, subject_id)

    def test_no_cascade_leaves_derived_grants(self, custody: CustodyEngine, manager_doc: Document) -> None:
        custody.grants.grant(manager_doc.id, "manager", 8, "delegated", MANAGER)
        custody.grants.grant(manager_doc.id, "user", 4, "derived", Actor.manager(8))
        request = custody.workflow.create_request(
            manager_doc.id, "manager_revocation", False, MANAGER, target=Actor.manager(8)
        )
        custody.workflow.approve_request(request.id, None, MANAGER)
        assert custody.grants.has_access(manager_doc.id, "user", 4)

    def test_approval_is_audited(
        self,
        custody: CustodyEngine,
        self_request: RevocationRequest,
        audit: InMemoryAuditLogger,
    ) -> None:
        custody.workflow.approve_request(self_request.id, None, MANAGER)
        search = AuditSearch(audit)
        approved = search.by_event(AuditEvent.REVOCATION_APPROVED)
        revoked = search.by_event(AuditEvent.ACCESS_REVOKED)
        assert len(approved) == 1
        assert revoked[-1]["metadata"]["requestId"] == self_request.id  # type: ignore[index]

    def test_concurrent_approvals_one_wins(
        self, custody: CustodyEngine, self_request: RevocationRequest
    ) -> None:
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def attempt() -> None:
            barrier.wait()
            try:
                custody.workflow.approve_request(self_request.id, None, MANAGER)
                result = "approved"
            except (InvalidTransitionError, NoActiveGrantError):
                result = "rejected"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["approved", "rejected"]
        revoked = [g for g in custody.grants.history(self_request.document_id) if g.subject == USER]
        assert len(revoked) == 1 and not revoked[0].is_active


class TestDeny:
    def test_authority_denies(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        denied = custody.workflow.deny_request(self_request.id, "no", MANAGER)
        assert denied.status is RequestStatus.DENIED
        assert custody.grants.has_access(self_request.document_id, "user", 3)

    def test_requester_cannot_deny(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        with pytest.raises(ForbiddenError):
            custody.workflow.deny_request(self_request.id, None, USER)


class TestCancel:
    def test_requester_cancels(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        cancelled = custody.workflow.cancel_request(self_request.id, USER)
        assert cancelled.status is RequestStatus.CANCELLED
        assert cancelled.reviewed_by_type is None

    def test_authority_cannot_cancel(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        with pytest.raises(ForbiddenError):
            custody.workflow.cancel_request(self_request.id, MANAGER)

    def test_new_request_after_cancel(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        custody.workflow.cancel_request(self_request.id, USER)
        again = custody.workflow.create_request(self_request.document_id, "self_revocation", False, USER)
        assert again.id != self_request.id

    def test_missing_request(self, custody: CustodyEngine) -> None:
        with pytest.raises(NotFoundError):
            custody.workflow.cancel_request(404, USER)


# ---------------------------------------------------------------------------
# End-to-end flows
# ---------------------------------------------------------------------------


class TestFlows:
    def test_temporary_user_authority_approves_own_self_revocation(self, custody: CustodyEngine) -> None:
        owner = Actor.user(42)
        doc = custody.registry.register(owner, "doc-U")
        request = custody.workflow.create_request(doc.id, "self_revocation", False, owner)
        approved = custody.workflow.approve_request(request.id, None, owner)
        assert approved.status is RequestStatus.APPROVED
        history = custody.grants.history(doc.id)
        assert [g.is_active for g in history if g.subject == owner] == [False]

    def test_second_self_revocation_by_user_authority_rejected(
        self, custody: CustodyEngine, user_doc: Document
    ) -> None:
        owner = Actor.user(42)
        first = custody.workflow.create_request(user_doc.id, "self_revocation", False, owner)
        custody.workflow.approve_request(first.id, None, owner)
        assert custody.grants.has_access(user_doc.id, "user", 42)

        with pytest.raises(BadRequestError):
            custody.workflow.create_request(user_doc.id, "self_revocation", False, owner)
        pending = custody.workflow.list_requests(owner, document_id=user_doc.id, status="pending")
        assert pending.data == []

    def test_manager_revokes_delegated_user(self, custody: CustodyEngine, delegated_doc: Document) -> None:
        request = custody.workflow.create_request(
            delegated_doc.id, "user_revocation", False, MANAGER, target=USER
        )
        custody.workflow.approve_request(request.id, None, MANAGER)
        assert not custody.grants.has_access(delegated_doc.id, "user", 3)


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


class TestVisibility:
    def test_requester_and_authority_can_view(
        self, custody: CustodyEngine, self_request: RevocationRequest
    ) -> None:
        assert custody.workflow.get_request(self_request.id, USER).id == self_request.id
        assert custody.workflow.get_request(self_request.id, MANAGER).id == self_request.id

    def test_others_cannot_view(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        with pytest.raises(ForbiddenError):
            custody.workflow.get_request(self_request.id, Actor.user(99))
        with pytest.raises(ForbiddenError):
            custody.workflow.get_request(self_request.id, Actor.admin(1))

    def test_requester_views_after_losing_access(
        self, custody: CustodyEngine, self_request: RevocationRequest
    ) -> None:
        custody.workflow.approve_request(self_request.id, None, MANAGER)
        viewed = custody.workflow.get_request(self_request.id, USER)
        assert viewed.status is RequestStatus.APPROVED

    def test_authority_lists_all_on_document(
        self, custody: CustodyEngine, self_request: RevocationRequest
    ) -> None:
        custody.grants.grant(self_request.document_id, "user", 4, "delegated", MANAGER)
        custody.workflow.create_request(self_request.document_id, "self_revocation", False, Actor.user(4))
        page = custody.workflow.list_requests(MANAGER, document_id=self_request.document_id)
        assert {r.requester for r in page.data} == {USER, Actor.user(4)}

    def test_requester_lists_only_own(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        custody.grants.grant(self_request.document_id, "user", 4, "delegated", MANAGER)
        custody.workflow.create_request(self_request.document_id, "self_revocation", False, Actor.user(4))
        page = custody.workflow.list_requests(USER, document_id=self_request.document_id)
        assert [r.requester for r in page.data] == [USER]

    def test_list_without_document_is_own_requests(
        self, custody: CustodyEngine, self_request: RevocationRequest
    ) -> None:
        assert [r.id for r in custody.workflow.list_requests(USER).data] == [self_request.id]
        assert custody.workflow.list_requests(MANAGER).data == []

    def test_status_filter(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        custody.workflow.deny_request(self_request.id, None, MANAGER)
        doc_id = self_request.document_id
        assert custody.workflow.list_requests(MANAGER, document_id=doc_id, status="pending").data == []
        denied = custody.workflow.list_requests(MANAGER, document_id=doc_id, status="denied")
        assert [r.id for r in denied.data] == [self_request.id]

    def test_invalid_status_filter(self, custody: CustodyEngine, self_request: RevocationRequest) -> None:
        with pytest.raises(BadRequestError):
            custody.workflow.list_requests(USER, status="archived")

    def test_admin_cannot_list(self, custody: CustodyEngine) -> None:
        with pytest.raises(ForbiddenError):
            custody.workflow.list_requests(Actor.admin(1))


# ---------------------------------------------------------------------------
# Audit ordering
# ---------------------------------------------------------------------------


class _StoreWatchingAuditLogger(InMemoryAuditLogger):
    """Records, for every entry, whether another thread could open a transaction."""

    def __init__(self, store: InMemoryStore) -> None:
        super().__init__(session_id="watch")
        self._store = store
        self.store_was_free: list[bool] = []

    def log(self, entry: dict[str, object]) -> None:
        worker = threading.Thread(target=self._touch_store)
        worker.start()
        worker.join(timeout=1.0)
        self.store_was_free.append(not worker.is_alive())
        super().log(entry)

    def _touch_store(self) -> None:
        with self._store.transaction() as t:
            t.get_document("doc-D")


class TestAuditAfterCommit:
    def test_document_listings_audit_outside_transaction(self) -> None:
        store = InMemoryStore()
        audit = _StoreWatchingAuditLogger(store)
        custody = CustodyEngine(store=store, audit=audit)
        custody.registry.register(MANAGER, "doc-D")
        custody.grants.grant("doc-D", "user", 3, "delegated", MANAGER)
        custody.workflow.create_request("doc-D", "self_revocation", False, USER)

        custody.workflow.list_requests(MANAGER, document_id="doc-D")
        custody.access_control.list_grants(USER, document_id="doc-D")

        assert len(AuditSearch(audit).by_event(AuditEvent.DOCUMENT_ACCESSED)) == 2
        assert audit.store_was_free and all(audit.store_was_free)
