"""Tests for AccessGrantEngine: access checks, delegation rules, revocation and cascade."""
from __future__ import annotations

import threading

import pytest

from aumos_custody.audit.events import AuditEvent
from aumos_custody.audit.logger import InMemoryAuditLogger
from aumos_custody.convenience import CustodyEngine
from aumos_custody.documents.models import Document
from aumos_custody.errors import (
    BadRequestError,
    DuplicateActiveGrantError,
    ForbiddenError,
    NoActiveGrantError,
    NotFoundError,
)
from aumos_custody.grants.models import GrantType
from aumos_custody.identity.actor import Actor

MANAGER = Actor.manager(7)


def _delegate(custody: CustodyEngine, document: Document, subject: Actor) -> object:
    return custody.grants.grant(document.id, subject.kind, subject.id, GrantType.DELEGATED, MANAGER)


# ---------------------------------------------------------------------------
# has_access
# ---------------------------------------------------------------------------


class TestHasAccess:
    def test_origin_manager_has_access(self, custody: CustodyEngine, manager_doc: Document) -> None:
        assert custody.grants.has_access(manager_doc.id, "manager", 7)

    def test_stranger_has_no_access(self, custody: CustodyEngine, manager_doc: Document) -> None:
        assert not custody.grants.has_access(manager_doc.id, "user", 3)

    def test_admin_never_has_access(self, custody: CustodyEngine, manager_doc: Document) -> None:
        assert not custody.grants.has_access(manager_doc.id, "admin", 7)

    def test_missing_document_is_false(self, custody: CustodyEngine) -> None:
        assert not custody.grants.has_access("missing", "user", 1)

    def test_unknown_kind_rejected(self, custody: CustodyEngine, manager_doc: Document) -> None:
        with pytest.raises(BadRequestError):
            custody.grants.has_access(manager_doc.id, "robot", 1)

    def test_same_id_other_kind_does_not_match(self, custody: CustodyEngine, manager_doc: Document) -> None:
        assert not custody.grants.has_access(manager_doc.id, "user", 7)

    def test_grantee_has_access(self, custody: CustodyEngine, manager_doc: Document) -> None:
        _delegate(custody, manager_doc, Actor.user(3))
        assert custody.grants.has_access(manager_doc.id, "user", 3)


# ---------------------------------------------------------------------------
# grant
# ---------------------------------------------------------------------------


class TestGrant:
    def test_delegated_grant_fields(self, custody: CustodyEngine, manager_doc: Document) -> None:
        grant = custody.grants.grant(manager_doc.id, "user", 3, "delegated", MANAGER)
        assert grant.subject == Actor.user(3)
        assert grant.granted_by == MANAGER
        assert grant.grant_type is GrantType.DELEGATED
        assert grant.is_active

    def test_duplicate_active_grant_rejected(self, custody: CustodyEngine, manager_doc: Document) -> None:
        _delegate(custody, manager_doc, Actor.user(3))
        with pytest.raises(DuplicateActiveGrantError):
            _delegate(custody, manager_doc, Actor.user(3))

    def test_grantor_without_access_forbidden(self, custody: CustodyEngine, manager_doc: Document) -> None:
        with pytest.raises(ForbiddenError):
            custody.grants.grant(manager_doc.id, "user", 4, "derived", Actor.user(3))

    def test_only_authority_delegates(self, custody: CustodyEngine, manager_doc: Document) -> None:
        _delegate(custody, manager_doc, Actor.user(3))
        with pytest.raises(ForbiddenError, match="origin authority"):
            custody.grants.grant(manager_doc.id, "user", 4, "delegated", Actor.user(3))

    def test_delegate_holder_issues_derived(self, custody: CustodyEngine, manager_doc: Document) -> None:
        _delegate(custody, manager_doc, Actor.manager(8))
        derived = custody.grants.grant(manager_doc.id, "user", 4, "derived", Actor.manager(8))
        assert derived.grant_type is GrantType.DERIVED
        assert derived.granted_by == Actor.manager(8)

    def test_authority_cannot_issue_derived(self, custody: CustodyEngine, manager_doc: Document) -> None:
        with pytest.raises(ForbiddenError):
            custody.grants.grant(manager_doc.id, "user", 4, "derived", MANAGER)

    def test_owner_grant_outside_establishment(self, custody: CustodyEngine, manager_doc: Document) -> None:
        with pytest.raises(BadRequestError):
            custody.grants.grant(manager_doc.id, "user", 3, "owner", MANAGER)

    def test_grant_to_authority_rejected(self, custody: CustodyEngine, user_doc: Document) -> None:
        with pytest.raises(BadRequestError):
            custody.grants.grant(user_doc.id, "user", 42, "delegated", Actor.user(42))

    def test_admin_subject_forbidden(self, custody: CustodyEngine, manager_doc: Document) -> None:
        with pytest.raises(ForbiddenError):
            custody.grants.grant(manager_doc.id, "admin", 1, "delegated", MANAGER)

    def test_admin_grantor_forbidden(self, custody: CustodyEngine, manager_doc: Document) -> None:
        with pytest.raises(ForbiddenError):
            custody.grants.grant(manager_doc.id, "user", 3, "delegated", Actor.admin(1))

    def test_invalid_grant_type(self, custody: CustodyEngine, manager_doc: Document) -> None:
        with pytest.raises(BadRequestError, match="grant type"):
            custody.grants.grant(manager_doc.id, "user", 3, "superuser", MANAGER)

    def test_missing_document(self, custody: CustodyEngine) -> None:
        with pytest.raises(NotFoundError):
            custody.grants.grant("missing", "user", 3, "delegated", MANAGER)

    def test_grant_is_audited(
        self, custody: CustodyEngine, manager_doc: Document, audit: InMemoryAuditLogger
    ) -> None:
        grant = _delegate(custody, manager_doc, Actor.user(3))
        last = audit.last_n(1)[0]
        assert last["event"] == AuditEvent.ACCESS_GRANTED
        assert last["metadata"]["grantId"] == grant.id  # type: ignore[attr-defined,index]

    def test_parallel_grants_exactly_one_wins(self, custody: CustodyEngine, manager_doc: Document) -> None:
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def attempt() -> None:
            barrier.wait()
            try:
                _delegate(custody, manager_doc, Actor.user(5))
                result = "ok"
            except DuplicateActiveGrantError:
                result = "duplicate"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["duplicate", "ok"]
        active = [g for g in custody.grants.active_grants(manager_doc.id) if g.subject == Actor.user(5)]
        assert len(active) == 1


# ---------------------------------------------------------------------------
# revoke
# ---------------------------------------------------------------------------


class TestRevoke:
    def test_revoke_stamps_and_keeps_row(self, custody: CustodyEngine, manager_doc: Document) -> None:
        grant = _delegate(custody, manager_doc, Actor.user(3))
        revoked = custody.grants.revoke(manager_doc.id, "user", 3, MANAGER)
        assert revoked.id == grant.id  # type: ignore[attr-defined]
        assert (revoked.revoked_by_type, revoked.revoked_by_id) == (MANAGER.kind, MANAGER.id)
        assert revoked.revoked_at is not None
        assert not custody.grants.has_access(manager_doc.id, "user", 3)
        assert custody.grants.get_grant(revoked.id).revoked_at is not None

    def test_revoke_twice_fails(self, custody: CustodyEngine, manager_doc: Document) -> None:
        _delegate(custody, manager_doc, Actor.user(3))
        custody.grants.revoke(manager_doc.id, "user", 3, MANAGER)
        with pytest.raises(NoActiveGrantError):
            custody.grants.revoke(manager_doc.id, "user", 3, MANAGER)

    def test_regrant_after_revoke(self, custody: CustodyEngine, manager_doc: Document) -> None:
        _delegate(custody, manager_doc, Actor.user(3))
        custody.grants.revoke(manager_doc.id, "user", 3, MANAGER)
        _delegate(custody, manager_doc, Actor.user(3))
        history = [g for g in custody.grants.history(manager_doc.id) if g.subject == Actor.user(3)]
        assert [g.is_active for g in history] == [False, True]


# ---------------------------------------------------------------------------
# cascade
# ---------------------------------------------------------------------------


class TestCascade:
    @pytest.fixture()
    def chain(self, custody: CustodyEngine, manager_doc: Document) -> Document:
        """manager:7 -> manager:8 (delegated) -> user:4 (derived) -> user:5 (derived).

        user:6 holds an unrelated delegated grant.
        """
        _delegate(custody, manager_doc, Actor.manager(8))
        _delegate(custody, manager_doc, Actor.user(6))
        custody.grants.grant(manager_doc.id, "user", 4, "derived", Actor.manager(8))
        custody.grants.grant(manager_doc.id, "user", 5, "derived", Actor.user(4))
        return manager_doc

    def test_cascade_follows_lineage(self, custody: CustodyEngine, chain: Document) -> None:
        revoked = custody.grants.cascade_revoke_secondary(chain.id, Actor.manager(8), MANAGER)
        assert [g.subject for g in revoked] == [Actor.user(4), Actor.user(5)]
        assert not custody.grants.has_access(chain.id, "user", 5)

    def test_cascade_leaves_other_lineages(self, custody: CustodyEngine, chain: Document) -> None:
        custody.grants.cascade_revoke_secondary(chain.id, Actor.manager(8), MANAGER)
        assert custody.grants.has_access(chain.id, "user", 6)
        assert custody.grants.has_access(chain.id, "manager", 8)

    def test_cascade_with_no_derived_grants(self, custody: CustodyEngine, chain: Document) -> None:
        assert custody.grants.cascade_revoke_secondary(chain.id, Actor.user(6), MANAGER) == []


# ---------------------------------------------------------------------------
# revoke_grant
# ---------------------------------------------------------------------------


class TestRevokeGrant:
    def test_authority_revokes_any_grant(self, custody: CustodyEngine, manager_doc: Document) -> None:
        _delegate(custody, manager_doc, Actor.manager(8))
        derived = custody.grants.grant(manager_doc.id, "user", 4, "derived", Actor.manager(8))
        revoked = custody.grants.revoke_grant(derived.id, MANAGER)
        assert [g.id for g in revoked] == [derived.id]

    def test_issuer_revokes_own_grant(self, custody: CustodyEngine, manager_doc: Document) -> None:
        _delegate(custody, manager_doc, Actor.manager(8))
        derived = custody.grants.grant(manager_doc.id, "user", 4, "derived", Actor.manager(8))
        custody.grants.revoke_grant(derived.id, Actor.manager(8))
        assert not custody.grants.has_access(manager_doc.id, "user", 4)

    def test_other_holder_cannot_revoke(self, custody: CustodyEngine, manager_doc: Document) -> None:
        grant = _delegate(custody, manager_doc, Actor.user(3))
        _delegate(custody, manager_doc, Actor.user(9))
        with pytest.raises(ForbiddenError):
            custody.grants.revoke_grant(grant.id, Actor.user(9))  # type: ignore[attr-defined]

    def test_owner_grant_not_revocable(self, custody: CustodyEngine, manager_doc: Document) -> None:
        owner = custody.grants.active_grants(manager_doc.id)[0]
        assert owner.grant_type is GrantType.OWNER
        with pytest.raises(BadRequestError):
            custody.grants.revoke_grant(owner.id, MANAGER)

    def test_missing_grant(self, custody: CustodyEngine) -> None:
        with pytest.raises(NotFoundError):
            custody.grants.revoke_grant(999, MANAGER)

    def test_already_revoked(self, custody: CustodyEngine, manager_doc: Document) -> None:
        grant = _delegate(custody, manager_doc, Actor.user(3))
        custody.grants.revoke_grant(grant.id, MANAGER)  # type: ignore[attr-defined]
        with pytest.raises(NoActiveGrantError):
            custody.grants.revoke_grant(grant.id, MANAGER)  # type: ignore[attr-defined]

    def test_admin_forbidden(self, custody: CustodyEngine, manager_doc: Document) -> None:
        grant = _delegate(custody, manager_doc, Actor.user(3))
        with pytest.raises(ForbiddenError):
            custody.grants.revoke_grant(grant.id, Actor.admin(1))  # type: ignore[attr-defined]

    def test_cascade_flag(self, custody: CustodyEngine, manager_doc: Document) -> None:
        delegated = _delegate(custody, manager_doc, Actor.manager(8))
        custody.grants.grant(manager_doc.id, "user", 4, "derived", Actor.manager(8))
        revoked = custody.grants.revoke_grant(delegated.id, MANAGER, cascade=True)  # type: ignore[attr-defined]
        assert [g.subject for g in revoked] == [Actor.manager(8), Actor.user(4)]


class TestQueries:
    def test_grants_for_subject(self, custody: CustodyEngine, manager_doc: Document, user_doc: Document) -> None:
        _delegate(custody, manager_doc, Actor.user(42))
        documents = {g.document_id for g in custody.grants.grants_for_subject("user", 42)}
        assert documents == {manager_doc.id, user_doc.id}

    def test_get_grant_missing(self, custody: CustodyEngine) -> None:
        with pytest.raises(NotFoundError):
            custody.grants.get_grant(12345)
