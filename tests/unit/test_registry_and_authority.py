"""Tests for origin authority resolution, document registration and manager assignment."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from aumos_custody.audit.events import AuditEvent
from aumos_custody.audit.logger import InMemoryAuditLogger
from aumos_custody.convenience import CustodyEngine
from aumos_custody.documents.authority import (
    is_origin_authority,
    origin_authority_of,
    resolve_origin_authority,
)
from aumos_custody.documents.models import Document
from aumos_custody.errors import (
    BadRequestError,
    ForbiddenError,
    InconsistentAuthorityError,
    NotFoundError,
)
from aumos_custody.grants.models import GrantType
from aumos_custody.identity.actor import Actor
from aumos_custody.store.memory import InMemoryStore

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Authority resolver
# ---------------------------------------------------------------------------


class TestOriginAuthority:
    def test_manager_wins_over_user_context(self) -> None:
        doc = Document("d", origin_manager_id=7, origin_user_context_id=42, created_at=NOW)
        assert origin_authority_of(doc) == Actor.manager(7)

    def test_user_context_when_no_manager(self) -> None:
        doc = Document("d", origin_manager_id=None, origin_user_context_id=42, created_at=NOW)
        assert origin_authority_of(doc) == Actor.user(42)

    def test_neither_set_is_fatal(self) -> None:
        doc = Document("d", origin_manager_id=None, origin_user_context_id=None, created_at=NOW)
        with pytest.raises(InconsistentAuthorityError):
            origin_authority_of(doc)

    def test_resolve_missing_document(self) -> None:
        store = InMemoryStore()
        with store.transaction() as tx:
            with pytest.raises(NotFoundError):
                resolve_origin_authority(tx, "missing")

    def test_is_origin_authority_requires_exact_kind(self) -> None:
        doc = Document("d", origin_manager_id=7, origin_user_context_id=None, created_at=NOW)
        assert is_origin_authority(doc, Actor.manager(7))
        assert not is_origin_authority(doc, Actor.user(7))
        assert not is_origin_authority(doc, Actor.admin(7))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_manager_upload(self, custody: CustodyEngine) -> None:
        doc = custody.registry.register(Actor.manager(7), "doc-1")
        assert doc.origin_manager_id == 7
        assert doc.origin_user_context_id is None
        grants = custody.grants.active_grants("doc-1")
        assert [(g.subject, g.grant_type) for g in grants] == [(Actor.manager(7), GrantType.OWNER)]

    def test_user_upload_without_manager(self, custody: CustodyEngine) -> None:
        doc = custody.registry.register(Actor.user(42), "doc-1")
        assert doc.origin_user_context_id == 42
        assert doc.origin_manager_id is None
        with custody.store.transaction() as tx:
            assert resolve_origin_authority(tx, "doc-1") == Actor.user(42)

    def test_user_upload_with_manager_at_intake(self, custody: CustodyEngine) -> None:
        custody.registry.register(Actor.user(42), "doc-1", origin_manager_id=7)
        grants = custody.grants.active_grants("doc-1")
        assert [(g.subject, g.grant_type, g.granted_by) for g in grants] == [
            (Actor.manager(7), GrantType.OWNER, Actor.manager(7)),
            (Actor.user(42), GrantType.DELEGATED, Actor.manager(7)),
        ]

    def test_generated_identifier(self, custody: CustodyEngine) -> None:
        doc = custody.registry.register(Actor.user(1))
        assert doc.id

    def test_admin_upload_forbidden(self, custody: CustodyEngine) -> None:
        with pytest.raises(ForbiddenError):
            custody.registry.register(Actor.admin(1), "doc-1")

    def test_manager_upload_naming_other_manager(self, custody: CustodyEngine) -> None:
        with pytest.raises(BadRequestError):
            custody.registry.register(Actor.manager(7), "doc-1", origin_manager_id=8)

    def test_duplicate_identifier(self, custody: CustodyEngine) -> None:
        custody.registry.register(Actor.user(1), "doc-1")
        with pytest.raises(BadRequestError):
            custody.registry.register(Actor.user(2), "doc-1")

    def test_registration_is_audited(self, custody: CustodyEngine, audit: InMemoryAuditLogger) -> None:
        custody.registry.register(Actor.user(42), "doc-1")
        events = [r["event"] for r in audit.read_all()]
        assert events == [AuditEvent.DOCUMENT_REGISTERED, AuditEvent.ACCESS_GRANTED]


# ---------------------------------------------------------------------------
# Manager assignment
# ---------------------------------------------------------------------------


class TestAssignManager:
    def test_assignment_moves_authority(self, custody: CustodyEngine, user_doc: Document) -> None:
        updated = custody.registry.assign_manager(user_doc.id, 7, Actor.user(42))
        assert updated.origin_manager_id == 7
        assert updated.origin_user_context_id == 42
        with custody.store.transaction() as tx:
            assert resolve_origin_authority(tx, user_doc.id) == Actor.manager(7)

    def test_user_keeps_access_through_delegation(self, custody: CustodyEngine, user_doc: Document) -> None:
        custody.registry.assign_manager(user_doc.id, 7, Actor.user(42))
        active = {g.subject: g for g in custody.grants.active_grants(user_doc.id)}
        assert active[Actor.manager(7)].grant_type is GrantType.OWNER
        assert active[Actor.user(42)].grant_type is GrantType.DELEGATED
        assert active[Actor.user(42)].granted_by == Actor.manager(7)

    def test_previous_owner_grant_revoked(self, custody: CustodyEngine, user_doc: Document) -> None:
        custody.registry.assign_manager(user_doc.id, 7, Actor.user(42))
        revoked = [g for g in custody.grants.history(user_doc.id) if not g.is_active]
        assert [(g.subject, g.grant_type) for g in revoked] == [(Actor.user(42), GrantType.OWNER)]

    def test_assignment_is_irreversible(self, custody: CustodyEngine, user_doc: Document) -> None:
        custody.registry.assign_manager(user_doc.id, 7, Actor.user(42))
        with pytest.raises(BadRequestError, match="already has a manager"):
            custody.registry.assign_manager(user_doc.id, 8, Actor.user(42))

    def test_former_user_authority_cannot_approve(self, custody: CustodyEngine, user_doc: Document) -> None:
        custody.registry.assign_manager(user_doc.id, 7, Actor.user(42))
        request = custody.workflow.create_request(user_doc.id, "self_revocation", False, Actor.user(42))
        with pytest.raises(ForbiddenError):
            custody.workflow.approve_request(request.id, None, Actor.user(42))

    def test_only_uploader_assigns(self, custody: CustodyEngine, user_doc: Document) -> None:
        with pytest.raises(ForbiddenError):
            custody.registry.assign_manager(user_doc.id, 7, Actor.user(43))

    def test_admin_cannot_assign(self, custody: CustodyEngine, user_doc: Document) -> None:
        with pytest.raises(ForbiddenError):
            custody.registry.assign_manager(user_doc.id, 7, Actor.admin(1))

    def test_missing_document(self, custody: CustodyEngine) -> None:
        with pytest.raises(NotFoundError):
            custody.registry.assign_manager("missing", 7, Actor.user(42))

    def test_manager_with_prior_delegation(self, custody: CustodyEngine, user_doc: Document) -> None:
        custody.grants.grant(user_doc.id, "manager", 7, "delegated", Actor.user(42))
        custody.registry.assign_manager(user_doc.id, 7, Actor.user(42))
        active = {g.subject: g.grant_type for g in custody.grants.active_grants(user_doc.id)}
        assert active == {Actor.manager(7): GrantType.OWNER, Actor.user(42): GrantType.DELEGATED}

    def test_assignment_is_audited(
        self, custody: CustodyEngine, user_doc: Document, audit: InMemoryAuditLogger
    ) -> None:
        custody.registry.assign_manager(user_doc.id, 7, Actor.user(42))
        events = [r["event"] for r in audit.read_all()][2:]
        assert events[0] == AuditEvent.MANAGER_ASSIGNED
        assert AuditEvent.ACCESS_REVOKED in events
        assert events.count(AuditEvent.ACCESS_GRANTED) == 2
