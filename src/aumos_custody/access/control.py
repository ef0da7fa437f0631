"""Actor-facing grant operations.

AccessControlService is the thin layer behind the ``/access-grants``
endpoints: it hard-denies administrators, delegates writes to the
:class:`~aumos_custody.grants.engine.AccessGrantEngine` and applies the
listing visibility rules.
"""
from __future__ import annotations

from aumos_custody.access.document_access import DocumentAccessService
from aumos_custody.documents.authority import origin_authority_of
from aumos_custody.errors import ForbiddenError
from aumos_custody.grants.engine import AccessGrantEngine
from aumos_custody.grants.models import AccessGrant, GrantType
from aumos_custody.identity.actor import Actor, ActorKind, require_subject_kind
from aumos_custody.pagination import Page, check_page_params, paginate


class AccessControlService:
    """Create, list and revoke grants on behalf of an actor."""

    def __init__(
        self,
        grants: AccessGrantEngine,
        documents: DocumentAccessService,
    ) -> None:
        self._grants = grants
        self._documents = documents

    def create_grant(
        self,
        document_id: str,
        subject: Actor,
        grant_type: GrantType | str,
        actor: Actor,
    ) -> AccessGrant:
        """Grant ``subject`` access to the document, issued by ``actor``."""
        _deny_admin(actor)
        return self._grants.grant(document_id, subject.kind, subject.id, grant_type, actor)

    def revoke_grant(self, grant_id: int, actor: Actor, *, cascade: bool = False) -> list[AccessGrant]:
        """Revoke a grant by id; see :meth:`AccessGrantEngine.revoke_grant`."""
        _deny_admin(actor)
        return self._grants.revoke_grant(grant_id, actor, cascade=cascade)

    def list_grants(
        self,
        actor: Actor,
        *,
        document_id: str | None = None,
        subject_type: ActorKind | str | None = None,
        subject_id: int | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> Page[AccessGrant]:
        """List active grants visible to ``actor``.

        With ``document_id`` the actor must pass the document read check;
        the origin authority sees every active grant on the document and
        anyone else only their own.  Without ``document_id`` the actor sees
        its own active grants.
        """
        page, limit = check_page_params(page, limit)
        _deny_admin(actor)
        kind = require_subject_kind(subject_type) if subject_type is not None else None

        if document_id is not None:
            document = self._documents.get_document(document_id, actor)
            grants = self._grants.active_grants(document_id)
            if origin_authority_of(document) != actor:
                grants = [g for g in grants if g.subject == actor]
        else:
            grants = self._grants.grants_for_subject(actor.kind, actor.id)

        if kind is not None:
            grants = [g for g in grants if g.subject_type is kind]
        if subject_id is not None:
            grants = [g for g in grants if g.subject_id == subject_id]
        return paginate(grants, page, limit)

    def my_grants(
        self,
        actor: Actor,
        page: int | None = None,
        limit: int | None = None,
    ) -> Page[AccessGrant]:
        """List the actor's own active grants across all documents."""
        page, limit = check_page_params(page, limit)
        _deny_admin(actor)
        return paginate(self._grants.grants_for_subject(actor.kind, actor.id), page, limit)


def _deny_admin(actor: Actor) -> None:
    if actor.is_admin:
        raise ForbiddenError("Admins do not have document-level access.")
