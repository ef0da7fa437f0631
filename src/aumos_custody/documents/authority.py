"""Origin authority resolution.

Exactly one actor holds origin authority over a document at any time:

* the origin manager, when one has been assigned (permanent);
* otherwise the uploading user (temporary, until a manager is assigned).

The resolver reads the document fresh on every call and caches nothing,
so a manager assignment takes effect on the very next check.
"""
from __future__ import annotations

import logging
from typing import Protocol

from aumos_custody.documents.models import Document
from aumos_custody.errors import InconsistentAuthorityError, NotFoundError
from aumos_custody.identity.actor import Actor, ActorKind

logger = logging.getLogger(__name__)


class DocumentLookup(Protocol):
    def get_document(self, document_id: str) -> Document | None: ...


def origin_authority_of(document: Document) -> Actor:
    """Return the actor holding origin authority over ``document``.

    Raises
    ------
    InconsistentAuthorityError
        When neither origin column is set.
    """
    if document.origin_manager_id is not None:
        return Actor(ActorKind.MANAGER, document.origin_manager_id)
    if document.origin_user_context_id is not None:
        return Actor(ActorKind.USER, document.origin_user_context_id)
    logger.error("Document %s has no origin authority", document.id)
    raise InconsistentAuthorityError(document.id)


def resolve_origin_authority(lookup: DocumentLookup, document_id: str) -> Actor:
    """Load ``document_id`` through ``lookup`` and resolve its authority.

    Raises
    ------
    NotFoundError
        When the document does not exist.
    InconsistentAuthorityError
        When the document record has no origin authority.
    """
    document = lookup.get_document(document_id)
    if document is None:
        raise NotFoundError(f"Document {document_id} not found.")
    return origin_authority_of(document)


def is_origin_authority(document: Document, actor: Actor) -> bool:
    """Return True when ``actor`` is the current origin authority of ``document``."""
    if actor.is_admin:
        return False
    return origin_authority_of(document) == actor
