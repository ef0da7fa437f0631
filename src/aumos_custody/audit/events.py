"""Audit event vocabulary and the sink protocol.

Every state change made by the engine is reported to an audit sink as a
structured record::

    {
        "event": "REVOCATION_APPROVED",
        "actor_id": 7,
        "actor_type": "manager",
        "success": true,
        "metadata": {"requestId": 3, "documentId": "..."}
    }

Metadata carries identifiers only; no document content is ever logged.
Events are emitted after the transaction that produced them has committed.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from aumos_custody.identity.actor import Actor

logger = logging.getLogger(__name__)


class AuditEvent(str, Enum):
    """Names of the audit events emitted by the custody engine."""

    DOCUMENT_REGISTERED = "DOCUMENT_REGISTERED"
    MANAGER_ASSIGNED = "MANAGER_ASSIGNED"
    DOCUMENT_ACCESSED = "DOCUMENT_ACCESSED"
    UNAUTHORIZED_DOCUMENT_ACCESS = "UNAUTHORIZED_DOCUMENT_ACCESS"
    ACCESS_GRANTED = "ACCESS_GRANTED"
    ACCESS_REVOKED = "ACCESS_REVOKED"
    REVOCATION_REQUESTED = "REVOCATION_REQUESTED"
    REVOCATION_APPROVED = "REVOCATION_APPROVED"
    REVOCATION_DENIED = "REVOCATION_DENIED"
    REVOCATION_CANCELLED = "REVOCATION_CANCELLED"


class AuditSink(Protocol):
    """Anything that accepts structured audit records."""

    def log(self, entry: dict[str, object]) -> None: ...


def emit(
    sink: AuditSink | None,
    event: AuditEvent,
    actor: Actor,
    *,
    success: bool = True,
    **metadata: object,
) -> None:
    """Write one audit record to ``sink``.

    A failing sink is logged and does not undo the already-committed
    state change it describes.
    """
    if sink is None:
        return
    entry: dict[str, object] = {
        "event": event.value,
        "actor_id": actor.id,
        "actor_type": actor.kind.value,
        "success": success,
        "metadata": metadata,
    }
    try:
        sink.log(entry)
    except OSError:
        logger.exception("Audit write failed: event=%s actor=%s", event.value, actor)
