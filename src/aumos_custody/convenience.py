"""Convenience API for aumos-custody: one object wiring every component.

Example
-------
::

    from aumos_custody import Actor, CustodyEngine
    custody = CustodyEngine()
    doc = custody.registry.register(Actor.user(42), "doc-1")
    request = custody.workflow.create_request(doc.id, "self_revocation", False, Actor.user(42))
    custody.workflow.approve_request(request.id, None, Actor.user(42))

"""
from __future__ import annotations

import logging

from aumos_custody.access.control import AccessControlService
from aumos_custody.access.document_access import DocumentAccessService
from aumos_custody.access.registry import DocumentRegistry
from aumos_custody.audit.events import AuditSink
from aumos_custody.audit.logger import AuditLogger, InMemoryAuditLogger
from aumos_custody.config.loader import CustodyConfig
from aumos_custody.grants.engine import AccessGrantEngine
from aumos_custody.revocation.workflow import RevocationWorkflow
from aumos_custody.store.base import CustodyStore
from aumos_custody.store.memory import InMemoryStore
from aumos_custody.store.sql import SqlStore

logger = logging.getLogger(__name__)


class CustodyEngine:
    """Zero-config custody engine for the common case.

    Parameters
    ----------
    store:
        Custody store.  An :class:`InMemoryStore` when omitted.
    audit:
        Audit sink.  An :class:`InMemoryAuditLogger` when omitted.
    audit_enabled:
        When False no audit records are written at all.
    """

    def __init__(
        self,
        store: CustodyStore | None = None,
        audit: AuditSink | None = None,
        *,
        audit_enabled: bool = True,
    ) -> None:
        self.store: CustodyStore = store if store is not None else InMemoryStore()
        self.audit: AuditSink | None = None
        if audit_enabled:
            self.audit = audit if audit is not None else InMemoryAuditLogger()
        self.grants = AccessGrantEngine(self.store, self.audit)
        self.registry = DocumentRegistry(self.store, self.grants, self.audit)
        self.documents = DocumentAccessService(self.store, self.grants, self.audit)
        self.access_control = AccessControlService(self.grants, self.documents)
        self.workflow = RevocationWorkflow(self.store, self.grants, self.documents, self.audit)

    @classmethod
    def from_config(cls, config: CustodyConfig) -> CustodyEngine:
        """Build an engine from a loaded :class:`CustodyConfig`."""
        store: CustodyStore
        if config.storage.backend == "sql":
            store = SqlStore(config.storage.url, echo=config.storage.echo)
        else:
            store = InMemoryStore()

        audit: AuditSink | None = None
        if config.audit.enabled and config.audit.log_path is not None:
            audit = AuditLogger(config.audit.log_path)
        engine = cls(store=store, audit=audit, audit_enabled=config.audit.enabled)
        logger.debug(
            "Custody engine built: backend=%s audit=%s",
            config.storage.backend,
            type(engine.audit).__name__ if engine.audit is not None else "disabled",
        )
        return engine

    def __repr__(self) -> str:
        return f"CustodyEngine(store={type(self.store).__name__})"
