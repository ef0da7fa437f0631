"""aumos-custody — Document authority, access-grant and revocation engine.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import aumos_custody as custody
>>> custody.__version__
'0.1.0'
>>> engine = custody.CustodyEngine()
>>> doc = engine.registry.register(custody.Actor.user(42), "doc-1")
>>> engine.grants.has_access("doc-1", "user", 42)
True
"""
from __future__ import annotations

__version__: str = "0.1.0"

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
from aumos_custody.errors import (
    BadRequestError,
    CustodyError,
    DuplicateActiveGrantError,
    DuplicatePendingRequestError,
    ForbiddenError,
    InconsistentAuthorityError,
    InvalidTransitionError,
    NoActiveGrantError,
    NotFoundError,
    UnauthenticatedError,
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
from aumos_custody.identity.actor import Actor, ActorKind
from aumos_custody.documents.models import Document
from aumos_custody.documents.authority import (
    is_origin_authority,
    origin_authority_of,
    resolve_origin_authority,
)
from aumos_custody.grants.models import AccessGrant, GrantType
from aumos_custody.revocation.models import RequestStatus, RequestType, RevocationRequest

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
from aumos_custody.store.base import CustodyStore, CustodyTransaction
from aumos_custody.store.memory import InMemoryStore
from aumos_custody.store.sql import SqlStore

# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------
from aumos_custody.audit.events import AuditEvent, AuditSink
from aumos_custody.audit.logger import AuditLogger, InMemoryAuditLogger
from aumos_custody.audit.search import AuditSearch

# ---------------------------------------------------------------------------
# Engine services
# ---------------------------------------------------------------------------
from aumos_custody.pagination import Page
from aumos_custody.grants.engine import AccessGrantEngine
from aumos_custody.access.registry import DocumentRegistry
from aumos_custody.access.document_access import DocumentAccessService, Operation
from aumos_custody.access.control import AccessControlService
from aumos_custody.revocation.workflow import RevocationWorkflow

# ---------------------------------------------------------------------------
# Config, facade and REST surface
# ---------------------------------------------------------------------------
from aumos_custody.config.loader import ConfigLoader, CustodyConfig
from aumos_custody.convenience import CustodyEngine
from aumos_custody.api.handlers import CustodyApi
from aumos_custody.api.server import CustodyServer

__all__ = [
    "__version__",
    # Errors
    "BadRequestError",
    "CustodyError",
    "DuplicateActiveGrantError",
    "DuplicatePendingRequestError",
    "ForbiddenError",
    "InconsistentAuthorityError",
    "InvalidTransitionError",
    "NoActiveGrantError",
    "NotFoundError",
    "UnauthenticatedError",
    # Models
    "AccessGrant",
    "Actor",
    "ActorKind",
    "Document",
    "GrantType",
    "RequestStatus",
    "RequestType",
    "RevocationRequest",
    "is_origin_authority",
    "origin_authority_of",
    "resolve_origin_authority",
    # Storage
    "CustodyStore",
    "CustodyTransaction",
    "InMemoryStore",
    "SqlStore",
    # Audit
    "AuditEvent",
    "AuditLogger",
    "AuditSearch",
    "AuditSink",
    "InMemoryAuditLogger",
    # Engine services
    "AccessControlService",
    "AccessGrantEngine",
    "DocumentAccessService",
    "DocumentRegistry",
    "Operation",
    "Page",
    "RevocationWorkflow",
    # Config, facade and REST surface
    "ConfigLoader",
    "CustodyApi",
    "CustodyConfig",
    "CustodyEngine",
    "CustodyServer",
]
