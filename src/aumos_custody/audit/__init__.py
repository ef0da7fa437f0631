"""Audit trail package for aumos-custody.

Provides the event vocabulary, append-only JSONL and in-memory loggers, and
search over the recorded trail.
"""
from __future__ import annotations

from aumos_custody.audit.events import AuditEvent, AuditSink, emit
from aumos_custody.audit.logger import AuditLogger, InMemoryAuditLogger
from aumos_custody.audit.search import AuditSearch

__all__ = [
    "AuditEvent",
    "AuditLogger",
    "AuditSearch",
    "AuditSink",
    "InMemoryAuditLogger",
    "emit",
]
