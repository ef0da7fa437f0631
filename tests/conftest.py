"""Shared fixtures: every engine-level test runs against both store backends."""
from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from aumos_custody.audit.logger import InMemoryAuditLogger
from aumos_custody.convenience import CustodyEngine
from aumos_custody.documents.models import Document
from aumos_custody.identity.actor import Actor
from aumos_custody.store.base import CustodyStore
from aumos_custody.store.memory import InMemoryStore
from aumos_custody.store.sql import SqlStore


@pytest.fixture(params=["memory", "sql"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[CustodyStore]:
    if request.param == "memory":
        yield InMemoryStore()
        return
    sql_store = SqlStore(f"sqlite:///{tmp_path / 'custody.db'}")
    yield sql_store
    sql_store.dispose()


@pytest.fixture()
def audit() -> InMemoryAuditLogger:
    return InMemoryAuditLogger(session_id="test-session")


@pytest.fixture()
def custody(store: CustodyStore, audit: InMemoryAuditLogger) -> CustodyEngine:
    return CustodyEngine(store=store, audit=audit)


@pytest.fixture()
def manager_doc(custody: CustodyEngine) -> Document:
    """Document D under manager:7."""
    return custody.registry.register(Actor.manager(7), "doc-D")


@pytest.fixture()
def user_doc(custody: CustodyEngine) -> Document:
    """Self-managed document uploaded by user:42."""
    return custody.registry.register(Actor.user(42), "doc-U")
