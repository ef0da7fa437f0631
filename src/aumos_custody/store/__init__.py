"""Persistence backends for aumos-custody.

Provides the transaction protocol, a thread-safe in-memory store and a
SQLAlchemy store with the grant/request uniqueness indexes.
"""
from __future__ import annotations

from aumos_custody.store.base import CustodyStore, CustodyTransaction
from aumos_custody.store.memory import InMemoryStore
from aumos_custody.store.sql import SqlStore

__all__ = [
    "CustodyStore",
    "CustodyTransaction",
    "InMemoryStore",
    "SqlStore",
]
