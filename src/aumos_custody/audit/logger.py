"""Append-only audit loggers.

:class:`AuditLogger` writes newline-delimited JSON records to a file;
:class:`InMemoryAuditLogger` keeps them in a list for embedding and tests.
Both stamp every record with a UTC ISO-8601 ``timestamp``, the emitting
``service`` and a ``session_id``, and both expose the same read API so
:class:`~aumos_custody.audit.search.AuditSearch` works over either.

Thread-safety is achieved with a threading.Lock so the loggers are safe to
call from concurrent request handlers.

Example
-------
>>> from pathlib import Path
>>> audit = AuditLogger(Path("/tmp/custody_audit.jsonl"))
>>> audit.log({"event": "REVOCATION_REQUESTED", "actor_id": 42, "actor_type": "user"})
>>> audit.count()
1
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

SERVICE_NAME = "aumos-custody"


class _AuditReader:
    """Read API shared by both loggers; subclasses provide ``_iter_records``."""

    def _iter_records(self) -> Iterator[dict[str, object]]:
        raise NotImplementedError

    def read_all(self) -> list[dict[str, object]]:
        """Return every audit record in chronological order."""
        return list(self._iter_records())

    def query(self, filters: dict[str, object]) -> list[dict[str, object]]:
        """Return records whose top-level fields equal every filter value.

        Example
        -------
        >>> audit.query({"event": "REVOCATION_APPROVED", "actor_id": 7})
        [...]
        """
        return [
            record
            for record in self._iter_records()
            if all(record.get(k) == v for k, v in filters.items())
        ]

    def count(self) -> int:
        """Return the total number of audit records."""
        return sum(1 for _ in self._iter_records())

    def last_n(self, n: int) -> list[dict[str, object]]:
        """Return the ``n`` most recent audit records."""
        records = list(self._iter_records())
        return records[-n:] if n < len(records) else records


class AuditLogger(_AuditReader):
    """Append-only JSONL audit logger.

    Parameters
    ----------
    log_path:
        Path to the ``.jsonl`` audit file.  Parent directories are created
        on first write.
    session_id:
        Identifier stamped on every record.  A random UUID when omitted.
    """

    def __init__(
        self,
        log_path: Path,
        session_id: str | None = None,
    ) -> None:
        self._log_path = log_path
        self._session_id: str = session_id or str(uuid.uuid4())
        self._lock = threading.Lock()

    def log(self, entry: dict[str, object]) -> None:
        """Append an audit record.

        ``timestamp``, ``service`` and ``session_id`` are added
        automatically and cannot be overridden by the caller.
        """
        record: dict[str, object] = {
            **entry,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "session_id": self._session_id,
        }
        with self._lock:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(record, default=str) + "\n")

    def _iter_records(self) -> Iterator[dict[str, object]]:
        if not self._log_path.exists():
            return
        with self._lock:
            with self._log_path.open("r", encoding="utf-8") as fh:
                lines = fh.readlines()
        for number, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed audit line %d in %s", number, self._log_path)

    @property
    def log_path(self) -> Path:
        """The filesystem path of the audit log file."""
        return self._log_path

    @property
    def session_id(self) -> str:
        return self._session_id


class InMemoryAuditLogger(_AuditReader):
    """Audit logger that keeps records in process memory."""

    def __init__(self, session_id: str | None = None) -> None:
        self._records: list[dict[str, object]] = []
        self._session_id: str = session_id or str(uuid.uuid4())
        self._lock = threading.Lock()

    def log(self, entry: dict[str, object]) -> None:
        record: dict[str, object] = {
            **entry,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "session_id": self._session_id,
        }
        with self._lock:
            self._records.append(record)

    def _iter_records(self) -> Iterator[dict[str, object]]:
        with self._lock:
            snapshot = list(self._records)
        yield from snapshot

    @property
    def session_id(self) -> str:
        return self._session_id
