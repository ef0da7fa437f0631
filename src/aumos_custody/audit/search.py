"""Audit trail search utilities.

AuditSearch wraps either audit logger and provides filters for the custody
audit trail: by event name, by document, by actor and by date range.

Example
-------
>>> from aumos_custody.audit.logger import InMemoryAuditLogger
>>> from aumos_custody.audit.search import AuditSearch
>>> audit = InMemoryAuditLogger()
>>> search = AuditSearch(audit)
>>> search.by_event("REVOCATION_APPROVED")
[]
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from aumos_custody.identity.actor import Actor


class AuditSource(Protocol):
    def read_all(self) -> list[dict[str, object]]: ...


class AuditSearch:
    """Provides search and filtering over an audit logger.

    Parameters
    ----------
    source:
        The audit logger whose records will be searched.
    """

    def __init__(self, source: AuditSource) -> None:
        self._source = source

    # ------------------------------------------------------------------
    # Public search methods
    # ------------------------------------------------------------------

    def by_event(self, event: str) -> list[dict[str, object]]:
        """Return records with a specific ``event`` field value."""
        return [r for r in self._source.read_all() if r.get("event") == event]

    def by_document(self, document_id: str) -> list[dict[str, object]]:
        """Return records whose metadata references ``document_id``."""
        return [r for r in self._source.read_all() if _document_of(r) == document_id]

    def by_actor(self, actor: Actor) -> list[dict[str, object]]:
        """Return records produced by ``actor``."""
        return [
            r
            for r in self._source.read_all()
            if r.get("actor_type") == actor.kind.value and r.get("actor_id") == actor.id
        ]

    def failures(self) -> list[dict[str, object]]:
        """Return records with ``success`` set to false."""
        return [r for r in self._source.read_all() if r.get("success") is False]

    def by_date_range(
        self,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, object]]:
        """Return records whose timestamps fall within [start, end].

        Parameters
        ----------
        start:
            Inclusive lower bound (timezone-aware recommended).
        end:
            Inclusive upper bound (timezone-aware recommended).
        """
        results: list[dict[str, object]] = []
        for record in self._source.read_all():
            ts = self._parse_timestamp(record.get("timestamp"))
            if ts is not None and start <= ts <= end:
                results.append(record)
        return results

    def multi_filter(
        self,
        event: str | None = None,
        document_id: str | None = None,
        actor: Actor | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[dict[str, object]]:
        """Apply multiple filters simultaneously (AND semantics).

        Returns
        -------
        list[dict[str, object]]
            Records matching all supplied filters, in chronological order.
        """
        results: list[dict[str, object]] = []
        for record in self._source.read_all():
            if event is not None and record.get("event") != event:
                continue
            if document_id is not None and _document_of(record) != document_id:
                continue
            if actor is not None:
                if record.get("actor_type") != actor.kind.value or record.get("actor_id") != actor.id:
                    continue
            if start is not None or end is not None:
                ts = self._parse_timestamp(record.get("timestamp"))
                if ts is None:
                    continue
                if start is not None and ts < start:
                    continue
                if end is not None and ts > end:
                    continue
            results.append(record)
        return results

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _parse_timestamp(self, raw: object) -> datetime | None:
        """Parse an ISO-8601 timestamp string into an aware datetime."""
        if not isinstance(raw, str):
            return None
        try:
            dt = datetime.fromisoformat(raw)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt
        except ValueError:
            return None


def _document_of(record: dict[str, object]) -> object:
    metadata = record.get("metadata")
    if isinstance(metadata, dict):
        return metadata.get("documentId")
    return None
