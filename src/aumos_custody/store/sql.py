"""SQLAlchemy-backed custody store.

The schema enforces the grant and request invariants in the database so
that they hold across processes:

- ``uq_access_grants_active_subject``: unique
  ``(document_id, subject_type, subject_id)`` filtered to
  ``revoked_at IS NULL``.  A concurrent duplicate insert fails with an
  integrity error, surfaced as :class:`DuplicateActiveGrantError`.
- ``uq_revocation_requests_pending``: unique
  ``(document_id, requested_by_type, requested_by_id, request_type)``
  filtered to ``status = 'pending'``.
- Check constraints restrict every enumerated column to its closed set.

Request transitions and grant revocations are conditional ``UPDATE``
statements; a row count of zero means another transaction won.

Example
-------
>>> store = SqlStore("sqlite:///custody.db")
>>> with store.transaction() as tx:
...     tx.get_document("missing") is None
True
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from aumos_custody.documents.models import Document
from aumos_custody.errors import (
    BadRequestError,
    DuplicateActiveGrantError,
    DuplicatePendingRequestError,
)
from aumos_custody.grants.models import AccessGrant, GrantType
from aumos_custody.identity.actor import ActorKind
from aumos_custody.revocation.models import RequestStatus, RequestType, RevocationRequest

logger = logging.getLogger(__name__)

metadata = sa.MetaData()

documents_table = sa.Table(
    "documents",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("origin_manager_id", sa.Integer, nullable=True),
    sa.Column("origin_user_context_id", sa.Integer, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.CheckConstraint(
        "origin_manager_id IS NOT NULL OR origin_user_context_id IS NOT NULL",
        name="ck_documents_origin_authority",
    ),
)

access_grants_table = sa.Table(
    "access_grants",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("document_id", sa.String(64), sa.ForeignKey("documents.id"), nullable=False),
    sa.Column("subject_type", sa.String(16), nullable=False),
    sa.Column("subject_id", sa.Integer, nullable=False),
    sa.Column("grant_type", sa.String(16), nullable=False),
    sa.Column("granted_by_type", sa.String(16), nullable=False),
    sa.Column("granted_by_id", sa.Integer, nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("revoked_by_type", sa.String(16), nullable=True),
    sa.Column("revoked_by_id", sa.Integer, nullable=True),
    sa.CheckConstraint(
        "subject_type IN ('user', 'manager')", name="ck_access_grants_subject_type"
    ),
    sa.CheckConstraint(
        "grant_type IN ('owner', 'delegated', 'derived')", name="ck_access_grants_grant_type"
    ),
    sa.CheckConstraint(
        "granted_by_type IN ('user', 'manager')", name="ck_access_grants_granted_by_type"
    ),
    sa.Index(
        "uq_access_grants_active_subject",
        "document_id",
        "subject_type",
        "subject_id",
        unique=True,
        sqlite_where=sa.text("revoked_at IS NULL"),
        postgresql_where=sa.text("revoked_at IS NULL"),
    ),
    sa.Index("ix_access_grants_granted_by", "document_id", "granted_by_type", "granted_by_id"),
)

revocation_requests_table = sa.Table(
    "revocation_requests",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("document_id", sa.String(64), sa.ForeignKey("documents.id"), nullable=False),
    sa.Column("requested_by_type", sa.String(16), nullable=False),
    sa.Column("requested_by_id", sa.Integer, nullable=False),
    sa.Column("request_type", sa.String(32), nullable=False),
    sa.Column("target_subject_type", sa.String(16), nullable=False),
    sa.Column("target_subject_id", sa.Integer, nullable=False),
    sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
    sa.Column("cascade_to_secondary_managers", sa.Boolean, nullable=False, default=False),
    sa.Column("review_notes", sa.Text, nullable=True),
    sa.Column("reviewed_by_type", sa.String(16), nullable=True),
    sa.Column("reviewed_by_id", sa.Integer, nullable=True),
    sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.CheckConstraint(
        "request_type IN ('self_revocation', 'user_revocation', 'manager_revocation')",
        name="ck_revocation_requests_request_type",
    ),
    sa.CheckConstraint(
        "status IN ('pending', 'approved', 'denied', 'cancelled')",
        name="ck_revocation_requests_status",
    ),
    sa.Index(
        "uq_revocation_requests_pending",
        "document_id",
        "requested_by_type",
        "requested_by_id",
        "request_type",
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    ),
)


def _utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round trip; every stored datetime is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _kind(value: str | None) -> ActorKind | None:
    return ActorKind(value) if value is not None else None


def _document_from_row(row: Mapping[str, Any]) -> Document:
    return Document(
        id=row["id"],
        origin_manager_id=row["origin_manager_id"],
        origin_user_context_id=row["origin_user_context_id"],
        created_at=_utc(row["created_at"]),  # type: ignore[arg-type]
    )


def _grant_from_row(row: Mapping[str, Any]) -> AccessGrant:
    return AccessGrant(
        id=row["id"],
        document_id=row["document_id"],
        subject_type=ActorKind(row["subject_type"]),
        subject_id=row["subject_id"],
        grant_type=GrantType(row["grant_type"]),
        granted_by_type=ActorKind(row["granted_by_type"]),
        granted_by_id=row["granted_by_id"],
        created_at=_utc(row["created_at"]),  # type: ignore[arg-type]
        revoked_at=_utc(row["revoked_at"]),
        revoked_by_type=_kind(row["revoked_by_type"]),
        revoked_by_id=row["revoked_by_id"],
    )


def _request_from_row(row: Mapping[str, Any]) -> RevocationRequest:
    return RevocationRequest(
        id=row["id"],
        document_id=row["document_id"],
        requested_by_type=ActorKind(row["requested_by_type"]),
        requested_by_id=row["requested_by_id"],
        request_type=RequestType(row["request_type"]),
        target_subject_type=ActorKind(row["target_subject_type"]),
        target_subject_id=row["target_subject_id"],
        status=RequestStatus(row["status"]),
        cascade_to_secondary_managers=bool(row["cascade_to_secondary_managers"]),
        created_at=_utc(row["created_at"]),  # type: ignore[arg-type]
        updated_at=_utc(row["updated_at"]),  # type: ignore[arg-type]
        review_notes=row["review_notes"],
        reviewed_by_type=_kind(row["reviewed_by_type"]),
        reviewed_by_id=row["reviewed_by_id"],
        reviewed_at=_utc(row["reviewed_at"]),
    )


class SqlStore:
    """:class:`~aumos_custody.store.base.CustodyStore` over a SQLAlchemy engine.

    Parameters
    ----------
    url:
        SQLAlchemy database URL.  Ignored when ``engine`` is supplied.
    echo:
        Log every SQL statement through SQLAlchemy's logger.
    engine:
        A pre-built engine (useful for sharing a pool).
    create_schema:
        Create the tables and indexes when they do not exist yet.
    """

    def __init__(
        self,
        url: str = "sqlite:///custody.db",
        *,
        echo: bool = False,
        engine: Engine | None = None,
        create_schema: bool = True,
    ) -> None:
        self._engine = engine if engine is not None else sa.create_engine(url, echo=echo)
        if create_schema:
            metadata.create_all(self._engine)
            logger.debug("Custody schema ensured on %s", self._engine.url)

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def transaction(self) -> Iterator[_SqlTransaction]:
        """Open a database transaction; commit on success, roll back on error."""
        with self._engine.begin() as connection:
            yield _SqlTransaction(connection)

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()


class _SqlTransaction:
    """Transaction view bound to one open connection."""

    def __init__(self, connection: Connection) -> None:
        self._conn = connection

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def get_document(self, document_id: str) -> Document | None:
        row = self._conn.execute(
            sa.select(documents_table).where(documents_table.c.id == document_id)
        ).mappings().first()
        return _document_from_row(row) if row is not None else None

    def insert_document(self, document: Document) -> Document:
        if self.get_document(document.id) is not None:
            raise BadRequestError(f"Document {document.id} is already registered.")
        self._conn.execute(
            documents_table.insert().values(
                id=document.id,
                origin_manager_id=document.origin_manager_id,
                origin_user_context_id=document.origin_user_context_id,
                created_at=document.created_at,
            )
        )
        return document

    def assign_origin_manager(self, document_id: str, manager_id: int) -> Document | None:
        result = self._conn.execute(
            documents_table.update()
            .where(documents_table.c.id == document_id)
            .where(documents_table.c.origin_manager_id.is_(None))
            .values(origin_manager_id=manager_id)
        )
        if result.rowcount == 0:
            return None
        return self.get_document(document_id)

    def documents_under_authority(self, subject_type: ActorKind, subject_id: int) -> list[Document]:
        d = documents_table.c
        if subject_type is ActorKind.MANAGER:
            condition = d.origin_manager_id == subject_id
        elif subject_type is ActorKind.USER:
            condition = sa.and_(d.origin_manager_id.is_(None), d.origin_user_context_id == subject_id)
        else:
            return []
        rows = self._conn.execute(
            sa.select(documents_table).where(condition).order_by(d.created_at, d.id)
        ).mappings()
        return [_document_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def get_grant(self, grant_id: int) -> AccessGrant | None:
        row = self._conn.execute(
            sa.select(access_grants_table).where(access_grants_table.c.id == grant_id)
        ).mappings().first()
        return _grant_from_row(row) if row is not None else None

    def find_active_grant(
        self,
        document_id: str,
        subject_type: ActorKind,
        subject_id: int,
    ) -> AccessGrant | None:
        row = self._conn.execute(
            sa.select(access_grants_table).where(
                access_grants_table.c.document_id == document_id,
                access_grants_table.c.subject_type == subject_type.value,
                access_grants_table.c.subject_id == subject_id,
                access_grants_table.c.revoked_at.is_(None),
            )
        ).mappings().first()
        return _grant_from_row(row) if row is not None else None

    def insert_grant(
        self,
        *,
        document_id: str,
        subject_type: ActorKind,
        subject_id: int,
        grant_type: GrantType,
        granted_by_type: ActorKind,
        granted_by_id: int,
        created_at: datetime,
    ) -> AccessGrant:
        try:
            result = self._conn.execute(
                access_grants_table.insert().values(
                    document_id=document_id,
                    subject_type=subject_type.value,
                    subject_id=subject_id,
                    grant_type=grant_type.value,
                    granted_by_type=granted_by_type.value,
                    granted_by_id=granted_by_id,
                    created_at=created_at,
                )
            )
        except IntegrityError as exc:
            logger.info(
                "Active grant conflict: document=%s subject=%s:%s",
                document_id,
                subject_type.value,
                subject_id,
            )
            raise DuplicateActiveGrantError(
                "An active grant already exists for this document and subject."
            ) from exc
        grant_id = result.inserted_primary_key[0]
        return AccessGrant(
            id=grant_id,
            document_id=document_id,
            subject_type=subject_type,
            subject_id=subject_id,
            grant_type=grant_type,
            granted_by_type=granted_by_type,
            granted_by_id=granted_by_id,
            created_at=created_at,
        )

    def mark_grant_revoked(
        self,
        grant_id: int,
        *,
        revoked_by_type: ActorKind,
        revoked_by_id: int,
        revoked_at: datetime,
    ) -> AccessGrant | None:
        result = self._conn.execute(
            access_grants_table.update()
            .where(access_grants_table.c.id == grant_id)
            .where(access_grants_table.c.revoked_at.is_(None))
            .values(
                revoked_at=revoked_at,
                revoked_by_type=revoked_by_type.value,
                revoked_by_id=revoked_by_id,
            )
        )
        if result.rowcount == 0:
            return None
        return self.get_grant(grant_id)

    def list_grants(
        self,
        *,
        document_id: str | None = None,
        subject_type: ActorKind | None = None,
        subject_id: int | None = None,
        granted_by_type: ActorKind | None = None,
        granted_by_id: int | None = None,
        grant_type: GrantType | None = None,
        active_only: bool = False,
    ) -> list[AccessGrant]:
        table = access_grants_table
        query = sa.select(table).order_by(table.c.id)
        if document_id is not None:
            query = query.where(table.c.document_id == document_id)
        if subject_type is not None:
            query = query.where(table.c.subject_type == subject_type.value)
        if subject_id is not None:
            query = query.where(table.c.subject_id == subject_id)
        if granted_by_type is not None:
            query = query.where(table.c.granted_by_type == granted_by_type.value)
        if granted_by_id is not None:
            query = query.where(table.c.granted_by_id == granted_by_id)
        if grant_type is not None:
            query = query.where(table.c.grant_type == grant_type.value)
        if active_only:
            query = query.where(table.c.revoked_at.is_(None))
        return [_grant_from_row(row) for row in self._conn.execute(query).mappings()]

    # ------------------------------------------------------------------
    # Revocation requests
    # ------------------------------------------------------------------

    def get_request(self, request_id: int) -> RevocationRequest | None:
        row = self._conn.execute(
            sa.select(revocation_requests_table).where(
                revocation_requests_table.c.id == request_id
            )
        ).mappings().first()
        return _request_from_row(row) if row is not None else None

    def insert_request(
        self,
        *,
        document_id: str,
        requested_by_type: ActorKind,
        requested_by_id: int,
        request_type: RequestType,
        target_subject_type: ActorKind,
        target_subject_id: int,
        cascade_to_secondary_managers: bool,
        created_at: datetime,
    ) -> RevocationRequest:
        try:
            result = self._conn.execute(
                revocation_requests_table.insert().values(
                    document_id=document_id,
                    requested_by_type=requested_by_type.value,
                    requested_by_id=requested_by_id,
                    request_type=request_type.value,
                    target_subject_type=target_subject_type.value,
                    target_subject_id=target_subject_id,
                    status=RequestStatus.PENDING.value,
                    cascade_to_secondary_managers=cascade_to_secondary_managers,
                    created_at=created_at,
                    updated_at=created_at,
                )
            )
        except IntegrityError as exc:
            raise DuplicatePendingRequestError(
                "A pending revocation request of this type already exists for this document."
            ) from exc
        return RevocationRequest(
            id=result.inserted_primary_key[0],
            document_id=document_id,
            requested_by_type=requested_by_type,
            requested_by_id=requested_by_id,
            request_type=request_type,
            target_subject_type=target_subject_type,
            target_subject_id=target_subject_id,
            status=RequestStatus.PENDING,
            cascade_to_secondary_managers=cascade_to_secondary_managers,
            created_at=created_at,
            updated_at=created_at,
        )

    def transition_request(
        self,
        request_id: int,
        *,
        status: RequestStatus,
        updated_at: datetime,
        review_notes: str | None = None,
        reviewed_by_type: ActorKind | None = None,
        reviewed_by_id: int | None = None,
        reviewed_at: datetime | None = None,
    ) -> RevocationRequest | None:
        table = revocation_requests_table
        result = self._conn.execute(
            table.update()
            .where(table.c.id == request_id)
            .where(table.c.status == RequestStatus.PENDING.value)
            .values(
                status=status.value,
                updated_at=updated_at,
                review_notes=review_notes,
                reviewed_by_type=reviewed_by_type.value if reviewed_by_type else None,
                reviewed_by_id=reviewed_by_id,
                reviewed_at=reviewed_at,
            )
        )
        if result.rowcount == 0:
            return None
        return self.get_request(request_id)

    def list_requests(
        self,
        *,
        document_id: str | None = None,
        requested_by_type: ActorKind | None = None,
        requested_by_id: int | None = None,
        status: RequestStatus | None = None,
        request_type: RequestType | None = None,
    ) -> list[RevocationRequest]:
        table = revocation_requests_table
        query = sa.select(table).order_by(table.c.id)
        if document_id is not None:
            query = query.where(table.c.document_id == document_id)
        if requested_by_type is not None:
            query = query.where(table.c.requested_by_type == requested_by_type.value)
        if requested_by_id is not None:
            query = query.where(table.c.requested_by_id == requested_by_id)
        if status is not None:
            query = query.where(table.c.status == status.value)
        if request_type is not None:
            query = query.where(table.c.request_type == request_type.value)
        return [_request_from_row(row) for row in self._conn.execute(query).mappings()]
