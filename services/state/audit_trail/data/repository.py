"""Audit Trail repository implementations."""

from __future__ import annotations

from datetime import UTC, datetime
from threading import Lock
from typing import Any, Mapping

from sqlalchemy import and_, func, insert, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from resources.substrates.database import transactional_session
from services.state.audit_trail.data.schema import audit_records
from services.state.audit_trail.domain import (
    AuditQuery,
    AuditRecord,
    AuditRecordDraft,
    CorrelationContext,
)
from services.state.audit_trail.interfaces import AuditRecordRepository


class InMemoryAuditRecordRepository(AuditRecordRepository):
    """Append-only in-memory audit persistence for tests and local tooling."""

    def __init__(self) -> None:
        self._records: list[AuditRecord] = []
        self._lock = Lock()

    def append(self, *, draft: AuditRecordDraft, session: Session | None = None) -> AuditRecord:
        """Persist one audit record in append-only order."""
        del session
        with self._lock:
            record = AuditRecord(audit_id=len(self._records) + 1, **dict(draft))
            self._records.append(record)
        return record

    def query(self, *, query: AuditQuery) -> tuple[AuditRecord, ...]:
        """Return matching records, newest first."""
        with self._lock:
            matches = [item for item in self._records if _matches(item, query)]
        matches.sort(key=lambda item: (item.recorded_at, item.audit_id), reverse=True)
        return tuple(matches[: query.limit])

    def get(self, *, audit_id: int) -> AuditRecord | None:
        """Return one record by id."""
        with self._lock:
            for item in self._records:
                if item.audit_id == audit_id:
                    return item
        return None

    def count(self) -> int:
        """Return number of persisted audit records."""
        with self._lock:
            return len(self._records)


class SqlAuditRecordRepository(AuditRecordRepository):
    """SQL repository over the Audit Trail-owned ``audit_records`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def append(self, *, draft: AuditRecordDraft, session: Session | None = None) -> AuditRecord:
        """Persist one audit record, joining ``session`` when supplied."""
        if session is not None:
            return self._append(session, draft)
        with transactional_session(self._session_factory) as own_session:
            return self._append(own_session, draft)

    def query(self, *, query: AuditQuery) -> tuple[AuditRecord, ...]:
        """Return matching records ordered by ``recorded_at`` then id, newest first."""
        clauses: list[ColumnElement[bool]] = []
        if query.entity_type is not None:
            clauses.append(audit_records.c.entity_type == query.entity_type)
        if query.record_id is not None:
            clauses.append(audit_records.c.record_id == query.record_id)
        if query.recorded_from is not None:
            clauses.append(audit_records.c.recorded_at >= query.recorded_from)
        if query.recorded_to is not None:
            clauses.append(audit_records.c.recorded_at <= query.recorded_to)

        statement = select(audit_records)
        if clauses:
            statement = statement.where(and_(*clauses))
        statement = statement.order_by(
            audit_records.c.recorded_at.desc(),
            audit_records.c.id.desc(),
        ).limit(query.limit)

        with self._session_factory() as session:
            rows = session.execute(statement).mappings().all()
        return tuple(_row_to_record(row) for row in rows)

    def get(self, *, audit_id: int) -> AuditRecord | None:
        """Return one record by id."""
        with self._session_factory() as session:
            row = (
                session.execute(select(audit_records).where(audit_records.c.id == audit_id))
                .mappings()
                .first()
            )
        return None if row is None else _row_to_record(row)

    def count(self) -> int:
        """Return total persisted audit record count."""
        with self._session_factory() as session:
            return int(session.scalar(select(func.count()).select_from(audit_records)) or 0)

    def _append(self, session: Session, draft: AuditRecordDraft) -> AuditRecord:
        result = session.execute(
            insert(audit_records).values(
                entity_type=draft.entity_type,
                operation=draft.operation.value,
                record_id=draft.record_id,
                before=draft.before,
                after=draft.after,
                diff=draft.diff,
                principal=draft.principal,
                session_id=draft.correlation.session_id,
                origin_address=draft.correlation.origin_address,
                client_label=draft.correlation.client_label,
                recorded_at=draft.recorded_at,
            )
        )
        audit_id = int(result.inserted_primary_key[0])
        return AuditRecord(audit_id=audit_id, **dict(draft))


def _matches(record: AuditRecord, query: AuditQuery) -> bool:
    if query.entity_type is not None and record.entity_type != query.entity_type:
        return False
    if query.record_id is not None and record.record_id != query.record_id:
        return False
    if query.recorded_from is not None and record.recorded_at < query.recorded_from:
        return False
    if query.recorded_to is not None and record.recorded_at > query.recorded_to:
        return False
    return True


def _row_to_record(row: Mapping[str, Any]) -> AuditRecord:
    return AuditRecord(
        audit_id=int(row["id"]),
        entity_type=row["entity_type"],
        operation=row["operation"],
        record_id=row["record_id"],
        before=row["before"],
        after=row["after"],
        diff=row["diff"],
        principal=row["principal"],
        recorded_at=_as_utc(row["recorded_at"]),
        correlation=CorrelationContext(
            session_id=row["session_id"],
            origin_address=row["origin_address"],
            client_label=row["client_label"],
        ),
    )


def _as_utc(value: datetime) -> datetime:
    """Normalize timestamps read back from dialects that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
