"""SQLAlchemy-backed access to monitored host tables.

All methods run on a caller-supplied ``Session`` so that the data change and
its audit record share one unit of work. Committing is the caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal, Mapping, Protocol, Sequence

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from packages.custodian_shared.logging import get_logger
from resources.adapters.record_store.catalog import EntityCatalog, EntityDescriptor
from resources.adapters.record_store.errors import CatalogError, RecordNotFound
from resources.adapters.record_store.snapshots import (
    coerce_value,
    row_to_snapshot,
    snapshot_value,
)

_LOGGER = get_logger(__name__)

MutationKind = Literal["created", "updated", "deleted"]
FilterOperator = Literal["eq", "neq", "lt", "lte", "gt", "gte", "is_null", "not_null"]

FILTER_OPERATORS: frozenset[str] = frozenset(
    {"eq", "neq", "lt", "lte", "gt", "gte", "is_null", "not_null"}
)


class MutationObserver(Protocol):
    """Receiver notified of every mutation inside the mutating session."""

    def record_mutation(
        self,
        *,
        entity_type: str,
        operation: MutationKind,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
        principal: str,
        correlation: Mapping[str, str] | None,
        session: Session,
        redact_fields: Sequence[str] = (),
        key_field: str | None = None,
    ) -> object:
        """Record one mutation; raising aborts the caller's transaction."""


@dataclass(frozen=True)
class FieldFilter:
    """One declarative comparison applied to an eligibility scan."""

    field: str
    operator: FilterOperator
    value: Any = None


@dataclass(frozen=True)
class AnonymizeResult:
    """Outcome of anonymizing one record."""

    changed: bool
    before: dict[str, Any]
    after: dict[str, Any]
    fields: tuple[str, ...]


@dataclass(frozen=True)
class RelatedRecords:
    """Rows related to one record, grouped by related entity type."""

    records: dict[str, list[dict[str, Any]]]
    complete: bool


class SqlRecordStore:
    """Read, mutate, anonymize and purge monitored records."""

    def __init__(
        self,
        *,
        catalog: EntityCatalog,
        observer: MutationObserver | None = None,
        related_limit: int = 1000,
    ) -> None:
        self._catalog = catalog
        self._observer = observer
        self._related_limit = related_limit

    @property
    def catalog(self) -> EntityCatalog:
        """Return the entity catalog backing this store."""
        return self._catalog

    def bind_observer(self, observer: MutationObserver) -> None:
        """Attach the mutation observer used for change capture."""
        self._observer = observer

    def fetch(
        self, session: Session, *, entity_type: str, record_id: object
    ) -> dict[str, Any] | None:
        """Return the current snapshot of one record, or ``None``."""
        descriptor = self._catalog.get(entity_type)
        return self._fetch(session, descriptor, record_id)

    def create(
        self,
        session: Session,
        *,
        entity_type: str,
        values: Mapping[str, Any],
        principal: str,
        correlation: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Insert one record and capture its creation."""
        descriptor = self._catalog.get(entity_type)
        _require_columns(descriptor, values)
        result = session.execute(insert(descriptor.table).values(**dict(values)))
        key = values.get(descriptor.key_column)
        if key is None:
            key = result.inserted_primary_key[0]
        after = self._fetch(session, descriptor, key)
        if after is None:
            raise RecordNotFound(descriptor.entity_type, key)
        self._notify(
            session,
            descriptor,
            operation="created",
            before=None,
            after=after,
            principal=principal,
            correlation=correlation,
        )
        return after

    def update(
        self,
        session: Session,
        *,
        entity_type: str,
        record_id: object,
        changes: Mapping[str, Any],
        principal: str,
        correlation: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Apply ``changes`` to one record and capture the update."""
        descriptor = self._catalog.get(entity_type)
        _require_columns(descriptor, changes)
        if descriptor.key_column in changes:
            raise ValueError(f"{descriptor.entity_type}: key column cannot be changed")
        key = coerce_value(descriptor.key, record_id)
        before = self._require(session, descriptor, key)
        if changes:
            session.execute(
                update(descriptor.table)
                .where(descriptor.key == key)
                .values(**dict(changes))
            )
        after = self._require(session, descriptor, key)
        self._notify(
            session,
            descriptor,
            operation="updated",
            before=before,
            after=after,
            principal=principal,
            correlation=correlation,
        )
        return after

    def delete(
        self,
        session: Session,
        *,
        entity_type: str,
        record_id: object,
        principal: str,
        correlation: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Delete one record, capture the deletion, and return its last state."""
        descriptor = self._catalog.get(entity_type)
        key = coerce_value(descriptor.key, record_id)
        before = self._require(session, descriptor, key)
        session.execute(delete(descriptor.table).where(descriptor.key == key))
        self._notify(
            session,
            descriptor,
            operation="deleted",
            before=before,
            after=None,
            principal=principal,
            correlation=correlation,
        )
        return before

    def anonymize(
        self,
        session: Session,
        *,
        entity_type: str,
        record_id: object,
        principal: str,
        now: datetime,
        correlation: Mapping[str, str] | None = None,
    ) -> AnonymizeResult:
        """Overwrite identifying fields with sentinels in one statement.

        Already-anonymized records are left untouched and produce no capture.
        """
        descriptor = self._catalog.get(entity_type)
        if not descriptor.supports_anonymize:
            raise CatalogError(f"{descriptor.entity_type}: no identifying fields configured")
        key = coerce_value(descriptor.key, record_id)
        before = self._require(session, descriptor, key)
        fields = tuple(sorted(descriptor.identifying_fields))
        if is_anonymized(descriptor, before):
            return AnonymizeResult(changed=False, before=before, after=before, fields=fields)

        values = dict(descriptor.identifying_fields)
        if descriptor.marker_column is not None:
            values[descriptor.marker_column] = now
        session.execute(
            update(descriptor.table).where(descriptor.key == key).values(**values)
        )
        after = self._require(session, descriptor, key)
        self._notify(
            session,
            descriptor,
            operation="updated",
            before=before,
            after=after,
            principal=principal,
            correlation=correlation,
            redact_fields=fields,
        )
        return AnonymizeResult(changed=True, before=before, after=after, fields=fields)

    def purge(
        self,
        session: Session,
        *,
        entity_type: str,
        record_id: object,
        principal: str,
        correlation: Mapping[str, str] | None = None,
    ) -> bool:
        """Hard-delete one record; return ``False`` when it is already gone."""
        descriptor = self._catalog.get(entity_type)
        key = coerce_value(descriptor.key, record_id)
        before = self._fetch(session, descriptor, key)
        if before is None:
            return False
        session.execute(delete(descriptor.table).where(descriptor.key == key))
        self._notify(
            session,
            descriptor,
            operation="deleted",
            before=before,
            after=None,
            principal=principal,
            correlation=correlation,
            redact_fields=tuple(sorted(descriptor.identifying_fields)),
        )
        return True

    def scan_eligible(
        self,
        session: Session,
        *,
        entity_type: str,
        cutoff: datetime,
        limit: int,
        timestamp_field: str | None = None,
        filters: Sequence[FieldFilter] = (),
        unanonymized_only: bool = False,
        after_key: object | None = None,
    ) -> list[object]:
        """Return up to ``limit`` keys older than ``cutoff``, in key order.

        Pagination is keyset-based: pass the last returned key as
        ``after_key`` to continue.
        """
        descriptor = self._catalog.get(entity_type)
        timestamp = (
            descriptor.column(timestamp_field)
            if timestamp_field is not None
            else descriptor.timestamp
        )
        clauses: list[ColumnElement[bool]] = [timestamp < cutoff]
        clauses.extend(filter_clause(descriptor, item) for item in filters)
        if unanonymized_only:
            clauses.append(not_anonymized_clause(descriptor))
        if after_key is not None:
            clauses.append(descriptor.key > after_key)
        statement = (
            select(descriptor.key)
            .where(and_(*clauses))
            .order_by(descriptor.key.asc())
            .limit(limit)
        )
        return list(session.execute(statement).scalars().all())

    def related(
        self,
        session: Session,
        *,
        entity_type: str,
        record_id: object,
        cancelled: Callable[[], bool] | None = None,
    ) -> RelatedRecords:
        """Collect rows of each configured relation that reference one record."""
        descriptor = self._catalog.get(entity_type)
        key = coerce_value(descriptor.key, record_id)
        records: dict[str, list[dict[str, Any]]] = {}
        for relation in descriptor.relations:
            if cancelled is not None and cancelled():
                return RelatedRecords(records=records, complete=False)
            related = self._catalog.get(relation.entity_type)
            statement = (
                select(related.table)
                .where(related.column(relation.foreign_key) == key)
                .order_by(related.key.asc())
                .limit(self._related_limit)
            )
            rows = session.execute(statement).mappings().all()
            records.setdefault(related.entity_type, []).extend(
                row_to_snapshot(row) for row in rows
            )
        return RelatedRecords(records=records, complete=True)

    def _fetch(
        self, session: Session, descriptor: EntityDescriptor, record_id: object
    ) -> dict[str, Any] | None:
        key = coerce_value(descriptor.key, record_id)
        row = (
            session.execute(select(descriptor.table).where(descriptor.key == key))
            .mappings()
            .first()
        )
        return None if row is None else row_to_snapshot(row)

    def _require(
        self, session: Session, descriptor: EntityDescriptor, key: object
    ) -> dict[str, Any]:
        snapshot = self._fetch(session, descriptor, key)
        if snapshot is None:
            raise RecordNotFound(descriptor.entity_type, key)
        return snapshot

    def _notify(
        self,
        session: Session,
        descriptor: EntityDescriptor,
        *,
        operation: MutationKind,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        principal: str,
        correlation: Mapping[str, str] | None,
        redact_fields: Sequence[str] = (),
    ) -> None:
        if not descriptor.captured:
            return
        if self._observer is None:
            _LOGGER.warning(
                "Mutation on %s not captured: no observer bound",
                descriptor.entity_type,
            )
            return
        self._observer.record_mutation(
            entity_type=descriptor.entity_type,
            operation=operation,
            before=before,
            after=after,
            principal=principal,
            correlation=correlation,
            session=session,
            redact_fields=redact_fields,
            key_field=descriptor.key_column,
        )


def is_anonymized(descriptor: EntityDescriptor, snapshot: Mapping[str, Any]) -> bool:
    """Return ``True`` when ``snapshot`` already carries every sentinel."""
    if descriptor.marker_column is not None:
        return snapshot.get(descriptor.marker_column) is not None
    return all(
        snapshot.get(name) == snapshot_value(sentinel)
        for name, sentinel in descriptor.identifying_fields.items()
    )


def not_anonymized_clause(descriptor: EntityDescriptor) -> ColumnElement[bool]:
    """Build the SQL form of "not yet anonymized" for one entity."""
    if descriptor.marker_column is not None:
        return descriptor.column(descriptor.marker_column).is_(None)
    return or_(
        *(
            descriptor.column(name).is_distinct_from(sentinel)
            for name, sentinel in descriptor.identifying_fields.items()
        )
    )


def filter_clause(descriptor: EntityDescriptor, item: FieldFilter) -> ColumnElement[bool]:
    """Compile one ``FieldFilter`` against the descriptor's table."""
    column = descriptor.column(item.field)
    if item.operator == "is_null":
        return column.is_(None)
    if item.operator == "not_null":
        return column.is_not(None)
    value = coerce_value(column, item.value)
    if item.operator == "eq":
        return column == value
    if item.operator == "neq":
        return column != value
    if item.operator == "lt":
        return column < value
    if item.operator == "lte":
        return column <= value
    if item.operator == "gt":
        return column > value
    if item.operator == "gte":
        return column >= value
    raise ValueError(f"unsupported filter operator: {item.operator}")


def _require_columns(descriptor: EntityDescriptor, values: Mapping[str, Any]) -> None:
    unknown = sorted(name for name in values if not descriptor.has_column(name))
    if unknown:
        raise CatalogError(f"{descriptor.entity_type}: unknown columns {unknown}")
