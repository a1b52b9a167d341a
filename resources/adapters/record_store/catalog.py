"""Catalog of monitored entity types and their table descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Iterable, Mapping

from sqlalchemy import Column, Engine, MetaData, Table

from resources.adapters.record_store.config import RecordStoreSettings
from resources.adapters.record_store.errors import CatalogError, UnknownEntityType


def normalize_entity_type(value: str) -> str:
    """Return the canonical form of an entity type name."""
    normalized = value.strip().lower()
    if not normalized:
        raise ValueError("entity_type is required")
    return normalized


@dataclass(frozen=True)
class EntityRelation:
    """Related entity whose ``foreign_key`` column references the owner key."""

    entity_type: str
    foreign_key: str


@dataclass(frozen=True)
class EntityDescriptor:
    """Everything the engine needs to know about one monitored table.

    ``identifying_fields`` maps each personally-identifying column to the
    fixed sentinel written by anonymization. ``marker_column``, when set, is
    a nullable timestamp column stamped on anonymization. ``captured=False``
    marks tables whose deletions are not themselves audited, such as the
    audit store.
    """

    entity_type: str
    table: Table
    key_column: str
    timestamp_column: str
    identifying_fields: Mapping[str, Any] = field(default_factory=dict)
    marker_column: str | None = None
    relations: tuple[EntityRelation, ...] = ()
    captured: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "entity_type", normalize_entity_type(self.entity_type))
        object.__setattr__(self, "identifying_fields", dict(self.identifying_fields))
        columns = set(self.table.columns.keys())
        for name in (self.key_column, self.timestamp_column):
            if name not in columns:
                raise CatalogError(f"{self.entity_type}: unknown column {name!r}")
        for name in self.identifying_fields:
            if name not in columns:
                raise CatalogError(f"{self.entity_type}: unknown identifying field {name!r}")
            if name == self.key_column:
                raise CatalogError(f"{self.entity_type}: key column cannot be anonymized")
        if self.marker_column is not None and self.marker_column not in columns:
            raise CatalogError(f"{self.entity_type}: unknown marker column {self.marker_column!r}")

    @property
    def key(self) -> Column[Any]:
        """Return the key column."""
        return self.table.c[self.key_column]

    @property
    def timestamp(self) -> Column[Any]:
        """Return the default retention timestamp column."""
        return self.table.c[self.timestamp_column]

    @property
    def supports_anonymize(self) -> bool:
        """Return ``True`` when the entity declares identifying fields."""
        return bool(self.identifying_fields)

    def has_column(self, name: str) -> bool:
        """Return ``True`` when the table defines ``name``."""
        return name in self.table.columns

    def column(self, name: str) -> Column[Any]:
        """Return one column by name, raising ``CatalogError`` when unknown."""
        if name not in self.table.columns:
            raise CatalogError(f"{self.entity_type}: unknown column {name!r}")
        return self.table.c[name]


class EntityCatalog:
    """Thread-safe registry of monitored entity descriptors."""

    def __init__(self, descriptors: Iterable[EntityDescriptor] = ()) -> None:
        self._descriptors: dict[str, EntityDescriptor] = {}
        self._lock = RLock()
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: EntityDescriptor) -> EntityDescriptor:
        """Register or replace one descriptor keyed by entity type."""
        with self._lock:
            self._descriptors[descriptor.entity_type] = descriptor
        return descriptor

    def get(self, entity_type: str) -> EntityDescriptor:
        """Return one descriptor or raise ``UnknownEntityType``."""
        normalized = normalize_entity_type(entity_type)
        with self._lock:
            descriptor = self._descriptors.get(normalized)
        if descriptor is None:
            raise UnknownEntityType(normalized)
        return descriptor

    def __contains__(self, entity_type: object) -> bool:
        if not isinstance(entity_type, str) or not entity_type.strip():
            return False
        with self._lock:
            return normalize_entity_type(entity_type) in self._descriptors

    def entity_types(self) -> tuple[str, ...]:
        """Return registered entity types in sorted order."""
        with self._lock:
            return tuple(sorted(self._descriptors))

    def validate(self) -> None:
        """Check that every relation targets a registered entity and column."""
        with self._lock:
            descriptors = dict(self._descriptors)
        for descriptor in descriptors.values():
            for relation in descriptor.relations:
                related = descriptors.get(relation.entity_type)
                if related is None:
                    raise CatalogError(
                        f"{descriptor.entity_type}: relation targets unknown entity "
                        f"{relation.entity_type!r}"
                    )
                if not related.has_column(relation.foreign_key):
                    raise CatalogError(
                        f"{descriptor.entity_type}: {relation.entity_type} has no column "
                        f"{relation.foreign_key!r}"
                    )


def build_catalog(
    *,
    settings: RecordStoreSettings,
    engine: Engine,
    extra: Iterable[EntityDescriptor] = (),
) -> EntityCatalog:
    """Reflect configured tables and build a validated catalog.

    ``extra`` descriptors (for example the audit store's own table) are
    registered before configured entities.
    """
    metadata = MetaData()
    catalog = EntityCatalog(extra)
    for entity_type, entity in settings.entities.items():
        table = Table(entity.table, metadata, schema=entity.db_schema, autoload_with=engine)
        catalog.register(
            EntityDescriptor(
                entity_type=entity_type,
                table=table,
                key_column=entity.key_column,
                timestamp_column=entity.timestamp_column,
                identifying_fields=entity.identifying_fields,
                marker_column=entity.marker_column,
                relations=tuple(
                    EntityRelation(
                        entity_type=normalize_entity_type(item.entity_type),
                        foreign_key=item.foreign_key,
                    )
                    for item in entity.relations
                ),
                captured=entity.captured,
            )
        )
    catalog.validate()
    return catalog
