"""Monitored record store adapter: catalog, snapshots, and SQL access."""

from resources.adapters.record_store.catalog import (
    EntityCatalog,
    EntityDescriptor,
    EntityRelation,
    build_catalog,
    normalize_entity_type,
)
from resources.adapters.record_store.component import MANIFEST, RESOURCE_COMPONENT_ID
from resources.adapters.record_store.config import (
    EntitySettings,
    RecordStoreSettings,
    RelationSettings,
    resolve_record_store_settings,
)
from resources.adapters.record_store.errors import (
    CatalogError,
    RecordNotFound,
    UnknownEntityType,
)
from resources.adapters.record_store.store import (
    FILTER_OPERATORS,
    AnonymizeResult,
    FieldFilter,
    MutationObserver,
    RelatedRecords,
    SqlRecordStore,
    is_anonymized,
)

__all__ = [
    "FILTER_OPERATORS",
    "MANIFEST",
    "RESOURCE_COMPONENT_ID",
    "AnonymizeResult",
    "CatalogError",
    "EntityCatalog",
    "EntityDescriptor",
    "EntityRelation",
    "EntitySettings",
    "FieldFilter",
    "MutationObserver",
    "RecordNotFound",
    "RecordStoreSettings",
    "RelatedRecords",
    "RelationSettings",
    "SqlRecordStore",
    "UnknownEntityType",
    "build_catalog",
    "is_anonymized",
    "normalize_entity_type",
    "resolve_record_store_settings",
]
