"""Declarative settings describing which host tables are monitored."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from packages.custodian_shared.config import CustodianSettings, resolve_component_settings
from resources.adapters.record_store.component import RESOURCE_COMPONENT_ID


class RelationSettings(BaseModel):
    """One related entity whose rows reference the owning record."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: str = Field(min_length=1)
    foreign_key: str = Field(min_length=1)


class EntitySettings(BaseModel):
    """Monitored entity declaration reflected from an existing table."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    table: str = Field(min_length=1)
    db_schema: str | None = None
    key_column: str = "id"
    timestamp_column: str = Field(min_length=1)
    identifying_fields: dict[str, Any] = Field(default_factory=dict)
    marker_column: str | None = None
    relations: tuple[RelationSettings, ...] = ()
    captured: bool = True


class RecordStoreSettings(BaseModel):
    """Record store adapter settings keyed by entity type."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entities: dict[str, EntitySettings] = Field(default_factory=dict)
    related_limit: int = Field(default=1000, gt=0)


def resolve_record_store_settings(settings: CustodianSettings) -> RecordStoreSettings:
    """Resolve adapter settings from ``components.adapter.record_store``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(RESOURCE_COMPONENT_ID),
        model=RecordStoreSettings,
    )
