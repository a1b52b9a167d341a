"""Exceptions raised by the record store adapter."""

from __future__ import annotations


class UnknownEntityType(KeyError):
    """Raised when an entity type is not registered in the catalog."""

    def __init__(self, entity_type: str) -> None:
        super().__init__(f"entity type not monitored: {entity_type}")
        self.entity_type = entity_type


class RecordNotFound(KeyError):
    """Raised when a monitored record does not exist."""

    def __init__(self, entity_type: str, record_id: object) -> None:
        super().__init__(f"{entity_type} record not found: {record_id}")
        self.entity_type = entity_type
        self.record_id = record_id


class CatalogError(ValueError):
    """Raised when an entity declaration does not match its table."""
