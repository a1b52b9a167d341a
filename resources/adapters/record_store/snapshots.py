"""Conversion between database values and JSON-compatible snapshots."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import Column


def snapshot_value(value: Any) -> Any:
    """Return a JSON-compatible rendition of one column value."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, Enum):
        return snapshot_value(value.value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(key): snapshot_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [snapshot_value(item) for item in value]
    return str(value)


def row_to_snapshot(row: Mapping[str, Any]) -> dict[str, Any]:
    """Build one snapshot mapping from a SQLAlchemy row mapping."""
    return {str(key): snapshot_value(value) for key, value in row.items()}


def coerce_value(column: Column[Any], value: object) -> object:
    """Coerce a string value (record id or predicate operand) to the column type."""
    if not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    try:
        if python_type is int:
            return int(value)
        if python_type is float:
            return float(value)
        if python_type is Decimal:
            return Decimal(value)
        if python_type is datetime:
            return datetime.fromisoformat(value)
        if python_type is date:
            return date.fromisoformat(value)
        if python_type is UUID:
            return UUID(value)
    except ValueError:
        raise ValueError(
            f"{column.name}: cannot interpret {value!r} as {python_type.__name__}"
        ) from None
    return value
