"""Tests for envelope metadata creation, normalization, and validation."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta, timezone

import pytest

from packages.custodian_shared.envelope import (
    EnvelopeKind,
    new_meta,
    validate_meta,
)


def test_new_meta_generates_ids_and_normalizes_naive_timestamp() -> None:
    """new_meta should create ids and attach UTC to naive timestamps."""
    timestamp = datetime(2026, 1, 1, 12, 0, 0)

    meta = new_meta(
        kind=EnvelopeKind.COMMAND,
        source="cli",
        principal="operator",
        timestamp=timestamp,
    )

    assert meta.envelope_id
    assert meta.trace_id
    assert meta.parent_id == ""
    assert meta.timestamp == timestamp.replace(tzinfo=UTC)
    assert meta.kind == EnvelopeKind.COMMAND


def test_new_meta_normalizes_aware_timestamp_to_utc() -> None:
    """new_meta should convert aware timestamps into UTC."""
    local_tz = timezone(timedelta(hours=-5))

    meta = new_meta(
        kind=EnvelopeKind.EVENT,
        source="scheduler",
        principal="operator",
        timestamp=datetime(2026, 1, 1, 7, 0, 0, tzinfo=local_tz),
    )

    assert meta.timestamp == datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


def test_validate_meta_accepts_complete_metadata() -> None:
    meta = new_meta(kind=EnvelopeKind.COMMAND, source="cli", principal="operator")

    validate_meta(meta)


def test_validate_meta_rejects_unspecified_kind() -> None:
    """validate_meta should fail when kind is unspecified."""
    meta = new_meta(kind=EnvelopeKind.UNSPECIFIED, source="cli", principal="operator")

    with pytest.raises(ValueError, match="metadata.kind must be specified"):
        validate_meta(meta)


@pytest.mark.parametrize("field", ["envelope_id", "trace_id", "source", "principal"])
def test_validate_meta_names_missing_field(field: str) -> None:
    """validate_meta should name the first blank required field."""
    meta = replace(
        new_meta(kind=EnvelopeKind.COMMAND, source="cli", principal="operator"),
        **{field: ""},
    )

    with pytest.raises(ValueError, match=f"metadata.{field} is required"):
        validate_meta(meta)


def test_validate_meta_rejects_whitespace_principal() -> None:
    meta = new_meta(kind=EnvelopeKind.COMMAND, source="cli", principal="   ")

    with pytest.raises(ValueError, match="metadata.principal is required"):
        validate_meta(meta)
