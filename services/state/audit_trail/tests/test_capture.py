"""Unit tests for the audit capture hook."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from services.state.audit_trail.capture import CaptureHook, RecordKeyResolver
from services.state.audit_trail.data.repository import InMemoryAuditRecordRepository
from services.state.audit_trail.domain import (
    AuditQuery,
    CaptureFailure,
    CorrelationContext,
    InvalidSnapshot,
    MutationEvent,
    Operation,
)

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class _FailingRepository(InMemoryAuditRecordRepository):
    def append(self, *, draft, session=None):  # noqa: ANN001, ANN201
        raise OSError("disk full")


def _hook(repository: InMemoryAuditRecordRepository | None = None) -> CaptureHook:
    return CaptureHook(
        repository=repository or InMemoryAuditRecordRepository(),
        clock=lambda: FIXED_NOW,
    )


def test_create_captures_after_snapshot_without_diff() -> None:
    repository = InMemoryAuditRecordRepository()
    hook = _hook(repository)

    record = hook.capture(
        MutationEvent(
            entity_type="Customer",
            operation=Operation.CREATED,
            after={"id": 3, "name": "Ada"},
            principal="alice",
            correlation=CorrelationContext(session_id="s-1", client_label="web"),
        )
    )

    assert record is not None
    assert record.audit_id == 1
    assert record.entity_type == "customer"
    assert record.record_id == "3"
    assert record.before is None
    assert record.after == {"id": 3, "name": "Ada"}
    assert record.diff is None
    assert record.recorded_at == FIXED_NOW
    assert record.correlation.as_mapping() == {"session_id": "s-1", "client_label": "web"}
    assert repository.count() == 1


def test_update_captures_changed_fields_only() -> None:
    hook = _hook()

    record = hook.capture(
        MutationEvent(
            entity_type="customer",
            operation=Operation.UPDATED,
            before={"id": 3, "name": "Ada", "tier": "gold"},
            after={"id": 3, "name": "Ada", "tier": "silver"},
            principal="alice",
        )
    )

    assert record is not None
    assert record.diff == {"tier": {"old": "gold", "new": "silver"}}
    assert record.field_diff is not None
    assert list(record.field_diff) == ["tier"]


def test_no_op_update_writes_nothing() -> None:
    repository = InMemoryAuditRecordRepository()
    hook = _hook(repository)

    record = hook.capture(
        MutationEvent(
            entity_type="customer",
            operation=Operation.UPDATED,
            before={"id": 3, "name": "Ada"},
            after={"id": 3, "name": "Ada"},
            principal="alice",
        )
    )

    assert record is None
    assert repository.count() == 0


def test_delete_captures_before_snapshot() -> None:
    hook = _hook()

    record = hook.capture(
        MutationEvent(
            entity_type="customer",
            operation=Operation.DELETED,
            before={"id": 9, "name": "Ada"},
            principal="alice",
        )
    )

    assert record is not None
    assert record.record_id == "9"
    assert record.after is None
    assert record.diff is None


@pytest.mark.parametrize(
    ("operation", "before", "after"),
    [
        (Operation.CREATED, {"id": 1}, {"id": 1}),
        (Operation.CREATED, None, None),
        (Operation.DELETED, {"id": 1}, {"id": 1}),
        (Operation.DELETED, None, None),
        (Operation.UPDATED, None, {"id": 1}),
        (Operation.UPDATED, {"id": 1}, None),
    ],
)
def test_invalid_snapshot_pairs_are_rejected(
    operation: Operation, before: dict | None, after: dict | None
) -> None:
    repository = InMemoryAuditRecordRepository()
    hook = _hook(repository)

    with pytest.raises(InvalidSnapshot):
        hook.capture(
            MutationEvent(
                entity_type="customer",
                operation=operation,
                before=before,
                after=after,
                principal="alice",
            )
        )
    assert repository.count() == 0


def test_blank_principal_is_rejected() -> None:
    with pytest.raises(InvalidSnapshot):
        _hook().capture(
            MutationEvent(
                entity_type="customer",
                operation=Operation.CREATED,
                after={"id": 1},
                principal="   ",
            )
        )


def test_missing_key_field_is_rejected() -> None:
    with pytest.raises(InvalidSnapshot):
        _hook().capture(
            MutationEvent(
                entity_type="customer",
                operation=Operation.CREATED,
                after={"name": "Ada"},
                principal="alice",
            )
        )


def test_append_failure_raises_capture_failure_with_cause() -> None:
    with pytest.raises(CaptureFailure) as excinfo:
        _hook(_FailingRepository()).capture(
            MutationEvent(
                entity_type="customer",
                operation=Operation.CREATED,
                after={"id": 1},
                principal="alice",
            )
        )

    assert isinstance(excinfo.value.__cause__, OSError)


def test_redacted_fields_hide_prior_values() -> None:
    repository = InMemoryAuditRecordRepository()
    hook = _hook(repository)

    record = hook.capture(
        MutationEvent(
            entity_type="customer",
            operation=Operation.UPDATED,
            before={"id": 1, "name": "Ada", "tier": "gold"},
            after={"id": 1, "name": "ANONYMIZED", "tier": "gold"},
            principal="alice",
        ),
        redact_fields=("name",),
    )

    assert record is not None
    assert record.before == {"id": 1, "name": "[redacted]", "tier": "gold"}
    assert record.diff == {"name": {"old": "[redacted]", "new": "ANONYMIZED"}}
    assert "Ada" not in str(repository.query(query=AuditQuery()))


def test_composite_keys_join_in_declaration_order() -> None:
    resolver = RecordKeyResolver(overrides={"Line_Item": ("order_id", "line")})

    assert resolver.resolve("line_item", {"line": 2, "order_id": 40}) == "40:2"
    assert resolver.resolve("customer", {"id": 5}) == "5"


def test_record_mutation_maps_invalid_operation_to_invalid_snapshot() -> None:
    with pytest.raises(InvalidSnapshot):
        _hook().record_mutation(
            entity_type="customer",
            operation="renamed",
            before=None,
            after={"id": 1},
            principal="alice",
            correlation=None,
            session=None,  # type: ignore[arg-type]
        )


def test_store_key_field_overrides_configured_keys() -> None:
    resolver = RecordKeyResolver(overrides={"account": ("id",)})

    assert resolver.resolve("account", {"account_no": 7}, "account_no") == "7"
    with pytest.raises(InvalidSnapshot, match="account_no"):
        resolver.resolve("account", {"id": 7}, "account_no")


def test_record_mutation_resolves_ids_from_the_key_field() -> None:
    hook = _hook()

    record = hook.record_mutation(
        entity_type="account",
        operation="created",
        before=None,
        after={"account_no": 7, "email": "kay@example.com"},
        principal="alice",
        correlation=None,
        session=None,  # type: ignore[arg-type]
        key_field="account_no",
    )

    assert record is not None
    assert record.record_id == "7"
