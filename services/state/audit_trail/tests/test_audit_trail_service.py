"""Service-level tests for Audit Trail envelopes and capture wiring."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

from packages.custodian_core import CustodianRuntime
from packages.custodian_shared.envelope import EnvelopeMeta
from packages.custodian_shared.errors import ErrorCategory, codes
from resources.substrates.database import SharedDatabaseSubstrate, transactional_session
from services.state.audit_trail import (
    MutationEvent,
    Operation,
    build_audit_trail_service,
)
from services.state.audit_trail.implementation import INVALID_SNAPSHOT
from tests.host_schema import build_settings


def test_store_mutations_are_captured_in_order(
    runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    with transactional_session(runtime.substrate.session_factory) as session:
        created = runtime.store.create(
            session,
            entity_type="customer",
            values={
                "name": "Ada",
                "email": "ada@example.com",
                "tier": "standard",
                "order_count": 0,
                "created_at": datetime(2026, 1, 1),
            },
            principal="alice",
            correlation={"session_id": "s-9"},
        )
    with transactional_session(runtime.substrate.session_factory) as session:
        runtime.store.update(
            session,
            entity_type="customer",
            record_id=created["id"],
            changes={"tier": "gold"},
            principal="bob",
        )

    result = runtime.audit_trail.query(
        meta=meta, entity_type="customer", record_id=str(created["id"])
    )

    assert result.ok
    records = result.value
    assert records is not None
    assert [item.operation for item in records] == [Operation.UPDATED, Operation.CREATED]
    assert records[0].diff == {"tier": {"old": "standard", "new": "gold"}}
    assert records[0].principal == "bob"
    assert records[1].correlation.session_id == "s-9"


def test_no_op_update_is_not_captured(runtime: CustodianRuntime, meta: EnvelopeMeta) -> None:
    with transactional_session(runtime.substrate.session_factory) as session:
        created = runtime.store.create(
            session,
            entity_type="customer",
            values={
                "name": "Ada",
                "email": "ada@example.com",
                "tier": "standard",
                "order_count": 0,
                "created_at": datetime(2026, 1, 1),
            },
            principal="alice",
        )
    with transactional_session(runtime.substrate.session_factory) as session:
        runtime.store.update(
            session,
            entity_type="customer",
            record_id=created["id"],
            changes={"name": "Ada"},
            principal="alice",
        )

    records = runtime.audit_trail.query(meta=meta, entity_type="customer").value

    assert records is not None
    assert len(records) == 1


def test_record_mutation_reports_invalid_snapshot(
    runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    result = runtime.audit_trail.record_mutation(
        meta=meta,
        event=MutationEvent(
            entity_type="customer",
            operation=Operation.UPDATED,
            after={"id": 1},
            principal="alice",
        ),
    )

    assert not result.ok
    assert result.errors[0].category == ErrorCategory.VALIDATION
    assert result.errors[0].code == INVALID_SNAPSHOT


def test_record_mutation_returns_none_for_no_op(
    runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    result = runtime.audit_trail.record_mutation(
        meta=meta,
        event=MutationEvent(
            entity_type="customer",
            operation=Operation.UPDATED,
            before={"id": 1, "tier": "gold"},
            after={"id": 1, "tier": "gold"},
            principal="alice",
        ),
    )

    assert result.ok
    assert result.value is None


def test_get_record_not_found_and_invalid_id(
    runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    missing = runtime.audit_trail.get_record(meta=meta, audit_id=404)
    invalid = runtime.audit_trail.get_record(meta=meta, audit_id=0)

    assert missing.errors[0].category == ErrorCategory.NOT_FOUND
    assert missing.errors[0].code == codes.RESOURCE_NOT_FOUND
    assert invalid.errors[0].category == ErrorCategory.VALIDATION


def test_query_rejects_inverted_range(runtime: CustodianRuntime, meta: EnvelopeMeta) -> None:
    now = datetime(2026, 5, 1, tzinfo=UTC)

    result = runtime.audit_trail.query(
        meta=meta, recorded_from=now, recorded_to=now - timedelta(days=1)
    )

    assert result.errors[0].category == ErrorCategory.VALIDATION


def test_query_limit_is_capped(
    tmp_path: Path,
    substrate: SharedDatabaseSubstrate,
    meta: EnvelopeMeta,
) -> None:
    settings = build_settings(
        tmp_path, audit_trail={"default_query_limit": 2, "max_query_limit": 3}
    )
    service = build_audit_trail_service(settings=settings, substrate=substrate)
    for index in range(5):
        service.record_mutation(
            meta=meta,
            event=MutationEvent(
                entity_type="customer",
                operation=Operation.CREATED,
                after={"id": index + 1},
                principal="alice",
            ),
        )

    default_page = service.query(meta=meta).value
    capped_page = service.query(meta=meta, limit=50).value

    assert default_page is not None and len(default_page) == 2
    assert capped_page is not None and len(capped_page) == 3


def test_invalid_meta_is_rejected(runtime: CustodianRuntime, meta: EnvelopeMeta) -> None:
    result = runtime.audit_trail.query(meta=replace(meta, principal=""))

    assert result.errors[0].category == ErrorCategory.VALIDATION
    assert result.errors[0].message == "metadata.principal is required"


def test_health_reports_ready(runtime: CustodianRuntime, meta: EnvelopeMeta) -> None:
    health = runtime.audit_trail.health(meta=meta).value

    assert health is not None
    assert health.service_ready
    assert health.substrate_ready
