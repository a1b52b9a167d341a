"""Behavior tests for compliance export and anonymize."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from threading import Event

from sqlalchemy import Engine

from packages.custodian_core import CustodianRuntime
from packages.custodian_shared.envelope import EnvelopeMeta
from packages.custodian_shared.errors import ErrorCategory, codes
from resources.adapters.record_store import SqlRecordStore
from resources.substrates.database import transactional_session
from services.action.compliance_service.config import ComplianceSettings
from services.action.compliance_service.implementation import (
    UNKNOWN_ENTITY_TYPE,
    DefaultComplianceService,
)
from services.action.retention_service import LedgerKind
from services.state.audit_trail import CaptureHook
from services.state.audit_trail.data import InMemoryAuditRecordRepository
from tests.host_schema import (
    ACCOUNT_ENTITY,
    ANONYMIZED_EMAIL,
    ANONYMIZED_NAME,
    build_settings,
    insert_customer,
    insert_order,
)

CREATED = datetime(2026, 2, 1, 8, 30)


class _TrippingEvent(Event):
    """Event that reads as unset once, then set."""

    def __init__(self) -> None:
        super().__init__()
        self._checks = 0

    def is_set(self) -> bool:
        self._checks += 1
        return self._checks > 1


class _BrokenAuditRepository(InMemoryAuditRecordRepository):
    def append(self, *, draft, session=None):  # noqa: ANN001, ANN201
        raise OSError("audit volume read-only")


def _touch(runtime: CustodianRuntime, customer_id: int, tier: str) -> None:
    with transactional_session(runtime.substrate.session_factory) as session:
        runtime.store.update(
            session,
            entity_type="customer",
            record_id=customer_id,
            changes={"tier": tier},
            principal="support",
        )


def test_export_includes_snapshot_related_rows_and_history(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(engine, created_at=CREATED, order_count=2)
    order_ids = [
        insert_order(engine, customer_id=customer_id, placed_at=CREATED) for _ in range(2)
    ]
    _touch(runtime, customer_id, "gold")
    _touch(runtime, customer_id, "platinum")

    result = runtime.compliance.export_record(
        meta=meta, entity_type="Customer", record_id=str(customer_id)
    )

    assert result.ok, result.errors
    document = result.value
    assert document is not None
    assert document.entity_type == "customer"
    assert document.record_id == str(customer_id)
    assert document.snapshot["tier"] == "platinum"
    assert document.snapshot["created_at"] == "2026-02-01T08:30:00"
    assert [row["id"] for row in document.related["order"]] == order_ids
    assert [item.diff for item in document.history] == [
        {"tier": {"old": "gold", "new": "platinum"}},
        {"tier": {"old": "standard", "new": "gold"}},
    ]
    assert document.complete
    assert not document.history_truncated
    assert document.ledger_entry_id is not None

    exported = document.model_dump(mode="json")
    assert exported["history"][0]["principal"] == "support"

    entries = runtime.retention.list_ledger(meta=meta, kind=LedgerKind.COMPLIANCE_EXPORT).value
    assert entries is not None
    assert len(entries) == 1
    assert entries[0].record_id == str(customer_id)
    assert entries[0].requested_by == meta.principal


def test_export_is_not_itself_audited(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(engine, created_at=CREATED)

    runtime.compliance.export_record(meta=meta, entity_type="customer", record_id=str(customer_id))
    records = runtime.audit_trail.query(meta=meta).value

    assert records == ()


def test_export_history_truncation_is_flagged(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(engine, created_at=CREATED)
    for tier in ("gold", "silver", "gold"):
        _touch(runtime, customer_id, tier)
    service = DefaultComplianceService(
        settings=ComplianceSettings(history_limit=2),
        substrate=runtime.substrate,
        store=runtime.store,
    )

    document = service.export_record(
        meta=meta, entity_type="customer", record_id=str(customer_id)
    ).value

    assert document is not None
    assert len(document.history) == 2
    assert document.history_truncated


def test_export_distinguishes_missing_record_from_bad_input(
    runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    missing = runtime.compliance.export_record(meta=meta, entity_type="customer", record_id="404")
    unknown = runtime.compliance.export_record(meta=meta, entity_type="invoice", record_id="1")
    malformed = runtime.compliance.export_record(
        meta=meta, entity_type="customer", record_id="not-a-number"
    )

    assert missing.errors[0].category == ErrorCategory.NOT_FOUND
    assert missing.errors[0].code == codes.RESOURCE_NOT_FOUND
    assert unknown.errors[0].category == ErrorCategory.VALIDATION
    assert unknown.errors[0].code == UNKNOWN_ENTITY_TYPE
    assert malformed.errors[0].category == ErrorCategory.VALIDATION


def test_cancelled_export_returns_partial_document_without_ledger(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(engine, created_at=CREATED)
    insert_order(engine, customer_id=customer_id, placed_at=CREATED)

    result = runtime.compliance.export_record(
        meta=meta,
        entity_type="customer",
        record_id=str(customer_id),
        cancellation=_TrippingEvent(),
    )

    assert not result.ok
    assert result.errors[0].category == ErrorCategory.CANCELLED
    partial = result.value
    assert partial is not None
    assert not partial.complete
    assert partial.related == {}
    assert partial.snapshot["id"] == customer_id
    assert runtime.retention.list_ledger(meta=meta).value == ()


def test_pre_cancelled_requests_do_nothing(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(engine, created_at=CREATED)
    cancelled = Event()
    cancelled.set()

    export = runtime.compliance.export_record(
        meta=meta, entity_type="customer", record_id=str(customer_id), cancellation=cancelled
    )
    anonymize = runtime.compliance.anonymize_record(
        meta=meta, entity_type="customer", record_id=str(customer_id), cancellation=cancelled
    )

    assert export.errors[0].category == ErrorCategory.CANCELLED
    assert anonymize.errors[0].category == ErrorCategory.CANCELLED
    with runtime.substrate.session_factory() as session:
        snapshot = runtime.store.fetch(session, entity_type="customer", record_id=customer_id)
    assert snapshot is not None
    assert snapshot["anonymized_at"] is None


def test_anonymize_replaces_identifying_fields_and_redacts_history(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(
        engine,
        created_at=CREATED,
        name="Grace Hopper",
        email="grace@example.com",
        order_count=12,
    )

    result = runtime.compliance.anonymize_record(
        meta=meta,
        entity_type="customer",
        record_id=str(customer_id),
        correlation={"session_id": "dsr-77"},
    )

    assert result.ok, result.errors
    receipt = result.value
    assert receipt is not None
    assert not receipt.already_anonymized
    assert receipt.fields == ("email", "name", "phone")

    with runtime.substrate.session_factory() as session:
        snapshot = runtime.store.fetch(session, entity_type="customer", record_id=customer_id)
    assert snapshot is not None
    assert snapshot["name"] == ANONYMIZED_NAME
    assert snapshot["email"] == ANONYMIZED_EMAIL
    assert snapshot["phone"] is None
    assert snapshot["order_count"] == 12
    assert snapshot["created_at"] == "2026-02-01T08:30:00"

    records = runtime.audit_trail.query(meta=meta, entity_type="customer").value
    assert records is not None and len(records) == 1
    record = records[0]
    assert record.principal == meta.principal
    assert record.correlation.client_label == "compliance"
    assert record.correlation.session_id == "dsr-77"
    assert record.diff is not None
    assert record.diff["name"] == {"old": "[redacted]", "new": ANONYMIZED_NAME}
    assert "Grace Hopper" not in str(record.model_dump())
    assert "grace@example.com" not in str(record.model_dump())

    entries = runtime.retention.list_ledger(
        meta=meta, kind=LedgerKind.COMPLIANCE_ANONYMIZE
    ).value
    assert entries is not None
    assert entries[0].entry_id == receipt.ledger_entry_id
    assert entries[0].affected_count == 1


def test_anonymize_twice_reports_already_anonymized(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(engine, created_at=CREATED)

    first = runtime.compliance.anonymize_record(
        meta=meta, entity_type="customer", record_id=str(customer_id)
    ).value
    second = runtime.compliance.anonymize_record(
        meta=meta, entity_type="customer", record_id=str(customer_id)
    ).value

    assert first is not None and second is not None
    assert second.already_anonymized
    records = runtime.audit_trail.query(meta=meta, entity_type="customer").value
    assert records is not None and len(records) == 1
    entries = runtime.retention.list_ledger(
        meta=meta, kind=LedgerKind.COMPLIANCE_ANONYMIZE
    ).value
    assert entries is not None
    assert [entry.affected_count for entry in entries] == [0, 1]


def test_anonymize_rejects_entities_without_identifying_fields(
    runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    result = runtime.compliance.anonymize_record(
        meta=meta, entity_type="audit_record", record_id="1"
    )

    assert result.errors[0].category == ErrorCategory.VALIDATION


def test_anonymize_missing_record_is_not_found(
    runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    result = runtime.compliance.anonymize_record(
        meta=meta, entity_type="customer", record_id="999"
    )

    assert result.errors[0].category == ErrorCategory.NOT_FOUND


def test_capture_failure_rolls_back_anonymize(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(engine, created_at=CREATED)
    store = SqlRecordStore(
        catalog=runtime.catalog,
        observer=CaptureHook(repository=_BrokenAuditRepository()),
    )
    service = DefaultComplianceService(
        settings=ComplianceSettings(),
        substrate=runtime.substrate,
        store=store,
        clock=lambda: datetime(2026, 3, 3, tzinfo=UTC),
    )

    result = service.anonymize_record(
        meta=meta, entity_type="customer", record_id=str(customer_id)
    )

    assert result.errors[0].category == ErrorCategory.DEPENDENCY
    assert result.errors[0].metadata["exception_type"] == "OSError"
    with runtime.substrate.session_factory() as session:
        snapshot = runtime.store.fetch(session, entity_type="customer", record_id=customer_id)
    assert snapshot is not None
    assert snapshot["name"] == "Ada Lovelace"
    assert snapshot["anonymized_at"] is None
    assert runtime.retention.list_ledger(meta=meta).value == ()


def test_export_history_follows_a_non_id_key_column(
    tmp_path: Path, engine: Engine, meta: EnvelopeMeta
) -> None:
    runtime = CustodianRuntime.from_settings(
        build_settings(tmp_path, entities={"account": ACCOUNT_ENTITY}), engine=engine
    )
    with transactional_session(runtime.substrate.session_factory) as session:
        runtime.store.create(
            session,
            entity_type="account",
            values={
                "account_no": 41,
                "email": "kay@example.com",
                "plan": "basic",
                "opened_at": CREATED,
            },
            principal="support",
        )
        runtime.store.update(
            session,
            entity_type="account",
            record_id=41,
            changes={"plan": "pro"},
            principal="support",
        )

    document = runtime.compliance.export_record(
        meta=meta, entity_type="account", record_id="41"
    ).value

    assert document is not None
    assert document.record_id == "41"
    assert [item.operation.value for item in document.history] == ["updated", "created"]
