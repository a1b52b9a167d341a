"""Tests for the batch retention sweeper."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from threading import Event, Thread
from typing import Callable, Iterator

import pytest
from pydantic import ValidationError
from sqlalchemy import Engine, delete, func, select

from packages.custodian_core import CustodianRuntime
from packages.custodian_shared.envelope import EnvelopeMeta
from resources.adapters.record_store import SqlRecordStore
from services.action.retention_service import (
    ConditionOperator,
    EligibilityCondition,
    EligibilityPredicate,
    LedgerKind,
    RetentionAction,
    RetentionPolicy,
    RetentionPolicyInput,
    RetentionSettings,
    RetentionSweeper,
    SweepState,
    SweepStatus,
)
from services.action.retention_service.data import (
    SqlCleanupLedgerRepository,
    SqlRetentionPolicyRepository,
)
from services.action.retention_service.sweeper import SWEEP_CLIENT_LABEL, _SweepRun
from services.state.audit_trail.data import audit_records
from tests.host_schema import (
    ANONYMIZED_NAME,
    customers,
    insert_customer,
    insert_order,
    orders,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def _register(
    runtime: CustodianRuntime,
    meta: EnvelopeMeta,
    entity_type: str = "customer",
    **overrides: object,
) -> RetentionPolicy:
    values: dict[str, object] = {
        "entity_type": entity_type,
        "max_age": timedelta(days=30),
        "action": RetentionAction.PURGE,
    }
    values.update(overrides)
    result = runtime.retention.upsert_policy(meta=meta, policy=RetentionPolicyInput(**values))
    assert result.ok, result.errors
    assert result.value is not None
    return result.value


def _sweeper(
    runtime: CustodianRuntime,
    *,
    monotonic: Callable[[], float] | None = None,
    owner: str = "test-sweeper",
    **settings: object,
) -> RetentionSweeper:
    session_factory = runtime.substrate.session_factory
    kwargs: dict[str, object] = {}
    if monotonic is not None:
        kwargs["monotonic"] = monotonic
    return RetentionSweeper(
        store=runtime.store,
        policies=SqlRetentionPolicyRepository(session_factory),
        ledger=SqlCleanupLedgerRepository(session_factory),
        session_factory=session_factory,
        settings=RetentionSettings(sweep_workers=1, **settings),
        owner=owner,
        **kwargs,
    )


def _customer_ids(engine: Engine) -> list[int]:
    with engine.connect() as connection:
        return list(connection.scalars(select(customers.c.id).order_by(customers.c.id)))


def _ticks(*values: float) -> Callable[[], float]:
    iterator: Iterator[float] = iter(values)
    last = values[-1]
    return lambda: next(iterator, last)


def test_purge_respects_age_boundary(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    fresh = insert_customer(engine, created_at=NOW - timedelta(days=29))
    boundary = insert_customer(engine, created_at=NOW - timedelta(days=30))
    expired = insert_customer(engine, created_at=NOW - timedelta(days=31))
    _register(runtime, meta)

    result = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW)

    assert result.ok
    outcome = result.value
    assert outcome is not None
    assert outcome.status is SweepStatus.COMPLETED
    assert outcome.affected_count == 1
    assert outcome.failed_count == 0
    assert outcome.cutoff == NOW - timedelta(days=30)
    assert _customer_ids(engine) == [fresh, boundary]
    assert expired not in _customer_ids(engine)


def test_second_sweep_is_idempotent_and_still_logged(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    insert_customer(engine, created_at=NOW - timedelta(days=31))
    policy = _register(runtime, meta)

    first = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW).value
    second = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW).value

    assert first is not None and second is not None
    assert first.affected_count == 1
    assert second.status is SweepStatus.COMPLETED
    assert second.affected_count == 0

    entries = runtime.retention.list_ledger(meta=meta, kind=LedgerKind.SWEEP).value
    assert entries is not None
    assert [entry.affected_count for entry in entries] == [0, 1]
    assert entries[0].entry_id == second.ledger_entry_id
    assert entries[0].policy_id == policy.policy_id
    assert entries[0].requested_by == "system:retention"

    stored = runtime.retention.get_policy(meta=meta, entity_type="customer").value
    assert stored is not None
    assert stored.last_run_at == NOW


def test_purges_are_captured_with_sweeper_correlation(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    expired = insert_customer(engine, created_at=NOW - timedelta(days=45))
    _register(runtime, meta)

    runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW)

    records = runtime.audit_trail.query(
        meta=meta, entity_type="customer", record_id=str(expired)
    ).value
    assert records is not None
    assert len(records) == 1
    record = records[0]
    assert record.operation.value == "deleted"
    assert record.principal == "system:retention"
    assert record.correlation.client_label == SWEEP_CLIENT_LABEL
    assert record.before is not None
    assert record.before["email"] == "[redacted]"
    assert record.before["tier"] == "standard"


def test_predicate_conditions_narrow_eligibility(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    old = NOW - timedelta(days=60)
    free = insert_customer(engine, created_at=old, tier="free")
    gold = insert_customer(engine, created_at=old, tier="gold")
    _register(
        runtime,
        meta,
        predicate=EligibilityPredicate(
            conditions=(
                EligibilityCondition(field="tier", operator=ConditionOperator.EQ, value="free"),
            )
        ),
    )

    outcome = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW).value

    assert outcome is not None
    assert outcome.affected_count == 1
    assert _customer_ids(engine) == [gold]
    assert free not in _customer_ids(engine)


def test_batches_cover_every_eligible_record(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    for _ in range(5):
        insert_customer(engine, created_at=NOW - timedelta(days=40))
    policy = _register(runtime, meta)

    outcome = _sweeper(runtime, batch_size=2).sweep(policy, now=NOW)

    assert outcome.status is SweepStatus.COMPLETED
    assert outcome.affected_count == 5
    assert _customer_ids(engine) == []


def test_record_failure_is_isolated_and_retried(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    old = NOW - timedelta(days=40)
    blocked = insert_customer(engine, created_at=old)
    order_id = insert_order(engine, customer_id=blocked, placed_at=NOW)
    free = insert_customer(engine, created_at=old)
    _register(runtime, meta)

    first = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW).value

    assert first is not None
    assert first.status is SweepStatus.COMPLETED
    assert first.affected_count == 1
    assert first.failed_count == 1
    assert first.failures[0].record_id == str(blocked)
    assert first.failures[0].exception_type == "IntegrityError"
    assert _customer_ids(engine) == [blocked]
    assert free not in _customer_ids(engine)

    with engine.begin() as connection:
        connection.execute(delete(orders).where(orders.c.id == order_id))

    retry = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW).value

    assert retry is not None
    assert retry.affected_count == 1
    assert retry.failed_count == 0
    assert _customer_ids(engine) == []

    entries = runtime.retention.list_ledger(meta=meta, entity_type="customer").value
    assert entries is not None
    assert [(entry.affected_count, entry.failed_count) for entry in entries] == [(1, 0), (1, 1)]


def test_anonymize_policy_skips_already_anonymized(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(engine, created_at=NOW - timedelta(days=400), order_count=7)
    _register(runtime, meta, max_age=timedelta(days=365), action=RetentionAction.ANONYMIZE)

    first = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW).value
    second = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW).value

    assert first is not None and second is not None
    assert first.affected_count == 1
    assert second.affected_count == 0
    with runtime.substrate.session_factory() as session:
        snapshot = runtime.store.fetch(session, entity_type="customer", record_id=customer_id)
    assert snapshot is not None
    assert snapshot["name"] == ANONYMIZED_NAME
    assert snapshot["order_count"] == 7


def test_disabled_policy_is_skipped(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    insert_customer(engine, created_at=NOW - timedelta(days=40))
    _register(runtime, meta, enabled=False)

    outcome = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW).value

    assert outcome is not None
    assert outcome.status is SweepStatus.SKIPPED_DISABLED
    assert len(_customer_ids(engine)) == 1
    assert runtime.retention.list_ledger(meta=meta).value == ()


def test_held_lease_skips_the_sweep(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    insert_customer(engine, created_at=NOW - timedelta(days=40))
    policy = _register(runtime, meta)
    policies = SqlRetentionPolicyRepository(runtime.substrate.session_factory)
    assert policies.acquire_lease(
        policy_id=policy.policy_id,
        owner="other-host",
        now=datetime.now(UTC),
        ttl=timedelta(hours=1),
    )

    outcome = _sweeper(runtime).sweep(policy, now=NOW)

    assert outcome.status is SweepStatus.SKIPPED_LOCKED
    assert len(_customer_ids(engine)) == 1

    policies.release_lease(policy_id=policy.policy_id, owner="other-host")
    assert _sweeper(runtime).sweep(policy, now=NOW).status is SweepStatus.COMPLETED


def test_expired_lease_is_taken_over(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    insert_customer(engine, created_at=NOW - timedelta(days=40))
    policy = _register(runtime, meta)
    SqlRetentionPolicyRepository(runtime.substrate.session_factory).acquire_lease(
        policy_id=policy.policy_id,
        owner="crashed-host",
        now=datetime.now(UTC) - timedelta(hours=2),
        ttl=timedelta(hours=1),
    )

    outcome = _sweeper(runtime).sweep(policy, now=NOW)

    assert outcome.status is SweepStatus.COMPLETED
    assert outcome.affected_count == 1


def test_budget_exhaustion_times_out_without_ledger(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    for _ in range(3):
        insert_customer(engine, created_at=NOW - timedelta(days=40))
    policy = _register(runtime, meta)
    sweeper = _sweeper(
        runtime,
        monotonic=_ticks(0.0, 0.0, 1000.0),
        batch_size=1,
        sweep_budget_seconds=60.0,
    )

    outcome = sweeper.sweep(policy, now=NOW)

    assert outcome.status is SweepStatus.TIMED_OUT
    assert outcome.affected_count == 1
    assert outcome.ledger_entry_id is None
    assert len(_customer_ids(engine)) == 2
    assert runtime.retention.list_ledger(meta=meta).value == ()

    resumed = _sweeper(runtime).sweep(policy, now=NOW)
    assert resumed.affected_count == 2


def test_audit_records_can_be_purged_without_capture(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    expired = insert_customer(engine, created_at=NOW - timedelta(days=40))
    _register(runtime, meta)
    runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW)
    _register(runtime, meta, "audit_record", max_age=timedelta(days=1))

    outcome = runtime.retention.sweep_policy(
        meta=meta, entity_type="audit_record", now=datetime(2100, 1, 1, tzinfo=UTC)
    ).value

    assert outcome is not None
    assert outcome.affected_count == 1
    with engine.connect() as connection:
        remaining = connection.scalar(select(func.count()).select_from(audit_records))
    assert remaining == 0
    assert expired not in _customer_ids(engine)


def test_run_sweeps_reports_every_policy(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    customer_id = insert_customer(engine, created_at=NOW - timedelta(days=40))
    insert_order(engine, customer_id=customer_id, placed_at=NOW - timedelta(days=40))
    _register(runtime, meta, "order")
    _register(runtime, meta, "customer", enabled=False)

    result = runtime.retention.run_sweeps(meta=meta, now=NOW)

    assert result.ok
    outcomes = {item.entity_type: item for item in result.value or ()}
    assert outcomes["order"].status is SweepStatus.COMPLETED
    assert outcomes["order"].affected_count == 1
    assert outcomes["customer"].status is SweepStatus.SKIPPED_DISABLED


def test_sweep_policy_without_policy_is_not_found(
    runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    result = runtime.retention.sweep_policy(meta=meta, entity_type="customer", now=NOW)

    assert not result.ok
    assert result.errors[0].category.value == "not_found"


def test_illegal_state_transition_raises(
    runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    run = _SweepRun(_register(runtime, meta))

    with pytest.raises(RuntimeError):
        run.transition(SweepState.ACTING)
    run.transition(SweepState.SCANNING)
    with pytest.raises(RuntimeError):
        run.transition(SweepState.LOGGED)


class _StolenLeaseRepository(SqlRetentionPolicyRepository):
    """Hands the lease to another host just before the first renewal."""

    def renew_lease(self, *, policy_id, owner, now, ttl):  # noqa: ANN001, ANN201
        self.release_lease(policy_id=policy_id, owner=owner)
        assert self.acquire_lease(policy_id=policy_id, owner="other-host", now=now, ttl=ttl)
        return super().renew_lease(policy_id=policy_id, owner=owner, now=now, ttl=ttl)


class _BlockingStore(SqlRecordStore):
    """Record store whose purges wait until the test lets them through."""

    def __init__(self, **kwargs: object) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.entered = Event()
        self.release = Event()

    def purge(self, session, **kwargs):  # noqa: ANN001, ANN003, ANN201
        self.entered.set()
        assert self.release.wait(timeout=5)
        return super().purge(session, **kwargs)


def test_lease_must_outlive_the_sweep_budget() -> None:
    with pytest.raises(ValidationError, match="lease_ttl_seconds"):
        RetentionSettings(lease_ttl_seconds=1.0, sweep_budget_seconds=300.0)
    with pytest.raises(ValidationError):
        RetentionSettings(lease_ttl_seconds=300.0, sweep_budget_seconds=300.0)

    assert RetentionSettings(lease_ttl_seconds=301.0, sweep_budget_seconds=300.0)


def test_lease_is_renewed_between_batches(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    for _ in range(3):
        insert_customer(engine, created_at=NOW - timedelta(days=40))
    policy = _register(runtime, meta)
    renewals: list[int] = []

    class _CountingRepository(SqlRetentionPolicyRepository):
        def renew_lease(self, **kwargs):  # noqa: ANN003, ANN201
            renewed = super().renew_lease(**kwargs)
            renewals.append(int(renewed))
            return renewed

    session_factory = runtime.substrate.session_factory
    sweeper = RetentionSweeper(
        store=runtime.store,
        policies=_CountingRepository(session_factory),
        ledger=SqlCleanupLedgerRepository(session_factory),
        session_factory=session_factory,
        settings=RetentionSettings(sweep_workers=1, batch_size=1),
        owner="test-sweeper",
    )

    outcome = sweeper.sweep(policy, now=NOW)

    assert outcome.status is SweepStatus.COMPLETED
    assert outcome.affected_count == 3
    assert renewals == [1, 1, 1]


def test_lost_lease_aborts_the_sweep(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    for _ in range(3):
        insert_customer(engine, created_at=NOW - timedelta(days=40))
    policy = _register(runtime, meta)
    session_factory = runtime.substrate.session_factory
    sweeper = RetentionSweeper(
        store=runtime.store,
        policies=_StolenLeaseRepository(session_factory),
        ledger=SqlCleanupLedgerRepository(session_factory),
        session_factory=session_factory,
        settings=RetentionSettings(sweep_workers=1, batch_size=1),
        owner="test-sweeper",
    )

    outcome = sweeper.sweep(policy, now=NOW)

    assert outcome.status is SweepStatus.FAILED
    assert outcome.detail == "lease lost"
    assert outcome.affected_count == 1
    assert outcome.ledger_entry_id is None
    assert len(_customer_ids(engine)) == 2
    assert runtime.retention.list_ledger(meta=meta).value == ()
    assert not SqlRetentionPolicyRepository(session_factory).acquire_lease(
        policy_id=policy.policy_id,
        owner="third-host",
        now=datetime.now(UTC),
        ttl=timedelta(minutes=5),
    )


def test_concurrent_sweeps_of_one_policy_in_one_process_are_skipped(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    insert_customer(engine, created_at=NOW - timedelta(days=40))
    policy = _register(runtime, meta)
    store = _BlockingStore(catalog=runtime.catalog, observer=runtime.audit_trail.capture_hook)
    session_factory = runtime.substrate.session_factory
    sweeper = RetentionSweeper(
        store=store,
        policies=SqlRetentionPolicyRepository(session_factory),
        ledger=SqlCleanupLedgerRepository(session_factory),
        session_factory=session_factory,
        settings=RetentionSettings(sweep_workers=1),
        owner="test-sweeper",
    )
    outcomes: list[SweepStatus] = []
    worker = Thread(target=lambda: outcomes.append(sweeper.sweep(policy, now=NOW).status))

    worker.start()
    try:
        assert store.entered.wait(timeout=5)
        second = sweeper.sweep(policy, now=NOW)
    finally:
        store.release.set()
        worker.join(timeout=5)

    assert second.status is SweepStatus.SKIPPED_LOCKED
    assert second.detail == "sweep in progress"
    assert outcomes == [SweepStatus.COMPLETED]
    assert _customer_ids(engine) == []
