"""Tests for the Celery retention sweep schedule and task body."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import Engine

from actors.scheduler import celery_app as scheduler
from packages.custodian_core import CustodianRuntime
from packages.custodian_shared.envelope import EnvelopeMeta
from services.action.retention_service import RetentionAction, RetentionPolicyInput
from tests.host_schema import insert_customer


def test_beat_schedule_runs_sweeps_on_interval() -> None:
    entry = scheduler.celery_app.conf.beat_schedule[scheduler.RUN_SWEEPS_TASK]

    assert entry["task"] == "retention.run_sweeps"
    assert entry["schedule"] > 0
    assert scheduler.RUN_SWEEPS_TASK in scheduler.celery_app.tasks


def test_run_retention_sweeps_summarizes_outcomes(
    runtime: CustodianRuntime, engine: Engine, meta: EnvelopeMeta
) -> None:
    for _ in range(2):
        insert_customer(engine, created_at=datetime(2020, 1, 1))
    runtime.retention.upsert_policy(
        meta=meta,
        policy=RetentionPolicyInput(
            entity_type="customer", max_age=timedelta(days=30), action=RetentionAction.PURGE
        ),
    )

    summary = scheduler.run_retention_sweeps(runtime)

    assert summary["policies"] == 1
    assert summary["affected"] == 2
    assert summary["failed"] == 0
    assert summary["outcomes"][0]["status"] == "completed"


def test_run_retention_sweeps_with_no_policies(runtime: CustodianRuntime) -> None:
    summary = scheduler.run_retention_sweeps(runtime)

    assert summary == {"policies": 0, "affected": 0, "failed": 0, "outcomes": []}


def test_failed_sweep_pass_raises(
    monkeypatch: pytest.MonkeyPatch, runtime: CustodianRuntime, meta: EnvelopeMeta
) -> None:
    failing = runtime.retention.list_ledger(meta=meta, limit=0)
    monkeypatch.setattr(
        type(runtime.retention), "run_sweeps", lambda self, *, meta: failing
    )

    with pytest.raises(RuntimeError, match="retention sweep pass failed"):
        scheduler.run_retention_sweeps(runtime)

