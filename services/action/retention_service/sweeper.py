"""Batch retention sweeper enforcing one policy per run.

A run moves through ``idle -> scanning -> acting -> logged -> idle``. Each
batch commits in its own transaction and each record is acted on inside a
SAVEPOINT, so one bad record never undoes the rest of its batch.
"""

from __future__ import annotations

import os
import socket
import time
from datetime import UTC, datetime, timedelta
from threading import Lock
from typing import Callable
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from packages.custodian_shared.logging import fields, get_logger, log_context
from resources.adapters.record_store import FieldFilter, SqlRecordStore
from resources.substrates.database import transactional_session
from services.action.retention_service.config import RetentionSettings
from services.action.retention_service.domain import (
    CleanupLedgerDraft,
    LedgerKind,
    RetentionAction,
    RetentionPolicy,
    SweepOutcome,
    SweepPartialFailure,
    SweepState,
    SweepStatus,
)
from services.action.retention_service.interfaces import (
    CleanupLedgerRepository,
    RetentionPolicyRepository,
)

_LOGGER = get_logger(__name__)

SWEEP_CLIENT_LABEL = "retention_sweeper"

_TRANSITIONS: dict[SweepState, frozenset[SweepState]] = {
    SweepState.IDLE: frozenset({SweepState.SCANNING}),
    SweepState.SCANNING: frozenset({SweepState.ACTING, SweepState.IDLE}),
    SweepState.ACTING: frozenset({SweepState.SCANNING, SweepState.LOGGED}),
    SweepState.LOGGED: frozenset({SweepState.IDLE}),
}


def default_lease_owner() -> str:
    """Return a lease owner token unique to this process and instance."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex}"


class _SweepRun:
    """State holder for one sweep run."""

    def __init__(self, policy: RetentionPolicy) -> None:
        self.policy = policy
        self.state = SweepState.IDLE

    def transition(self, target: SweepState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"illegal sweep transition {self.state.value} -> {target.value}"
            )
        _LOGGER.debug(
            "Sweep state change: policy_id=%s %s -> %s",
            self.policy.policy_id,
            self.state.value,
            target.value,
        )
        self.state = target


class RetentionSweeper:
    """Apply retention policies to monitored tables in bounded batches."""

    def __init__(
        self,
        *,
        store: SqlRecordStore,
        policies: RetentionPolicyRepository,
        ledger: CleanupLedgerRepository,
        session_factory: sessionmaker[Session],
        settings: RetentionSettings,
        owner: str | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._policies = policies
        self._ledger = ledger
        self._session_factory = session_factory
        self._settings = settings
        self._owner = owner or default_lease_owner()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._monotonic = monotonic
        self._guard = Lock()
        self._local_locks: dict[int, Lock] = {}

    @property
    def owner(self) -> str:
        """Return the lease owner token used by this sweeper."""
        return self._owner

    def sweep(self, policy: RetentionPolicy, *, now: datetime) -> SweepOutcome:
        """Run one policy to completion, timeout, or skip.

        Per-record failures are tallied in the outcome. Policy-level
        failures (unknown entity, unreachable database) propagate.
        """
        if not policy.enabled:
            return _outcome(policy, SweepStatus.SKIPPED_DISABLED, detail="policy disabled")

        local = self._local_lock(policy.policy_id)
        if not local.acquire(blocking=False):
            return _outcome(policy, SweepStatus.SKIPPED_LOCKED, detail="sweep in progress")
        try:
            acquired = self._policies.acquire_lease(
                policy_id=policy.policy_id,
                owner=self._owner,
                now=self._clock(),
                ttl=self._lease_ttl,
            )
            if not acquired:
                _LOGGER.info(
                    "Sweep skipped, lease held elsewhere: policy_id=%s entity_type=%s",
                    policy.policy_id,
                    policy.entity_type,
                )
                return _outcome(policy, SweepStatus.SKIPPED_LOCKED, detail="lease held")
            try:
                with log_context(
                    {fields.POLICY_ID: policy.policy_id, fields.ENTITY_TYPE: policy.entity_type}
                ):
                    return self._run(_SweepRun(policy), now=now)
            finally:
                self._policies.release_lease(policy_id=policy.policy_id, owner=self._owner)
        finally:
            local.release()

    def _run(self, run: _SweepRun, *, now: datetime) -> SweepOutcome:
        policy = run.policy
        cutoff = now - policy.max_age
        filters = tuple(
            FieldFilter(field=item.field, operator=item.operator.value, value=item.value)
            for item in policy.predicate.conditions
        )
        batch_size = self._settings.batch_size
        started = self._monotonic()
        affected = 0
        failures: list[SweepPartialFailure] = []
        after_key: object | None = None

        while True:
            run.transition(SweepState.SCANNING)
            if self._monotonic() - started >= self._settings.sweep_budget_seconds:
                run.transition(SweepState.IDLE)
                _LOGGER.warning(
                    "Sweep budget exhausted: affected=%s failed=%s budget_seconds=%s",
                    affected,
                    len(failures),
                    self._settings.sweep_budget_seconds,
                )
                return _outcome(
                    policy,
                    SweepStatus.TIMED_OUT,
                    cutoff=cutoff,
                    affected=affected,
                    failures=failures,
                    detail="sweep budget exhausted",
                )
            if after_key is not None and not self._renew_lease(policy):
                run.transition(SweepState.IDLE)
                _LOGGER.error(
                    "Sweep aborted, lease lost: affected=%s failed=%s",
                    affected,
                    len(failures),
                )
                return _outcome(
                    policy,
                    SweepStatus.FAILED,
                    cutoff=cutoff,
                    affected=affected,
                    failures=failures,
                    detail="lease lost",
                )

            with transactional_session(self._session_factory) as session:
                keys = self._store.scan_eligible(
                    session,
                    entity_type=policy.entity_type,
                    cutoff=cutoff,
                    limit=batch_size,
                    timestamp_field=policy.predicate.timestamp_field,
                    filters=filters,
                    unanonymized_only=policy.action is RetentionAction.ANONYMIZE,
                    after_key=after_key,
                )
                run.transition(SweepState.ACTING)
                for key in keys:
                    try:
                        with session.begin_nested():
                            changed = self._act(session, policy, key, now=now)
                    except Exception as exc:  # noqa: BLE001
                        failures.append(
                            SweepPartialFailure(
                                record_id=str(key),
                                exception_type=type(exc).__name__,
                                message=str(exc),
                            )
                        )
                        _LOGGER.warning(
                            "Sweep record failed: record_id=%s exception_type=%s",
                            key,
                            type(exc).__name__,
                            exc_info=exc,
                        )
                        continue
                    if changed:
                        affected += 1

            if len(keys) < batch_size:
                break
            after_key = keys[-1]

        run.transition(SweepState.LOGGED)
        with transactional_session(self._session_factory) as session:
            entry = self._ledger.append(
                draft=CleanupLedgerDraft(
                    kind=LedgerKind.SWEEP,
                    policy_id=policy.policy_id,
                    entity_type=policy.entity_type,
                    action=policy.action.value,
                    affected_count=affected,
                    failed_count=len(failures),
                    cutoff=cutoff,
                    requested_by=self._settings.sweep_principal,
                    recorded_at=self._clock(),
                ),
                session=session,
            )
            self._policies.mark_run(session=session, policy_id=policy.policy_id, at=now)
        run.transition(SweepState.IDLE)

        _LOGGER.info(
            "Sweep completed: action=%s affected=%s failed=%s ledger_entry_id=%s",
            policy.action.value,
            affected,
            len(failures),
            entry.entry_id,
        )
        return _outcome(
            policy,
            SweepStatus.COMPLETED,
            cutoff=cutoff,
            affected=affected,
            failures=failures,
            ledger_entry_id=entry.entry_id,
        )

    def _act(
        self, session: Session, policy: RetentionPolicy, key: object, *, now: datetime
    ) -> bool:
        correlation = {"client_label": SWEEP_CLIENT_LABEL}
        if policy.action is RetentionAction.PURGE:
            return self._store.purge(
                session,
                entity_type=policy.entity_type,
                record_id=key,
                principal=self._settings.sweep_principal,
                correlation=correlation,
            )
        result = self._store.anonymize(
            session,
            entity_type=policy.entity_type,
            record_id=key,
            principal=self._settings.sweep_principal,
            now=now,
            correlation=correlation,
        )
        return result.changed

    @property
    def _lease_ttl(self) -> timedelta:
        return timedelta(seconds=self._settings.lease_ttl_seconds)

    def _renew_lease(self, policy: RetentionPolicy) -> bool:
        return self._policies.renew_lease(
            policy_id=policy.policy_id,
            owner=self._owner,
            now=self._clock(),
            ttl=self._lease_ttl,
        )

    def _local_lock(self, policy_id: int) -> Lock:
        with self._guard:
            return self._local_locks.setdefault(policy_id, Lock())


def _outcome(
    policy: RetentionPolicy,
    status: SweepStatus,
    *,
    cutoff: datetime | None = None,
    affected: int = 0,
    failures: list[SweepPartialFailure] | None = None,
    ledger_entry_id: int | None = None,
    detail: str = "",
) -> SweepOutcome:
    failures = failures or []
    return SweepOutcome(
        policy_id=policy.policy_id,
        entity_type=policy.entity_type,
        action=policy.action,
        status=status,
        cutoff=cutoff,
        affected_count=affected,
        failed_count=len(failures),
        failures=tuple(failures),
        ledger_entry_id=ledger_entry_id,
        detail=detail,
    )
