"""Retention Service repository implementations."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Mapping

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from resources.substrates.database import transactional_session
from services.action.retention_service.data.schema import cleanup_ledger, retention_policies
from services.action.retention_service.domain import (
    CleanupLedgerDraft,
    CleanupLedgerEntry,
    EligibilityPredicate,
    LedgerKind,
    PolicyConflict,
    PolicyNotFound,
    RetentionPolicy,
    RetentionPolicyInput,
)
from services.action.retention_service.interfaces import (
    CleanupLedgerRepository,
    RetentionPolicyRepository,
)


class SqlRetentionPolicyRepository(RetentionPolicyRepository):
    """SQL repository over the ``retention_policies`` registry table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def list(self) -> tuple[RetentionPolicy, ...]:
        """Return all policies ordered by entity type."""
        with self._session_factory() as session:
            rows = (
                session.execute(
                    select(retention_policies).order_by(retention_policies.c.entity_type)
                )
                .mappings()
                .all()
            )
        return tuple(_row_to_policy(row) for row in rows)

    def get(self, *, entity_type: str) -> RetentionPolicy | None:
        """Return the policy for one entity type."""
        with self._session_factory() as session:
            row = _select_one(session, retention_policies.c.entity_type == entity_type)
        return None if row is None else _row_to_policy(row)

    def upsert(self, *, policy: RetentionPolicyInput, now: datetime) -> RetentionPolicy:
        """Create or replace the policy for ``policy.entity_type``; last write wins.

        An explicit ``policy_id`` may move a policy onto a new entity type,
        unless another policy already owns that entity type.
        """
        values = {
            "entity_type": policy.entity_type,
            "max_age_seconds": int(policy.max_age.total_seconds()),
            "action": policy.action.value,
            "predicate": policy.predicate.model_dump(mode="json"),
            "enabled": policy.enabled,
            "updated_at": now,
        }
        try:
            with transactional_session(self._session_factory) as session:
                owner = _select_one(
                    session, retention_policies.c.entity_type == policy.entity_type
                )
                target = owner
                if policy.policy_id is not None:
                    target = _select_one(session, retention_policies.c.id == policy.policy_id)
                    if target is None:
                        raise PolicyNotFound(f"retention policy not found: {policy.policy_id}")
                    if owner is not None and owner["id"] != target["id"]:
                        raise PolicyConflict(
                            f"entity type {policy.entity_type!r} already has policy {owner['id']}"
                        )

                if target is None:
                    result = session.execute(
                        insert(retention_policies).values(**values, created_at=now)
                    )
                    policy_id = int(result.inserted_primary_key[0])
                else:
                    policy_id = int(target["id"])
                    session.execute(
                        update(retention_policies)
                        .where(retention_policies.c.id == policy_id)
                        .values(**values)
                    )
                row = _select_one(session, retention_policies.c.id == policy_id)
        except IntegrityError as exc:
            raise PolicyConflict(
                f"entity type {policy.entity_type!r} already has a policy"
            ) from exc
        assert row is not None
        return _row_to_policy(row)

    def delete(self, *, entity_type: str) -> bool:
        """Delete one policy; return ``False`` when none existed."""
        with transactional_session(self._session_factory) as session:
            result = session.execute(
                delete(retention_policies).where(
                    retention_policies.c.entity_type == entity_type
                )
            )
            return bool(result.rowcount)

    def acquire_lease(
        self, *, policy_id: int, owner: str, now: datetime, ttl: timedelta
    ) -> bool:
        """Claim the sweep lease with one conditional update."""
        with transactional_session(self._session_factory) as session:
            result = session.execute(
                update(retention_policies)
                .where(
                    and_(
                        retention_policies.c.id == policy_id,
                        or_(
                            retention_policies.c.lease_expires_at.is_(None),
                            retention_policies.c.lease_expires_at < now,
                        ),
                    )
                )
                .values(lease_owner=owner, lease_expires_at=now + ttl)
            )
            return result.rowcount == 1

    def renew_lease(
        self, *, policy_id: int, owner: str, now: datetime, ttl: timedelta
    ) -> bool:
        """Push the expiry out; ``False`` once the lease lapsed or changed hands."""
        with transactional_session(self._session_factory) as session:
            result = session.execute(
                update(retention_policies)
                .where(
                    and_(
                        retention_policies.c.id == policy_id,
                        retention_policies.c.lease_owner == owner,
                        retention_policies.c.lease_expires_at >= now,
                    )
                )
                .values(lease_expires_at=now + ttl)
            )
            return result.rowcount == 1

    def release_lease(self, *, policy_id: int, owner: str) -> None:
        """Release a lease held by ``owner``; a stolen lease is left alone."""
        with transactional_session(self._session_factory) as session:
            session.execute(
                update(retention_policies)
                .where(
                    and_(
                        retention_policies.c.id == policy_id,
                        retention_policies.c.lease_owner == owner,
                    )
                )
                .values(lease_owner=None, lease_expires_at=None)
            )

    def mark_run(self, *, session: Session, policy_id: int, at: datetime) -> None:
        """Record a completed sweep inside the caller's transaction."""
        session.execute(
            update(retention_policies)
            .where(retention_policies.c.id == policy_id)
            .values(last_run_at=at)
        )


class SqlCleanupLedgerRepository(CleanupLedgerRepository):
    """SQL repository over the append-only ``cleanup_ledger`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def append(
        self, *, draft: CleanupLedgerDraft, session: Session | None = None
    ) -> CleanupLedgerEntry:
        """Persist one ledger entry, joining ``session`` when supplied."""
        if session is not None:
            return self._append(session, draft)
        with transactional_session(self._session_factory) as own_session:
            return self._append(own_session, draft)

    def list(
        self,
        *,
        entity_type: str | None = None,
        kind: LedgerKind | None = None,
        limit: int = 100,
    ) -> tuple[CleanupLedgerEntry, ...]:
        """Return ledger entries, newest first."""
        clauses: list[ColumnElement[bool]] = []
        if entity_type is not None:
            clauses.append(cleanup_ledger.c.entity_type == entity_type)
        if kind is not None:
            clauses.append(cleanup_ledger.c.kind == kind.value)
        statement = select(cleanup_ledger)
        if clauses:
            statement = statement.where(and_(*clauses))
        statement = statement.order_by(
            cleanup_ledger.c.recorded_at.desc(), cleanup_ledger.c.id.desc()
        ).limit(limit)
        with self._session_factory() as session:
            rows = session.execute(statement).mappings().all()
        return tuple(_row_to_entry(row) for row in rows)

    def _append(self, session: Session, draft: CleanupLedgerDraft) -> CleanupLedgerEntry:
        result = session.execute(
            insert(cleanup_ledger).values(
                kind=draft.kind.value,
                policy_id=draft.policy_id,
                entity_type=draft.entity_type,
                action=draft.action,
                record_id=draft.record_id,
                affected_count=draft.affected_count,
                failed_count=draft.failed_count,
                cutoff=draft.cutoff,
                requested_by=draft.requested_by,
                recorded_at=draft.recorded_at,
            )
        )
        return CleanupLedgerEntry(entry_id=int(result.inserted_primary_key[0]), **dict(draft))


def _select_one(session: Session, clause: ColumnElement[bool]) -> Mapping[str, Any] | None:
    return session.execute(select(retention_policies).where(clause)).mappings().first()


def _row_to_policy(row: Mapping[str, Any]) -> RetentionPolicy:
    return RetentionPolicy(
        policy_id=int(row["id"]),
        entity_type=row["entity_type"],
        max_age=timedelta(seconds=int(row["max_age_seconds"])),
        action=row["action"],
        predicate=EligibilityPredicate.model_validate(row["predicate"] or {}),
        enabled=bool(row["enabled"]),
        last_run_at=_as_utc(row["last_run_at"]),
        created_at=_as_utc(row["created_at"]),
        updated_at=_as_utc(row["updated_at"]),
    )


def _row_to_entry(row: Mapping[str, Any]) -> CleanupLedgerEntry:
    return CleanupLedgerEntry(
        entry_id=int(row["id"]),
        kind=row["kind"],
        policy_id=row["policy_id"],
        entity_type=row["entity_type"],
        action=row["action"],
        record_id=row["record_id"],
        affected_count=int(row["affected_count"]),
        failed_count=int(row["failed_count"]),
        cutoff=_as_utc(row["cutoff"]),
        requested_by=row["requested_by"],
        recorded_at=_as_utc(row["recorded_at"]),
    )


def _as_utc(value: datetime | None) -> Any:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
