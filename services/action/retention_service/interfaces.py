"""Transport-neutral protocol interfaces for Retention Service."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy.orm import Session

from services.action.retention_service.domain import (
    CleanupLedgerDraft,
    CleanupLedgerEntry,
    LedgerKind,
    RetentionPolicy,
    RetentionPolicyInput,
)


class RetentionPolicyRepository(Protocol):
    """Protocol for the retention policy registry."""

    def list(self) -> tuple[RetentionPolicy, ...]:
        """Return all policies ordered by entity type."""

    def get(self, *, entity_type: str) -> RetentionPolicy | None:
        """Return the policy for one entity type."""

    def upsert(self, *, policy: RetentionPolicyInput, now: datetime) -> RetentionPolicy:
        """Create or replace the policy keyed by entity type."""

    def delete(self, *, entity_type: str) -> bool:
        """Delete one policy; return ``False`` when none existed."""

    def acquire_lease(
        self, *, policy_id: int, owner: str, now: datetime, ttl: timedelta
    ) -> bool:
        """Claim the per-policy sweep lease when free or expired."""

    def renew_lease(
        self, *, policy_id: int, owner: str, now: datetime, ttl: timedelta
    ) -> bool:
        """Extend an unexpired lease still held by ``owner``."""

    def release_lease(self, *, policy_id: int, owner: str) -> None:
        """Release a lease held by ``owner``."""

    def mark_run(self, *, session: Session, policy_id: int, at: datetime) -> None:
        """Record a completed sweep inside the caller's transaction."""


class CleanupLedgerRepository(Protocol):
    """Protocol for the append-only cleanup ledger."""

    def append(
        self, *, draft: CleanupLedgerDraft, session: Session | None = None
    ) -> CleanupLedgerEntry:
        """Persist one ledger entry, joining ``session`` when supplied."""

    def list(
        self,
        *,
        entity_type: str | None = None,
        kind: LedgerKind | None = None,
        limit: int = 100,
    ) -> tuple[CleanupLedgerEntry, ...]:
        """Return ledger entries, newest first."""
