"""Authoritative in-process Python API for Retention Service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from packages.custodian_shared.config import CustodianSettings
from packages.custodian_shared.envelope import Envelope, EnvelopeMeta
from resources.adapters.record_store import SqlRecordStore
from resources.substrates.database import SharedDatabaseSubstrate
from services.action.retention_service.domain import (
    CleanupLedgerEntry,
    HealthStatus,
    LedgerKind,
    RetentionPolicy,
    RetentionPolicyInput,
    SweepOutcome,
)
from services.action.retention_service.interfaces import CleanupLedgerRepository


class RetentionService(ABC):
    """Public API for the retention policy registry and sweeper."""

    @property
    @abstractmethod
    def ledger(self) -> CleanupLedgerRepository:
        """Return the cleanup ledger shared with compliance operations."""

    @abstractmethod
    def list_policies(self, *, meta: EnvelopeMeta) -> Envelope[tuple[RetentionPolicy, ...]]:
        """Return every registered policy ordered by entity type."""

    @abstractmethod
    def get_policy(self, *, meta: EnvelopeMeta, entity_type: str) -> Envelope[RetentionPolicy]:
        """Return the policy for one entity type."""

    @abstractmethod
    def upsert_policy(
        self, *, meta: EnvelopeMeta, policy: RetentionPolicyInput
    ) -> Envelope[RetentionPolicy]:
        """Create or replace the policy for one entity type."""

    @abstractmethod
    def delete_policy(self, *, meta: EnvelopeMeta, entity_type: str) -> Envelope[bool]:
        """Delete the policy for one entity type."""

    @abstractmethod
    def sweep_policy(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str,
        now: datetime | None = None,
    ) -> Envelope[SweepOutcome]:
        """Run one sweep of the policy for ``entity_type``."""

    @abstractmethod
    def run_sweeps(
        self, *, meta: EnvelopeMeta, now: datetime | None = None
    ) -> Envelope[tuple[SweepOutcome, ...]]:
        """Sweep every registered policy once."""

    @abstractmethod
    def list_ledger(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str | None = None,
        kind: LedgerKind | None = None,
        limit: int | None = None,
    ) -> Envelope[tuple[CleanupLedgerEntry, ...]]:
        """Return cleanup ledger entries, newest first."""

    @abstractmethod
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return Retention Service and database substrate readiness."""


def build_retention_service(
    *,
    settings: CustodianSettings,
    substrate: SharedDatabaseSubstrate,
    store: SqlRecordStore,
) -> RetentionService:
    """Build default Retention Service implementation from typed settings."""
    from services.action.retention_service.implementation import DefaultRetentionService

    return DefaultRetentionService.from_settings(
        settings=settings,
        substrate=substrate,
        store=store,
    )
