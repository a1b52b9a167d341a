"""Authoritative in-process Python API for Audit Trail Service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from packages.custodian_shared.config import CustodianSettings
from packages.custodian_shared.envelope import Envelope, EnvelopeMeta
from resources.substrates.database import SharedDatabaseSubstrate
from services.state.audit_trail.capture import CaptureHook
from services.state.audit_trail.domain import AuditRecord, HealthStatus, MutationEvent


class AuditTrailService(ABC):
    """Public API for capturing and reading immutable audit records."""

    @property
    @abstractmethod
    def capture_hook(self) -> CaptureHook:
        """Return the hook used for in-transaction capture by mutation paths."""

    @abstractmethod
    def record_mutation(
        self,
        *,
        meta: EnvelopeMeta,
        event: MutationEvent,
    ) -> Envelope[AuditRecord | None]:
        """Capture one mutation in its own transaction; ``None`` for no-op updates."""

    @abstractmethod
    def query(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str | None = None,
        record_id: str | None = None,
        recorded_from: datetime | None = None,
        recorded_to: datetime | None = None,
        limit: int | None = None,
    ) -> Envelope[tuple[AuditRecord, ...]]:
        """Return matching audit records, newest first."""

    @abstractmethod
    def get_record(self, *, meta: EnvelopeMeta, audit_id: int) -> Envelope[AuditRecord]:
        """Read one audit record by id."""

    @abstractmethod
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return Audit Trail and database substrate readiness."""


def build_audit_trail_service(
    *,
    settings: CustodianSettings,
    substrate: SharedDatabaseSubstrate,
) -> AuditTrailService:
    """Build default Audit Trail implementation from typed settings."""
    from services.state.audit_trail.implementation import DefaultAuditTrailService

    return DefaultAuditTrailService.from_settings(settings=settings, substrate=substrate)
