"""Authoritative in-process Python API for Compliance Service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from threading import Event
from typing import Mapping

from packages.custodian_shared.config import CustodianSettings
from packages.custodian_shared.envelope import Envelope, EnvelopeMeta
from resources.adapters.record_store import SqlRecordStore
from resources.substrates.database import SharedDatabaseSubstrate
from services.action.compliance_service.domain import (
    AnonymizationReceipt,
    ComplianceExport,
    HealthStatus,
)


class ComplianceService(ABC):
    """Public API for data-subject export and on-demand anonymization."""

    @abstractmethod
    def export_record(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str,
        record_id: str,
        cancellation: Event | None = None,
    ) -> Envelope[ComplianceExport]:
        """Export one record with its related rows and audit history."""

    @abstractmethod
    def anonymize_record(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str,
        record_id: str,
        correlation: Mapping[str, str] | None = None,
        cancellation: Event | None = None,
    ) -> Envelope[AnonymizationReceipt]:
        """Anonymize one record's identifying fields atomically."""

    @abstractmethod
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return Compliance Service and database substrate readiness."""


def build_compliance_service(
    *,
    settings: CustodianSettings,
    substrate: SharedDatabaseSubstrate,
    store: SqlRecordStore,
) -> ComplianceService:
    """Build default Compliance Service implementation from typed settings."""
    from services.action.compliance_service.implementation import (
        DefaultComplianceService,
    )

    return DefaultComplianceService.from_settings(
        settings=settings,
        substrate=substrate,
        store=store,
    )
