"""Compliance Service package exports."""

from services.action.compliance_service.component import MANIFEST, SERVICE_COMPONENT_ID
from services.action.compliance_service.config import (
    ComplianceSettings,
    resolve_compliance_settings,
)
from services.action.compliance_service.domain import (
    AnonymizationReceipt,
    ComplianceExport,
    HealthStatus,
)
from services.action.compliance_service.service import (
    ComplianceService,
    build_compliance_service,
)

__all__ = [
    "AnonymizationReceipt",
    "ComplianceExport",
    "ComplianceService",
    "ComplianceSettings",
    "HealthStatus",
    "MANIFEST",
    "SERVICE_COMPONENT_ID",
    "build_compliance_service",
    "resolve_compliance_settings",
]
