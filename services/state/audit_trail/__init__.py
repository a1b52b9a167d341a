"""Audit Trail Service package exports."""

from services.state.audit_trail.capture import CaptureHook, RecordKeyResolver
from services.state.audit_trail.component import MANIFEST, SERVICE_COMPONENT_ID
from services.state.audit_trail.config import (
    AuditTrailSettings,
    resolve_audit_trail_settings,
)
from services.state.audit_trail.diff import (
    ABSENT,
    FieldChange,
    FieldDiff,
    apply_diff,
    compute_diff,
)
from services.state.audit_trail.domain import (
    AuditQuery,
    AuditRecord,
    AuditRecordDraft,
    CaptureFailure,
    CorrelationContext,
    HealthStatus,
    InvalidSnapshot,
    MutationEvent,
    Operation,
)
from services.state.audit_trail.interfaces import AuditRecordRepository
from services.state.audit_trail.service import AuditTrailService, build_audit_trail_service

__all__ = [
    "ABSENT",
    "AuditQuery",
    "AuditRecord",
    "AuditRecordDraft",
    "AuditRecordRepository",
    "AuditTrailService",
    "AuditTrailSettings",
    "CaptureFailure",
    "CaptureHook",
    "CorrelationContext",
    "FieldChange",
    "FieldDiff",
    "HealthStatus",
    "InvalidSnapshot",
    "MANIFEST",
    "MutationEvent",
    "Operation",
    "RecordKeyResolver",
    "SERVICE_COMPONENT_ID",
    "apply_diff",
    "build_audit_trail_service",
    "compute_diff",
    "resolve_audit_trail_settings",
]
