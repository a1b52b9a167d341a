"""Retention Service package exports."""

from services.action.retention_service.component import MANIFEST, SERVICE_COMPONENT_ID
from services.action.retention_service.config import (
    RetentionSettings,
    resolve_retention_settings,
)
from services.action.retention_service.domain import (
    CleanupLedgerDraft,
    CleanupLedgerEntry,
    ConditionOperator,
    EligibilityCondition,
    EligibilityPredicate,
    HealthStatus,
    LedgerKind,
    PolicyConflict,
    PolicyNotFound,
    RetentionAction,
    RetentionPolicy,
    RetentionPolicyInput,
    SweepOutcome,
    SweepPartialFailure,
    SweepState,
    SweepStatus,
)
from services.action.retention_service.interfaces import (
    CleanupLedgerRepository,
    RetentionPolicyRepository,
)
from services.action.retention_service.service import (
    RetentionService,
    build_retention_service,
)
from services.action.retention_service.sweeper import RetentionSweeper

__all__ = [
    "CleanupLedgerDraft",
    "CleanupLedgerEntry",
    "CleanupLedgerRepository",
    "ConditionOperator",
    "EligibilityCondition",
    "EligibilityPredicate",
    "HealthStatus",
    "LedgerKind",
    "MANIFEST",
    "PolicyConflict",
    "PolicyNotFound",
    "RetentionAction",
    "RetentionPolicy",
    "RetentionPolicyInput",
    "RetentionPolicyRepository",
    "RetentionService",
    "RetentionSettings",
    "RetentionSweeper",
    "SERVICE_COMPONENT_ID",
    "SweepOutcome",
    "SweepPartialFailure",
    "SweepState",
    "SweepStatus",
    "build_retention_service",
    "resolve_retention_settings",
]
