"""Retention Service data layer exports."""

from services.action.retention_service.data.repository import (
    SqlCleanupLedgerRepository,
    SqlRetentionPolicyRepository,
)
from services.action.retention_service.data.schema import (
    cleanup_ledger,
    metadata,
    retention_policies,
)

__all__ = [
    "SqlCleanupLedgerRepository",
    "SqlRetentionPolicyRepository",
    "cleanup_ledger",
    "metadata",
    "retention_policies",
]
