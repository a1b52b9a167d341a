"""Audit Trail data layer exports."""

from services.state.audit_trail.data.repository import (
    InMemoryAuditRecordRepository,
    SqlAuditRecordRepository,
)
from services.state.audit_trail.data.schema import (
    AUDIT_RECORD_ENTITY_TYPE,
    audit_record_descriptor,
    audit_records,
    metadata,
)

__all__ = [
    "AUDIT_RECORD_ENTITY_TYPE",
    "InMemoryAuditRecordRepository",
    "SqlAuditRecordRepository",
    "audit_record_descriptor",
    "audit_records",
    "metadata",
]
