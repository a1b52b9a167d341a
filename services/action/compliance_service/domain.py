"""Domain models for Compliance Service payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from services.state.audit_trail.domain import AuditRecord


class ComplianceExport(BaseModel):
    """Everything the system holds about one record, ready for JSON output.

    ``complete`` is ``False`` when the export was cancelled before every
    relation was read. ``history_truncated`` is ``True`` when the audit
    history reached the configured limit.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: str
    record_id: str
    snapshot: dict[str, Any]
    related: dict[str, list[dict[str, Any]]]
    history: tuple[AuditRecord, ...]
    history_truncated: bool
    complete: bool
    exported_at: datetime
    ledger_entry_id: int | None = None


class AnonymizationReceipt(BaseModel):
    """Result of one compliance anonymize request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: str
    record_id: str
    already_anonymized: bool
    fields: tuple[str, ...]
    anonymized_at: datetime
    ledger_entry_id: int


class HealthStatus(BaseModel):
    """Compliance Service and database substrate readiness payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_ready: bool
    substrate_ready: bool
    detail: str
