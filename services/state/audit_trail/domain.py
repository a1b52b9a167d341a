"""Domain models for Audit Trail Service payloads."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.state.audit_trail.diff import FieldDiff


class Operation(StrEnum):
    """Mutation kinds captured into the audit trail."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class InvalidSnapshot(ValueError):
    """Raised when an operation is captured with an impossible snapshot pair."""


class CaptureFailure(RuntimeError):
    """Raised when an audit record could not be durably appended.

    Callers must abort the enclosing mutation; capture never retries.
    """


class CorrelationContext(BaseModel):
    """Opaque request correlation values attached to one audit record."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    session_id: str | None = None
    origin_address: str | None = None
    client_label: str | None = None

    def as_mapping(self) -> dict[str, str]:
        """Return only the populated correlation values."""
        return {key: value for key, value in self.model_dump().items() if value is not None}


class MutationEvent(BaseModel):
    """One create/update/delete notification handed to the capture hook."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: str = Field(min_length=1)
    operation: Operation
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    principal: str
    correlation: CorrelationContext = Field(default_factory=CorrelationContext)

    @field_validator("entity_type")
    @classmethod
    def _normalize_entity_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("entity_type is required")
        return normalized


class AuditRecordDraft(BaseModel):
    """Audit record content prior to persistence."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: str
    operation: Operation
    record_id: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    diff: dict[str, dict[str, Any]] | None
    principal: str
    recorded_at: datetime
    correlation: CorrelationContext = Field(default_factory=CorrelationContext)


class AuditRecord(AuditRecordDraft):
    """One immutable, persisted audit record.

    ``diff`` holds the JSON form of a ``FieldDiff``: each changed field maps
    to ``{"old": ..., "new": ...}`` with the absent side omitted.
    """

    audit_id: int

    @property
    def field_diff(self) -> FieldDiff | None:
        """Return the structured diff for update records."""
        if self.diff is None:
            return None
        return FieldDiff.from_json(self.diff)


class AuditQuery(BaseModel):
    """Filter for audit trail reads; bounds on ``recorded_at`` are inclusive."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: str | None = None
    record_id: str | None = None
    recorded_from: datetime | None = None
    recorded_to: datetime | None = None
    limit: int = Field(default=100, ge=1)


class HealthStatus(BaseModel):
    """Audit Trail and database substrate readiness payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_ready: bool
    substrate_ready: bool
    detail: str
