"""Domain models for Retention Service payloads."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RetentionAction(StrEnum):
    """What a sweep does to eligible records."""

    PURGE = "purge"
    ANONYMIZE = "anonymize"


class ConditionOperator(StrEnum):
    """Comparison operators allowed in eligibility predicates."""

    EQ = "eq"
    NEQ = "neq"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"


class LedgerKind(StrEnum):
    """Origin of one cleanup ledger entry."""

    SWEEP = "sweep"
    COMPLIANCE_EXPORT = "compliance_export"
    COMPLIANCE_ANONYMIZE = "compliance_anonymize"


class SweepState(StrEnum):
    """Per-run sweep lifecycle states."""

    IDLE = "idle"
    SCANNING = "scanning"
    ACTING = "acting"
    LOGGED = "logged"


class SweepStatus(StrEnum):
    """Terminal status reported for one policy sweep."""

    COMPLETED = "completed"
    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_LOCKED = "skipped_locked"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class PolicyConflict(ValueError):
    """Raised when an upsert would give one entity type two policies."""


class PolicyNotFound(KeyError):
    """Raised when a referenced policy does not exist."""


class EligibilityCondition(BaseModel):
    """One declarative column comparison."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    field: str = Field(min_length=1)
    operator: ConditionOperator
    value: Any = None

    @model_validator(mode="after")
    def _check_operand(self) -> "EligibilityCondition":
        unary = self.operator in {ConditionOperator.IS_NULL, ConditionOperator.NOT_NULL}
        if unary and self.value is not None:
            raise ValueError(f"{self.operator.value} takes no value")
        if not unary and self.value is None:
            raise ValueError(f"{self.operator.value} requires a value")
        return self


class EligibilityPredicate(BaseModel):
    """Extra eligibility rules applied on top of the age cutoff.

    ``timestamp_field`` overrides the entity's default timestamp column.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp_field: str | None = None
    conditions: tuple[EligibilityCondition, ...] = ()

    def fields(self) -> tuple[str, ...]:
        """Return every column name the predicate references."""
        names = [item.field for item in self.conditions]
        if self.timestamp_field is not None:
            names.append(self.timestamp_field)
        return tuple(names)


class RetentionPolicyInput(BaseModel):
    """Caller-supplied policy definition for registry upserts."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: str
    max_age: timedelta
    action: RetentionAction
    predicate: EligibilityPredicate = Field(default_factory=EligibilityPredicate)
    enabled: bool = True
    policy_id: int | None = Field(default=None, ge=1)

    @field_validator("entity_type")
    @classmethod
    def _normalize_entity_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("entity_type is required")
        return normalized

    @field_validator("max_age")
    @classmethod
    def _require_positive_age(cls, value: timedelta) -> timedelta:
        if value < timedelta(seconds=1):
            raise ValueError("max_age must be at least one second")
        return value


class RetentionPolicy(BaseModel):
    """One persisted retention policy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy_id: int
    entity_type: str
    max_age: timedelta
    action: RetentionAction
    predicate: EligibilityPredicate
    enabled: bool
    last_run_at: datetime | None
    created_at: datetime
    updated_at: datetime


class CleanupLedgerDraft(BaseModel):
    """Ledger entry content prior to persistence."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: LedgerKind
    policy_id: int | None = None
    entity_type: str
    action: str
    record_id: str | None = None
    affected_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    cutoff: datetime | None = None
    requested_by: str
    recorded_at: datetime


class CleanupLedgerEntry(CleanupLedgerDraft):
    """One immutable cleanup ledger entry."""

    entry_id: int


class SweepPartialFailure(BaseModel):
    """One record that could not be acted on during a sweep.

    The record stays eligible and is retried on the next run.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_id: str
    exception_type: str
    message: str


class SweepOutcome(BaseModel):
    """Result of sweeping one policy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy_id: int
    entity_type: str
    action: RetentionAction
    status: SweepStatus
    cutoff: datetime | None = None
    affected_count: int = 0
    failed_count: int = 0
    failures: tuple[SweepPartialFailure, ...] = ()
    ledger_entry_id: int | None = None
    detail: str = ""


class HealthStatus(BaseModel):
    """Retention Service and database substrate readiness payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_ready: bool
    substrate_ready: bool
    policy_count: int
    detail: str
