"""Pydantic settings for Audit Trail Service behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.custodian_shared.config import CustodianSettings, resolve_component_settings
from services.state.audit_trail.component import SERVICE_COMPONENT_ID


class AuditTrailSettings(BaseModel):
    """Audit Trail Service runtime settings.

    ``key_fields`` overrides the snapshot field(s) used to derive a record id
    per entity type; entities not listed use ``default_key_field``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_query_limit: int = Field(default=100, gt=0)
    max_query_limit: int = Field(default=1000, gt=0)
    redaction_marker: str = Field(default="[redacted]", min_length=1)
    default_key_field: str = Field(default="id", min_length=1)
    key_fields: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_limits(self) -> "AuditTrailSettings":
        if self.default_query_limit > self.max_query_limit:
            raise ValueError("default_query_limit must not exceed max_query_limit")
        return self


def resolve_audit_trail_settings(settings: CustodianSettings) -> AuditTrailSettings:
    """Resolve settings from ``components.service.audit_trail``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(SERVICE_COMPONENT_ID),
        model=AuditTrailSettings,
    )
