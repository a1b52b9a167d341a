"""Pydantic settings for Compliance Service behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from packages.custodian_shared.config import CustodianSettings, resolve_component_settings
from services.action.compliance_service.component import SERVICE_COMPONENT_ID


class ComplianceSettings(BaseModel):
    """Compliance export and anonymize runtime settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    history_limit: int = Field(default=500, gt=0)
    client_label: str = Field(default="compliance", min_length=1)


def resolve_compliance_settings(settings: CustodianSettings) -> ComplianceSettings:
    """Resolve settings from ``components.service.compliance_service``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(SERVICE_COMPONENT_ID),
        model=ComplianceSettings,
    )
