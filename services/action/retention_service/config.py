"""Pydantic settings for Retention Service behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.custodian_shared.config import CustodianSettings, resolve_component_settings
from services.action.retention_service.component import SERVICE_COMPONENT_ID


class RetentionSettings(BaseModel):
    """Retention registry and sweeper runtime settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    batch_size: int = Field(default=500, gt=0)
    sweep_budget_seconds: float = Field(default=300.0, gt=0)
    lease_ttl_seconds: float = Field(default=900.0, gt=0)
    sweep_workers: int = Field(default=4, gt=0)
    sweep_interval_seconds: float = Field(default=86400.0, gt=0)
    sweep_principal: str = Field(default="system:retention", min_length=1)
    default_ledger_limit: int = Field(default=100, gt=0)
    max_ledger_limit: int = Field(default=1000, gt=0)

    @model_validator(mode="after")
    def _check_lease(self) -> "RetentionSettings":
        if self.lease_ttl_seconds <= self.sweep_budget_seconds:
            raise ValueError("lease_ttl_seconds must exceed sweep_budget_seconds")
        return self


def resolve_retention_settings(settings: CustodianSettings) -> RetentionSettings:
    """Resolve settings from ``components.service.retention_service``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(SERVICE_COMPONENT_ID),
        model=RetentionSettings,
    )
