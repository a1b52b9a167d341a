"""Process-level wiring of the database substrate, record store and services."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Engine

from packages.custodian_shared.config import CustodianSettings
from packages.custodian_shared.logging import get_logger
from resources.adapters.record_store import (
    EntityCatalog,
    SqlRecordStore,
    build_catalog,
    resolve_record_store_settings,
)
from resources.substrates.database import SharedDatabaseSubstrate, resolve_database_settings
from services.action.compliance_service import ComplianceService, build_compliance_service
from services.action.retention_service import RetentionService, build_retention_service
from services.action.retention_service.data import metadata as retention_metadata
from services.state.audit_trail import AuditTrailService, build_audit_trail_service
from services.state.audit_trail.data import audit_record_descriptor
from services.state.audit_trail.data import metadata as audit_metadata

_LOGGER = get_logger(__name__)


def ensure_schema(engine: Engine) -> None:
    """Create service-owned tables directly, bypassing Alembic.

    Intended for development databases and tests; production schemas are
    managed by ``run_migrations``.
    """
    audit_metadata.create_all(engine)
    retention_metadata.create_all(engine)


@dataclass(frozen=True, slots=True)
class CustodianRuntime:
    """Fully wired set of Custodian services sharing one database."""

    settings: CustodianSettings
    substrate: SharedDatabaseSubstrate
    catalog: EntityCatalog
    store: SqlRecordStore
    audit_trail: AuditTrailService
    retention: RetentionService
    compliance: ComplianceService

    @classmethod
    def from_settings(
        cls,
        settings: CustodianSettings,
        *,
        engine: Engine | None = None,
        create_schema: bool = False,
    ) -> "CustodianRuntime":
        """Build every service from settings.

        The record store's capture observer is bound to the Audit Trail hook,
        so every mutation made through ``store`` is captured.
        """
        substrate = SharedDatabaseSubstrate(
            settings=resolve_database_settings(settings),
            engine=engine,
        )
        if create_schema:
            ensure_schema(substrate.engine)

        store_settings = resolve_record_store_settings(settings)
        catalog = build_catalog(
            settings=store_settings,
            engine=substrate.engine,
            extra=(audit_record_descriptor(),),
        )
        store = SqlRecordStore(catalog=catalog, related_limit=store_settings.related_limit)

        audit_trail = build_audit_trail_service(settings=settings, substrate=substrate)
        store.bind_observer(audit_trail.capture_hook)

        runtime = cls(
            settings=settings,
            substrate=substrate,
            catalog=catalog,
            store=store,
            audit_trail=audit_trail,
            retention=build_retention_service(
                settings=settings, substrate=substrate, store=store
            ),
            compliance=build_compliance_service(
                settings=settings, substrate=substrate, store=store
            ),
        )
        _LOGGER.info(
            "Custodian runtime ready: monitored_entities=%s",
            ",".join(catalog.entity_types()),
        )
        return runtime

    def close(self) -> None:
        """Release pooled database connections."""
        self.substrate.dispose()
