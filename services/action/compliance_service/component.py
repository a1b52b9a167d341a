"""Component declaration for Compliance Service."""

from __future__ import annotations

from packages.custodian_shared.manifest import (
    ComponentId,
    ModuleRoot,
    ServiceManifest,
    register_component,
)

SERVICE_COMPONENT_ID = ComponentId("service_compliance_service")

MANIFEST = register_component(
    ServiceManifest(
        id=SERVICE_COMPONENT_ID,
        layer=1,
        system="action",
        module_roots=frozenset({ModuleRoot("services.action.compliance_service")}),
        # Writes into the audit trail and cleanup ledger; owns no tables.
        has_migrations=False,
    )
)
