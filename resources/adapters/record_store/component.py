"""Component declaration for the monitored record store adapter."""

from __future__ import annotations

from packages.custodian_shared.manifest import (
    ComponentId,
    ModuleRoot,
    ResourceManifest,
    register_component,
)

RESOURCE_COMPONENT_ID = ComponentId("adapter_record_store")

MANIFEST = register_component(
    ResourceManifest(
        id=RESOURCE_COMPONENT_ID,
        layer=0,
        system="state",
        kind="adapter",
        module_roots=frozenset({ModuleRoot("resources.adapters.record_store")}),
    )
)
