"""Component manifests and the process-wide registry.

Each substrate, adapter and service registers a manifest from its
``component.py``. Settings namespacing, migration discovery and the
architecture tests all read the registry.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from threading import RLock
from typing import Final, FrozenSet, Literal, NewType

ComponentId = NewType("ComponentId", str)
ModuleRoot = NewType("ModuleRoot", str)

Layer = Literal[0, 1]
System = Literal["state", "action"]
ResourceKind = Literal["substrate", "adapter"]

# State services migrate and sort before the action services built on them.
_SYSTEM_ORDER: Final[dict[str, int]] = {"state": 0, "action": 1}
_ID_PATTERN: Final = re.compile(r"^[a-z][a-z0-9_]{1,62}$")
_ROOT_PATTERN: Final = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)*$")


class ManifestError(ValueError):
    """Raised for malformed manifests or conflicting registrations."""


def validate_component_id(value: str) -> None:
    if _ID_PATTERN.fullmatch(value) is None:
        raise ManifestError(
            f"invalid component id '{value}'; expected ^[a-z][a-z0-9_]{{1,62}}$"
        )


@dataclass(frozen=True, slots=True)
class ComponentManifest:
    """Identity, layer and owned import roots of one component."""

    id: ComponentId
    layer: Layer
    system: System
    module_roots: FrozenSet[ModuleRoot]

    def __post_init__(self) -> None:
        validate_component_id(str(self.id))
        if not self.module_roots:
            raise ManifestError("module_roots must not be empty")
        bad = sorted(
            str(root) for root in self.module_roots if not _ROOT_PATTERN.fullmatch(root)
        )
        if bad:
            raise ManifestError(f"invalid module root '{bad[0]}'")


@dataclass(frozen=True, slots=True)
class ResourceManifest(ComponentManifest):
    """Layer-0 substrate or adapter."""

    layer: Literal[0]
    kind: ResourceKind


@dataclass(frozen=True, slots=True)
class ServiceManifest(ComponentManifest):
    """Layer-1 service; ``has_migrations`` marks an Alembic tree beside it."""

    layer: Literal[1]
    has_migrations: bool = True


@dataclass(slots=True)
class ManifestRegistry:
    """Thread-safe map of component id to manifest.

    Re-registering an identical manifest is a no-op, so modules imported
    twice under different test import modes do not conflict.
    """

    _components: dict[str, ComponentManifest] = field(default_factory=dict)
    _lock: RLock = field(default_factory=RLock)

    def register_component(self, manifest: ComponentManifest) -> None:
        with self._lock:
            existing = self._components.setdefault(str(manifest.id), manifest)
        if existing != manifest:
            raise ManifestError(
                f"duplicate component id with mismatched definition: {manifest.id}"
            )

    def get_component(self, component_id: ComponentId) -> ComponentManifest:
        manifest = self._components.get(str(component_id))
        if manifest is None:
            raise ManifestError(f"component not registered: {component_id}")
        return manifest

    def list_resources(self) -> tuple[ResourceManifest, ...]:
        """Return resources sorted by id."""
        resources = [
            item for item in self._components.values() if isinstance(item, ResourceManifest)
        ]
        return tuple(sorted(resources, key=lambda item: str(item.id)))

    def list_services(self) -> tuple[ServiceManifest, ...]:
        """Return services, state before action, then by id."""
        services = [
            item for item in self._components.values() if isinstance(item, ServiceManifest)
        ]
        return tuple(
            sorted(services, key=lambda item: (_SYSTEM_ORDER[item.system], str(item.id)))
        )


_REGISTRY = ManifestRegistry()


def register_component(manifest: ComponentManifest) -> ComponentManifest:
    """Register ``manifest`` in the process registry and return it."""
    _REGISTRY.register_component(manifest)
    return manifest


def get_registry() -> ManifestRegistry:
    return _REGISTRY
