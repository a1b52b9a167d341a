"""Discover and import ``component.py`` modules so manifests register."""

from __future__ import annotations

import importlib
from pathlib import Path

_DISCOVERY_ROOTS = ("services", "resources")

REPO_ROOT = Path(__file__).resolve().parents[2]


def discover_component_modules(repo_root: Path | None = None) -> tuple[str, ...]:
    """Return dotted import paths of component declaration modules."""
    root = (repo_root or REPO_ROOT).resolve()
    modules: list[str] = []
    for discovery_root in _DISCOVERY_ROOTS:
        package_root = root / discovery_root
        if not package_root.exists():
            continue
        for component_file in sorted(package_root.rglob("component.py")):
            rel_component = component_file.relative_to(root)
            if "tests" in rel_component.parts:
                continue
            if not _declares_manifest(component_file):
                continue
            modules.append(".".join(rel_component.with_suffix("").parts))
    return tuple(modules)


def import_registered_component_modules(
    repo_root: Path | None = None,
) -> tuple[str, ...]:
    """Import every discovered component module and return their paths."""
    modules = discover_component_modules(repo_root=repo_root)
    for module in modules:
        importlib.import_module(module)
    return modules


def _declares_manifest(component_file: Path) -> bool:
    source = component_file.read_text(encoding="utf-8")
    return "MANIFEST" in source and "register_component(" in source
