"""Alembic migration orchestration for registered services."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from alembic import command
from alembic.config import Config

from packages.custodian_shared.component_loader import (
    REPO_ROOT,
    import_registered_component_modules,
)
from packages.custodian_shared.config import CustodianSettings
from packages.custodian_shared.logging import get_logger
from packages.custodian_shared.manifest import get_registry
from resources.substrates.database import resolve_database_settings

_LOGGER = get_logger(__name__)


class MigrationExecutionError(RuntimeError):
    """Raised when a service migration fails."""


@dataclass(frozen=True, slots=True)
class MigrationRunResult:
    """Summary of one migration pass."""

    imported_components: tuple[str, ...]
    executed_alembic_configs: tuple[str, ...]


def discover_service_migration_configs(
    *,
    repo_root: Path | None = None,
) -> tuple[Path, ...]:
    """Return ``alembic.ini`` paths of registered services, state before action."""
    root = (repo_root or REPO_ROOT).resolve()
    import_registered_component_modules(repo_root=root)

    config_paths: list[Path] = []
    for service in get_registry().list_services():
        if not service.has_migrations:
            continue
        for module_root in sorted(service.module_roots):
            candidate = (
                root / Path(*str(module_root).split(".")) / "migrations" / "alembic.ini"
            )
            if candidate.exists():
                config_paths.append(candidate)
                break
    return tuple(config_paths)


def run_migrations(
    *,
    settings: CustodianSettings,
    repo_root: Path | None = None,
    revision: str = "head",
    upgrade_fn: Callable[[Config, str], None] = command.upgrade,
) -> MigrationRunResult:
    """Upgrade every registered service schema against the configured database."""
    url = resolve_database_settings(settings).url
    root = (repo_root or REPO_ROOT).resolve()
    imported = import_registered_component_modules(repo_root=root)
    configs = discover_service_migration_configs(repo_root=root)

    executed: list[str] = []
    for config_path in configs:
        config = Config(str(config_path))
        config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
        config.attributes["configure_logger"] = False
        try:
            upgrade_fn(config, revision)
        except Exception as exc:
            raise MigrationExecutionError(
                f"migration failed for config '{config_path}'"
            ) from exc
        _LOGGER.info("Applied migrations: config=%s revision=%s", config_path, revision)
        executed.append(str(config_path))

    return MigrationRunResult(
        imported_components=imported,
        executed_alembic_configs=tuple(executed),
    )
