"""Public API for Custodian runtime wiring and migrations."""

from packages.custodian_core.migrations import (
    MigrationExecutionError,
    MigrationRunResult,
    discover_service_migration_configs,
    run_migrations,
)
from packages.custodian_core.runtime import CustodianRuntime, ensure_schema

__all__ = [
    "CustodianRuntime",
    "MigrationExecutionError",
    "MigrationRunResult",
    "discover_service_migration_configs",
    "ensure_schema",
    "run_migrations",
]
