"""Shared relational database substrate primitives for Custodian services."""

from resources.substrates.database.component import MANIFEST, RESOURCE_COMPONENT_ID
from resources.substrates.database.config import DatabaseSettings, resolve_database_settings
from resources.substrates.database.engine import create_database_engine
from resources.substrates.database.errors import normalize_database_error
from resources.substrates.database.health import ping
from resources.substrates.database.session import (
    create_session_factory,
    transactional_session,
)
from resources.substrates.database.substrate import (
    DatabaseHealthStatus,
    SharedDatabaseSubstrate,
)

__all__ = [
    "MANIFEST",
    "RESOURCE_COMPONENT_ID",
    "DatabaseHealthStatus",
    "DatabaseSettings",
    "SharedDatabaseSubstrate",
    "create_database_engine",
    "create_session_factory",
    "normalize_database_error",
    "ping",
    "resolve_database_settings",
    "transactional_session",
]
