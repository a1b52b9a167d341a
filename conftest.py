"""Shared pytest fixtures: an in-memory SQLite database and a wired runtime."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from packages.custodian_core import CustodianRuntime, ensure_schema
from packages.custodian_shared.config import CustodianSettings
from packages.custodian_shared.envelope import EnvelopeKind, EnvelopeMeta, new_meta
from resources.substrates.database import (
    DatabaseSettings,
    SharedDatabaseSubstrate,
    create_database_engine,
)
from tests.host_schema import build_settings, host_metadata


@pytest.fixture
def engine() -> Iterator[Engine]:
    """Return a single-connection in-memory engine with every table created."""
    engine = create_database_engine(DatabaseSettings(url="sqlite://"))
    host_metadata.create_all(engine)
    ensure_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def substrate(engine: Engine) -> SharedDatabaseSubstrate:
    """Return the shared database substrate over the test engine."""
    return SharedDatabaseSubstrate(settings=DatabaseSettings(url="sqlite://"), engine=engine)


@pytest.fixture
def session_factory(substrate: SharedDatabaseSubstrate) -> sessionmaker[Session]:
    """Return the substrate's session factory."""
    return substrate.session_factory


@pytest.fixture
def settings(tmp_path: Path) -> CustodianSettings:
    """Return hermetic settings for the test database."""
    return build_settings(tmp_path)


@pytest.fixture
def runtime(settings: CustodianSettings, engine: Engine) -> CustodianRuntime:
    """Return a fully wired runtime over the test engine."""
    return CustodianRuntime.from_settings(settings, engine=engine)


@pytest.fixture
def meta() -> EnvelopeMeta:
    """Return valid request metadata for service calls."""
    return new_meta(kind=EnvelopeKind.COMMAND, source="test", principal="tester")
