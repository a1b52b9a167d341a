"""Shared database substrate owning the engine and session factory."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from resources.substrates.database.config import DatabaseSettings
from resources.substrates.database.engine import create_database_engine
from resources.substrates.database.health import ping
from resources.substrates.database.session import create_session_factory


class DatabaseHealthStatus(BaseModel):
    """Database substrate readiness payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ready: bool
    detail: str


class SharedDatabaseSubstrate:
    """Concrete shared database substrate with readiness probe."""

    def __init__(self, *, settings: DatabaseSettings, engine: Engine | None = None) -> None:
        self._settings = settings
        self._engine = engine if engine is not None else create_database_engine(settings)
        self._session_factory = create_session_factory(self._engine)

    @property
    def engine(self) -> Engine:
        """Return underlying SQLAlchemy engine."""
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        """Return the session factory bound to the shared engine."""
        return self._session_factory

    def is_healthy(self) -> bool:
        """Return readiness as a boolean for service health payloads."""
        return self.health().ready

    def health(self) -> DatabaseHealthStatus:
        """Return readiness from a bounded database ping."""
        ready = ping(self._engine, timeout_seconds=self._settings.health_timeout_seconds)
        return DatabaseHealthStatus(
            ready=ready,
            detail="ok" if ready else "database ping failed",
        )

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()
