"""SQLAlchemy engine construction for the shared database substrate."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.pool import StaticPool

from resources.substrates.database.config import DatabaseSettings


def create_database_engine(settings: DatabaseSettings) -> Engine:
    """Construct a configured SQLAlchemy engine for the configured dialect."""
    if settings.is_sqlite:
        return _create_sqlite_engine(settings)
    return create_engine(
        settings.url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout_seconds,
        pool_pre_ping=settings.pool_pre_ping,
        connect_args={"connect_timeout": int(settings.connect_timeout_seconds)},
    )


def _create_sqlite_engine(settings: DatabaseSettings) -> Engine:
    in_memory = settings.url in {"sqlite://", "sqlite:///:memory:"}
    engine = create_engine(
        settings.url,
        echo=settings.echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if in_memory else None,
    )
    enable_sqlite_savepoints(engine)
    return engine


def enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy own transaction boundaries on pysqlite connections.

    The pysqlite driver otherwise defers BEGIN and breaks SAVEPOINT handling.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # noqa: ANN001
        del connection_record
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection) -> None:  # noqa: ANN001
        connection.exec_driver_sql("BEGIN")
