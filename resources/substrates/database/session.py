"""Session factories and the unit-of-work helper every service uses."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Rows are read back after commit, so attributes must not expire.
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def transactional_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Run one unit of work: commit on success, roll back on any exception.

    A record mutation and its audit record share the session, so they commit
    or roll back together.
    """
    with session_factory.begin() as session:
        yield session
