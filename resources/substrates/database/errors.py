"""SQLAlchemy exception normalization helpers."""

from __future__ import annotations

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)

from packages.custodian_shared.errors import (
    ErrorDetail,
    codes,
    conflict_error,
    dependency_error,
    internal_error,
)


def normalize_database_error(exc: Exception) -> ErrorDetail:
    """Map low-level DB exceptions into shared structured error semantics."""
    metadata = {"exception_type": type(exc).__name__}

    if isinstance(exc, IntegrityError):
        return conflict_error(
            "resource already exists or violates a constraint",
            code=codes.ALREADY_EXISTS,
            metadata=metadata,
        )

    if isinstance(exc, OperationalError) or "timeout" in str(exc).lower():
        return dependency_error(
            "database unavailable",
            code=codes.DEPENDENCY_UNAVAILABLE,
            retryable=True,
            metadata=metadata,
        )

    if isinstance(exc, (InterfaceError, ProgrammingError, DBAPIError, SQLAlchemyError)):
        return dependency_error(
            "database request failed",
            code=codes.DEPENDENCY_FAILURE,
            retryable=False,
            metadata=metadata,
        )

    return internal_error(
        "unexpected database failure",
        code=codes.UNEXPECTED_EXCEPTION,
        metadata=metadata,
    )
