"""Fallback mapping from arbitrary exceptions onto the error taxonomy."""

from __future__ import annotations

from . import codes
from .factories import dependency_error, internal_error, not_found_error, validation_error
from .types import ErrorDetail

_DEPENDENCY_EXCEPTIONS: tuple[tuple[type[Exception], str, str], ...] = (
    (TimeoutError, codes.DEPENDENCY_TIMEOUT, "dependency timeout"),
    (ConnectionError, codes.DEPENDENCY_UNAVAILABLE, "dependency unavailable"),
)


def exception_to_error(exc: Exception) -> ErrorDetail:
    """Normalize an exception no service-specific handler recognized.

    Database errors go through ``normalize_database_error`` first; this is
    the last resort.
    """
    metadata = {"exception_type": type(exc).__name__}

    if isinstance(exc, ValueError):
        return validation_error(str(exc), code=codes.INVALID_ARGUMENT, metadata=metadata)
    if isinstance(exc, KeyError):
        message = str(exc.args[0]) if exc.args else "resource not found"
        return not_found_error(message, code=codes.RESOURCE_NOT_FOUND, metadata=metadata)
    for exc_type, code, fallback in _DEPENDENCY_EXCEPTIONS:
        if isinstance(exc, exc_type):
            return dependency_error(str(exc) or fallback, code=code, metadata=metadata)
    return internal_error(
        str(exc) or "unexpected exception",
        code=codes.UNEXPECTED_EXCEPTION,
        metadata=metadata,
    )
