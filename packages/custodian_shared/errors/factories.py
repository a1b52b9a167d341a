"""Constructors for ``ErrorDetail`` values, one per error category."""

from __future__ import annotations

from typing import Mapping

from . import codes
from .types import ErrorCategory, ErrorDetail


def _build(
    category: ErrorCategory,
    message: str,
    code: str,
    retryable: bool,
    metadata: Mapping[str, str] | None,
) -> ErrorDetail:
    return ErrorDetail(
        code=code,
        message=message,
        category=category,
        retryable=retryable,
        metadata=dict(metadata or {}),
    )


def validation_error(
    message: str,
    *,
    code: str = codes.VALIDATION_ERROR,
    metadata: Mapping[str, str] | None = None,
) -> ErrorDetail:
    """Bad input: an unknown entity type, a malformed id, an invalid policy."""
    return _build(ErrorCategory.VALIDATION, message, code, False, metadata)


def not_found_error(
    message: str,
    *,
    code: str = codes.NOT_FOUND,
    metadata: Mapping[str, str] | None = None,
) -> ErrorDetail:
    return _build(ErrorCategory.NOT_FOUND, message, code, False, metadata)


def conflict_error(
    message: str,
    *,
    code: str = codes.CONFLICT,
    metadata: Mapping[str, str] | None = None,
) -> ErrorDetail:
    return _build(ErrorCategory.CONFLICT, message, code, False, metadata)


def dependency_error(
    message: str,
    *,
    code: str = codes.DEPENDENCY_FAILURE,
    retryable: bool = True,
    metadata: Mapping[str, str] | None = None,
) -> ErrorDetail:
    """The database or the audit store failed underneath the operation."""
    return _build(ErrorCategory.DEPENDENCY, message, code, retryable, metadata)


def cancelled_error(
    message: str,
    *,
    code: str = codes.OPERATION_CANCELLED,
    metadata: Mapping[str, str] | None = None,
) -> ErrorDetail:
    """The caller cancelled; repeating the request is always safe."""
    return _build(ErrorCategory.CANCELLED, message, code, True, metadata)


def internal_error(
    message: str,
    *,
    code: str = codes.INTERNAL_ERROR,
    metadata: Mapping[str, str] | None = None,
) -> ErrorDetail:
    return _build(ErrorCategory.INTERNAL, message, code, False, metadata)
