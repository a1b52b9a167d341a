"""Error taxonomy returned at every Custodian service boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class ErrorCategory(str, Enum):
    """Coarse error classes; the CLI maps them onto exit codes."""

    UNSPECIFIED = "unspecified"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    DEPENDENCY = "dependency"
    CANCELLED = "cancelled"
    INTERNAL = "internal"

    @property
    def is_caller_fault(self) -> bool:
        """Return ``True`` for categories the caller can fix by changing input."""
        return self in _CALLER_FAULTS


_CALLER_FAULTS = frozenset(
    {
        ErrorCategory.VALIDATION,
        ErrorCategory.CONFLICT,
        ErrorCategory.NOT_FOUND,
        ErrorCategory.CANCELLED,
    }
)


@dataclass(frozen=True)
class ErrorDetail:
    """One structured failure carried in an envelope's ``errors`` list."""

    code: str
    message: str
    category: ErrorCategory
    retryable: bool = False
    metadata: Mapping[str, str] = field(default_factory=dict)

    def summary(self) -> str:
        """Return the single-line ``CODE: message`` form used in logs."""
        if not self.code:
            return self.message
        return f"{self.code}: {self.message}"
