"""Typed envelope response model for service boundaries."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from packages.custodian_shared.errors import ErrorCategory, ErrorDetail

from .meta import EnvelopeMeta


T = TypeVar("T")


class Payload(BaseModel, Generic[T]):
    """Container for domain payload data carried by an envelope."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    value: T


class Envelope(BaseModel, Generic[T]):
    """Canonical typed envelope with metadata, payload, and errors."""

    model_config = ConfigDict(frozen=True)

    metadata: EnvelopeMeta
    payload: Payload[T] | None
    errors: list[ErrorDetail] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return ``True`` when no errors are present."""
        return len(self.errors) == 0

    @property
    def has_payload(self) -> bool:
        """Return ``True`` when payload is present."""
        return self.payload is not None

    @property
    def value(self) -> T | None:
        """Return the unwrapped payload value, or ``None`` when absent."""
        if self.payload is None:
            return None
        return self.payload.value

    def first_category(self) -> ErrorCategory | None:
        """Return the category of the first error, if any."""
        if not self.errors:
            return None
        return self.errors[0].category
