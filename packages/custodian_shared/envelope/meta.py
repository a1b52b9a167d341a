"""Request metadata carried by every service call and echoed in its result."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4


class EnvelopeKind(str, Enum):
    UNSPECIFIED = "unspecified"
    COMMAND = "command"
    EVENT = "event"
    RESULT = "result"


@dataclass(frozen=True)
class EnvelopeMeta:
    """Who asked, from where, and under which trace.

    ``principal`` is what the Audit Trail records as the actor of any
    mutation the call performs.
    """

    envelope_id: str
    trace_id: str
    parent_id: str
    timestamp: datetime
    kind: EnvelopeKind
    source: str
    principal: str


# Checked in this order; the first failure names the field.
_REQUIRED_TEXT = ("envelope_id", "trace_id", "source", "principal")


def new_meta(
    *,
    kind: EnvelopeKind,
    source: str,
    principal: str,
    trace_id: str | None = None,
    parent_id: str = "",
    envelope_id: str | None = None,
    timestamp: datetime | None = None,
) -> EnvelopeMeta:
    """Build metadata, generating ids and a UTC timestamp when omitted.

    A naive ``timestamp`` is taken to be UTC already.
    """
    return EnvelopeMeta(
        envelope_id=envelope_id or uuid4().hex,
        trace_id=trace_id or uuid4().hex,
        parent_id=parent_id,
        timestamp=_as_utc(timestamp or utc_now()),
        kind=kind,
        source=source,
        principal=principal,
    )


def validate_meta(meta: EnvelopeMeta) -> None:
    """Raise ``ValueError`` naming the first missing or invalid field."""
    for name in _REQUIRED_TEXT:
        value = getattr(meta, name)
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"metadata.{name} is required")
    if not isinstance(meta.timestamp, datetime):
        raise ValueError("metadata.timestamp is required")
    if not isinstance(meta.kind, EnvelopeKind) or meta.kind is EnvelopeKind.UNSPECIFIED:
        raise ValueError("metadata.kind must be specified")


def utc_now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
