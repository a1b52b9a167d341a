"""``success`` and ``failure`` constructors for service responses."""

from __future__ import annotations

from typing import Iterable, TypeVar

from packages.custodian_shared.errors import ErrorDetail

from .envelope import Envelope, Payload
from .meta import EnvelopeMeta

T = TypeVar("T")


def _wrap(value: T | None) -> Payload[T] | None:
    return None if value is None else Payload[T](value=value)


def success(*, meta: EnvelopeMeta, payload: T) -> Envelope[T]:
    return Envelope[T](metadata=meta, payload=_wrap(payload), errors=[])


def failure(
    *,
    meta: EnvelopeMeta,
    errors: Iterable[ErrorDetail],
    payload: T | None = None,
) -> Envelope[T]:
    """Build a failed envelope.

    ``payload`` carries partial results, for example the part of a
    compliance export gathered before cancellation.
    """
    collected = list(errors)
    if not collected:
        raise ValueError("failure envelopes require at least one error")
    return Envelope[T](metadata=meta, payload=_wrap(payload), errors=collected)
