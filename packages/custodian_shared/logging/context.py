"""Per-thread structured logging context.

Values bound here ride along on every log line emitted from the same thread
or task. Sweep worker threads start empty and bind their own policy fields.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType
from typing import Iterator, Mapping

_EMPTY: Mapping[str, str] = MappingProxyType({})
_BOUND: ContextVar[Mapping[str, str]] = ContextVar("custodian_log_context", default=_EMPTY)


def _merged(values: Mapping[str, object]) -> Mapping[str, str]:
    merged = dict(_BOUND.get())
    merged.update({str(key): str(value) for key, value in values.items() if value is not None})
    return MappingProxyType(merged)


def get_context() -> dict[str, str]:
    """Return a copy of the fields bound on the current thread."""
    return dict(_BOUND.get())


def bind_context(**values: object) -> None:
    """Bind fields for the rest of the current context; ``None`` is skipped."""
    if values:
        _BOUND.set(_merged(values))


def clear_context(*keys: str) -> None:
    """Drop the named fields, or every field when called without names."""
    if not keys:
        _BOUND.set(_EMPTY)
        return
    remaining = {key: value for key, value in _BOUND.get().items() if key not in keys}
    _BOUND.set(MappingProxyType(remaining))


@contextmanager
def log_context(values: Mapping[str, object]) -> Iterator[None]:
    """Bind ``values`` for the duration of the ``with`` block only."""
    token = _BOUND.set(_merged(values))
    try:
        yield
    finally:
        _BOUND.reset(token)
