"""Synchronous change capture invoked inside the mutating transaction."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Callable, Iterable, Mapping, Sequence

from pydantic import ValidationError
from sqlalchemy.orm import Session

from packages.custodian_shared.logging import fields as log_fields
from packages.custodian_shared.logging import get_logger, log_context
from services.state.audit_trail.diff import compute_diff
from services.state.audit_trail.domain import (
    AuditRecord,
    AuditRecordDraft,
    CaptureFailure,
    CorrelationContext,
    InvalidSnapshot,
    MutationEvent,
    Operation,
)
from services.state.audit_trail.interfaces import AuditRecordRepository

_LOGGER = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(UTC)


class RecordKeyResolver:
    """Derive the string record id of a snapshot.

    Composite keys are joined with ``:`` in declaration order.
    """

    def __init__(
        self,
        *,
        default_field: str = "id",
        overrides: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self._default = (default_field,)
        self._overrides = {
            key.strip().lower(): tuple(fields) for key, fields in (overrides or {}).items()
        }

    def resolve(
        self,
        entity_type: str,
        snapshot: Mapping[str, Any],
        key_field: str | None = None,
    ) -> str:
        """Join the key value(s) of ``snapshot``.

        An explicit ``key_field`` from the mutating store wins over the
        configured overrides.
        """
        if key_field is not None:
            fields: Sequence[str] = (key_field,)
        else:
            fields = self._overrides.get(entity_type, self._default)
        parts: list[str] = []
        for name in fields:
            value = snapshot.get(name)
            if value is None:
                raise InvalidSnapshot(f"{entity_type}: snapshot has no key field {name!r}")
            parts.append(str(value))
        return ":".join(parts)


class CaptureHook:
    """Turn one mutation event into one appended audit record.

    A structurally-equal update writes nothing and returns ``None``. Any
    append failure is raised as ``CaptureFailure`` so the caller's
    transaction rolls back with it.
    """

    def __init__(
        self,
        *,
        repository: AuditRecordRepository,
        key_resolver: RecordKeyResolver | None = None,
        clock: Clock = utc_clock,
        redaction_marker: str = "[redacted]",
    ) -> None:
        self._repository = repository
        self._keys = key_resolver or RecordKeyResolver()
        self._clock = clock
        self._redaction_marker = redaction_marker

    def __call__(
        self,
        event: MutationEvent,
        *,
        session: Session | None = None,
        redact_fields: Iterable[str] = (),
        key_field: str | None = None,
    ) -> AuditRecord | None:
        return self.capture(
            event, session=session, redact_fields=redact_fields, key_field=key_field
        )

    def capture(
        self,
        event: MutationEvent,
        *,
        session: Session | None = None,
        redact_fields: Iterable[str] = (),
        key_field: str | None = None,
    ) -> AuditRecord | None:
        """Validate, diff and append one mutation event."""
        _check_snapshots(event)
        principal = event.principal.strip()
        if not principal:
            raise InvalidSnapshot("principal is required")

        source = event.after if event.after is not None else event.before
        assert source is not None
        record_id = self._keys.resolve(event.entity_type, source, key_field)

        diff_json: dict[str, dict[str, Any]] | None = None
        hidden = frozenset(redact_fields)
        if event.operation is Operation.UPDATED:
            diff = compute_diff(event.before, event.after)
            if diff.is_empty:
                _LOGGER.debug(
                    "Skipped no-op update capture: entity_type=%s record_id=%s",
                    event.entity_type,
                    record_id,
                )
                return None
            diff_json = diff.redacted(hidden, self._redaction_marker).to_json()

        draft = AuditRecordDraft(
            entity_type=event.entity_type,
            operation=event.operation,
            record_id=record_id,
            before=self._redact(event.before, hidden),
            after=event.after,
            diff=diff_json,
            principal=principal,
            recorded_at=self._clock(),
            correlation=event.correlation,
        )
        try:
            record = self._repository.append(draft=draft, session=session)
        except Exception as exc:
            with log_context(
                {log_fields.ENTITY_TYPE: event.entity_type, log_fields.RECORD_ID: record_id}
            ):
                _LOGGER.warning(
                    "Audit capture failed: operation=%s exception_type=%s",
                    event.operation.value,
                    type(exc).__name__,
                    exc_info=exc,
                )
            raise CaptureFailure(
                f"failed to capture {event.operation.value} of {event.entity_type}:{record_id}"
            ) from exc

        _LOGGER.debug(
            "Captured %s: entity_type=%s record_id=%s audit_id=%s",
            record.operation.value,
            record.entity_type,
            record.record_id,
            record.audit_id,
        )
        return record

    def record_mutation(
        self,
        *,
        entity_type: str,
        operation: str,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
        principal: str,
        correlation: Mapping[str, str] | None,
        session: Session,
        redact_fields: Sequence[str] = (),
        key_field: str | None = None,
    ) -> AuditRecord | None:
        """Observer entry point used by the record store adapter."""
        try:
            event = MutationEvent(
                entity_type=entity_type,
                operation=Operation(operation),
                before=None if before is None else dict(before),
                after=None if after is None else dict(after),
                principal=principal,
                correlation=CorrelationContext.model_validate(dict(correlation or {})),
            )
        except (ValidationError, ValueError) as exc:
            raise InvalidSnapshot(str(exc)) from None
        return self.capture(
            event, session=session, redact_fields=redact_fields, key_field=key_field
        )

    def _redact(
        self, snapshot: dict[str, Any] | None, fields: frozenset[str]
    ) -> dict[str, Any] | None:
        if snapshot is None or not fields:
            return snapshot
        return {
            name: self._redaction_marker if name in fields else value
            for name, value in snapshot.items()
        }


def _check_snapshots(event: MutationEvent) -> None:
    has_before = event.before is not None
    has_after = event.after is not None
    if event.operation is Operation.CREATED and (has_before or not has_after):
        raise InvalidSnapshot("created requires an after snapshot and no before snapshot")
    if event.operation is Operation.DELETED and (has_after or not has_before):
        raise InvalidSnapshot("deleted requires a before snapshot and no after snapshot")
    if event.operation is Operation.UPDATED and not (has_before and has_after):
        raise InvalidSnapshot("updated requires both before and after snapshots")
