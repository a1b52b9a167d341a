"""Transport-neutral protocol interfaces for Audit Trail Service."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy.orm import Session

from services.state.audit_trail.domain import AuditQuery, AuditRecord, AuditRecordDraft


class AuditRecordRepository(Protocol):
    """Protocol for append-only audit record persistence.

    ``session`` joins the caller's unit of work; without it the repository
    commits on its own.
    """

    def append(self, *, draft: AuditRecordDraft, session: Session | None = None) -> AuditRecord:
        """Persist one audit record and return it with its assigned id."""

    def query(self, *, query: AuditQuery) -> tuple[AuditRecord, ...]:
        """Return matching records, newest first."""

    def get(self, *, audit_id: int) -> AuditRecord | None:
        """Return one record by id."""

    def count(self) -> int:
        """Return total persisted audit record count."""
