"""Concrete Compliance Service implementation."""

from __future__ import annotations

from datetime import UTC, datetime
from threading import Event
from typing import Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError

from packages.custodian_shared.config import CustodianSettings
from packages.custodian_shared.envelope import (
    Envelope,
    EnvelopeMeta,
    failure,
    success,
    validate_meta,
)
from packages.custodian_shared.errors import (
    ErrorDetail,
    cancelled_error,
    codes,
    dependency_error,
    not_found_error,
    validation_error,
)
from packages.custodian_shared.logging import get_logger, public_api_instrumented
from resources.adapters.record_store import (
    CatalogError,
    RecordNotFound,
    SqlRecordStore,
    UnknownEntityType,
    normalize_entity_type,
)
from resources.substrates.database import (
    SharedDatabaseSubstrate,
    normalize_database_error,
    transactional_session,
)
from services.action.compliance_service.component import SERVICE_COMPONENT_ID
from services.action.compliance_service.config import (
    ComplianceSettings,
    resolve_compliance_settings,
)
from services.action.compliance_service.domain import (
    AnonymizationReceipt,
    ComplianceExport,
    HealthStatus,
)
from services.action.compliance_service.service import ComplianceService
from services.action.retention_service.data import SqlCleanupLedgerRepository
from services.action.retention_service.domain import CleanupLedgerDraft, LedgerKind
from services.action.retention_service.interfaces import CleanupLedgerRepository
from services.state.audit_trail.data import SqlAuditRecordRepository
from services.state.audit_trail.domain import AuditQuery, CaptureFailure, InvalidSnapshot
from services.state.audit_trail.interfaces import AuditRecordRepository

_LOGGER = get_logger(__name__)

UNKNOWN_ENTITY_TYPE = "UNKNOWN_ENTITY_TYPE"


class DefaultComplianceService(ComplianceService):
    """Default Compliance Service over the record store, audit trail and ledger."""

    def __init__(
        self,
        *,
        settings: ComplianceSettings,
        substrate: SharedDatabaseSubstrate,
        store: SqlRecordStore,
        audit: AuditRecordRepository | None = None,
        ledger: CleanupLedgerRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._substrate = substrate
        self._store = store
        self._audit = (
            SqlAuditRecordRepository(substrate.session_factory) if audit is None else audit
        )
        self._ledger = (
            SqlCleanupLedgerRepository(substrate.session_factory) if ledger is None else ledger
        )
        self._clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_settings(
        cls,
        *,
        settings: CustodianSettings,
        substrate: SharedDatabaseSubstrate,
        store: SqlRecordStore,
    ) -> "DefaultComplianceService":
        """Build Compliance Service from typed settings and shared resources."""
        return cls(
            settings=resolve_compliance_settings(settings),
            substrate=substrate,
            store=store,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("entity_type", "record_id"),
    )
    def export_record(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str,
        record_id: str,
        cancellation: Event | None = None,
    ) -> Envelope[ComplianceExport]:
        """Export one record with its related rows and audit history.

        Cancellation is checked between relations. A cancelled export returns
        a ``CANCELLED`` error carrying the partial document and writes no
        ledger entry.
        """
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        normalized, error = _normalize(entity_type)
        if error is not None:
            return failure(meta=meta, errors=[error])
        if _is_cancelled(cancellation):
            return failure(meta=meta, errors=[_cancelled("export_record")])

        try:
            descriptor = self._store.catalog.get(normalized)
            with self._substrate.session_factory() as session:
                snapshot = self._store.fetch(
                    session, entity_type=normalized, record_id=record_id
                )
                if snapshot is None:
                    return failure(meta=meta, errors=[_record_not_found(normalized, record_id)])
                related = self._store.related(
                    session,
                    entity_type=normalized,
                    record_id=record_id,
                    cancelled=None if cancellation is None else cancellation.is_set,
                )
            canonical_id = str(snapshot[descriptor.key_column])
            history = self._audit.query(
                query=AuditQuery(
                    entity_type=normalized,
                    record_id=canonical_id,
                    limit=self._settings.history_limit,
                )
            )
            exported_at = self._clock()
            document = ComplianceExport(
                entity_type=normalized,
                record_id=canonical_id,
                snapshot=snapshot,
                related=related.records,
                history=history,
                history_truncated=len(history) >= self._settings.history_limit,
                complete=related.complete,
                exported_at=exported_at,
            )
            if not related.complete:
                return failure(
                    meta=meta,
                    errors=[_cancelled("export_record")],
                    payload=document,
                )
            entry = self._ledger.append(
                draft=CleanupLedgerDraft(
                    kind=LedgerKind.COMPLIANCE_EXPORT,
                    entity_type=normalized,
                    action="export",
                    record_id=canonical_id,
                    requested_by=meta.principal,
                    recorded_at=exported_at,
                )
            )
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(
                meta=meta, operation="export_record", exc=exc, record_id=record_id
            )
        return success(
            meta=meta,
            payload=document.model_copy(update={"ledger_entry_id": entry.entry_id}),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("entity_type", "record_id"),
    )
    def anonymize_record(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str,
        record_id: str,
        correlation: Mapping[str, str] | None = None,
        cancellation: Event | None = None,
    ) -> Envelope[AnonymizationReceipt]:
        """Anonymize one record's identifying fields atomically.

        The sentinel update, its redacted audit record and the ledger entry
        commit together. Cancellation is honored only before the
        transaction starts.
        """
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        normalized, error = _normalize(entity_type)
        if error is not None:
            return failure(meta=meta, errors=[error])
        if _is_cancelled(cancellation):
            return failure(meta=meta, errors=[_cancelled("anonymize_record")])

        now = self._clock()
        merged = {"client_label": self._settings.client_label, **dict(correlation or {})}
        try:
            descriptor = self._store.catalog.get(normalized)
            with transactional_session(self._substrate.session_factory) as session:
                result = self._store.anonymize(
                    session,
                    entity_type=normalized,
                    record_id=record_id,
                    principal=meta.principal,
                    now=now,
                    correlation=merged,
                )
                canonical_id = str(result.before[descriptor.key_column])
                entry = self._ledger.append(
                    draft=CleanupLedgerDraft(
                        kind=LedgerKind.COMPLIANCE_ANONYMIZE,
                        entity_type=normalized,
                        action="anonymize",
                        record_id=canonical_id,
                        affected_count=1 if result.changed else 0,
                        requested_by=meta.principal,
                        recorded_at=now,
                    ),
                    session=session,
                )
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(
                meta=meta, operation="anonymize_record", exc=exc, record_id=record_id
            )

        _LOGGER.info(
            "Compliance anonymize applied: entity_type=%s record_id=%s already_anonymized=%s",
            normalized,
            canonical_id,
            not result.changed,
        )
        return success(
            meta=meta,
            payload=AnonymizationReceipt(
                entity_type=normalized,
                record_id=canonical_id,
                already_anonymized=not result.changed,
                fields=result.fields,
                anonymized_at=now,
                ledger_entry_id=entry.entry_id,
            ),
        )

    @public_api_instrumented(logger=_LOGGER, component_id=str(SERVICE_COMPONENT_ID))
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return Compliance Service and database substrate readiness."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        substrate_ready = self._substrate.is_healthy()
        return success(
            meta=meta,
            payload=HealthStatus(
                service_ready=True,
                substrate_ready=substrate_ready,
                detail="ok" if substrate_ready else "database ping returned false",
            ),
        )

    def _validate_meta(self, meta: EnvelopeMeta) -> list[ErrorDetail]:
        try:
            validate_meta(meta)
        except ValueError as exc:
            return [validation_error(str(exc), code=codes.INVALID_ARGUMENT)]
        return []

    def _handle_exception(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        exc: Exception,
        record_id: str,
    ) -> Envelope[object]:
        """Map store, capture and database exceptions to distinct error categories."""
        if isinstance(exc, UnknownEntityType):
            return failure(
                meta=meta,
                errors=[
                    validation_error(
                        f"entity type not monitored: {exc.entity_type}",
                        code=UNKNOWN_ENTITY_TYPE,
                        metadata={"entity_type": exc.entity_type},
                    )
                ],
            )
        if isinstance(exc, RecordNotFound):
            return failure(meta=meta, errors=[_record_not_found(exc.entity_type, record_id)])
        if isinstance(exc, (InvalidSnapshot, CatalogError, ValueError)):
            return failure(
                meta=meta,
                errors=[validation_error(str(exc), code=codes.INVALID_ARGUMENT)],
            )
        if isinstance(exc, SQLAlchemyError):
            return failure(meta=meta, errors=[normalize_database_error(exc)])
        _LOGGER.warning(
            "Compliance Service operation failed: operation=%s exception_type=%s",
            operation,
            type(exc).__name__,
            exc_info=exc,
        )
        cause = exc.__cause__ if isinstance(exc, CaptureFailure) else None
        return failure(
            meta=meta,
            errors=[
                dependency_error(
                    f"{operation} failed",
                    code=codes.DEPENDENCY_FAILURE,
                    metadata={"exception_type": type(cause or exc).__name__},
                )
            ],
        )


def _normalize(entity_type: str) -> tuple[str, ErrorDetail | None]:
    try:
        return normalize_entity_type(entity_type), None
    except ValueError as exc:
        return "", validation_error(str(exc), code=codes.MISSING_REQUIRED_FIELD)


def _is_cancelled(cancellation: Event | None) -> bool:
    return cancellation is not None and cancellation.is_set()


def _cancelled(operation: str) -> ErrorDetail:
    return cancelled_error(f"{operation} cancelled by caller")


def _record_not_found(entity_type: str, record_id: str) -> ErrorDetail:
    return not_found_error(
        "record not found",
        code=codes.RESOURCE_NOT_FOUND,
        metadata={"entity_type": entity_type, "record_id": str(record_id)},
    )
