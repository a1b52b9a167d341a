"""Concrete Audit Trail Service implementation."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
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
    codes,
    dependency_error,
    not_found_error,
    validation_error,
)
from packages.custodian_shared.logging import get_logger, public_api_instrumented
from resources.substrates.database import SharedDatabaseSubstrate, normalize_database_error
from services.state.audit_trail.capture import CaptureHook, RecordKeyResolver
from services.state.audit_trail.component import SERVICE_COMPONENT_ID
from services.state.audit_trail.config import (
    AuditTrailSettings,
    resolve_audit_trail_settings,
)
from services.state.audit_trail.data import SqlAuditRecordRepository
from services.state.audit_trail.domain import (
    AuditQuery,
    AuditRecord,
    CaptureFailure,
    HealthStatus,
    InvalidSnapshot,
    MutationEvent,
)
from services.state.audit_trail.interfaces import AuditRecordRepository
from services.state.audit_trail.service import AuditTrailService

_LOGGER = get_logger(__name__)

CAPTURE_FAILED = "CAPTURE_FAILED"
INVALID_SNAPSHOT = "INVALID_SNAPSHOT"


class _QueryRequest(BaseModel):
    """Validate one audit query request payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: str | None = None
    record_id: str | None = None
    recorded_from: datetime | None = None
    recorded_to: datetime | None = None
    limit: int | None = Field(default=None, ge=1)

    @field_validator("entity_type")
    @classmethod
    def _normalize_entity_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        return normalized or None

    @field_validator("record_id")
    @classmethod
    def _normalize_record_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("recorded_from", "recorded_to")
    @classmethod
    def _normalize_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @model_validator(mode="after")
    def _check_range(self) -> "_QueryRequest":
        if (
            self.recorded_from is not None
            and self.recorded_to is not None
            and self.recorded_from > self.recorded_to
        ):
            raise ValueError("recorded_from must not be after recorded_to")
        return self


class DefaultAuditTrailService(AuditTrailService):
    """Default Audit Trail implementation backed by an audit repository."""

    def __init__(
        self,
        *,
        settings: AuditTrailSettings,
        substrate: SharedDatabaseSubstrate,
        repository: AuditRecordRepository | None = None,
        capture_hook: CaptureHook | None = None,
    ) -> None:
        self._settings = settings
        self._substrate = substrate
        self._repository = (
            SqlAuditRecordRepository(substrate.session_factory)
            if repository is None
            else repository
        )
        self._hook = (
            CaptureHook(
                repository=self._repository,
                key_resolver=RecordKeyResolver(
                    default_field=settings.default_key_field,
                    overrides=settings.key_fields,
                ),
                redaction_marker=settings.redaction_marker,
            )
            if capture_hook is None
            else capture_hook
        )

    @classmethod
    def from_settings(
        cls,
        *,
        settings: CustodianSettings,
        substrate: SharedDatabaseSubstrate,
    ) -> "DefaultAuditTrailService":
        """Build Audit Trail from typed settings and the shared substrate."""
        return cls(settings=resolve_audit_trail_settings(settings), substrate=substrate)

    @property
    def capture_hook(self) -> CaptureHook:
        """Return the hook used for in-transaction capture by mutation paths."""
        return self._hook

    @public_api_instrumented(logger=_LOGGER, component_id=str(SERVICE_COMPONENT_ID))
    def record_mutation(
        self,
        *,
        meta: EnvelopeMeta,
        event: MutationEvent,
    ) -> Envelope[AuditRecord | None]:
        """Capture one mutation in its own transaction; ``None`` for no-op updates."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            record = self._hook.capture(event)
        except InvalidSnapshot as exc:
            return failure(
                meta=meta,
                errors=[validation_error(str(exc), code=INVALID_SNAPSHOT)],
            )
        except CaptureFailure as exc:
            cause = exc.__cause__
            return failure(
                meta=meta,
                errors=[
                    dependency_error(
                        str(exc),
                        code=CAPTURE_FAILED,
                        metadata={
                            "exception_type": type(cause).__name__
                            if cause is not None
                            else type(exc).__name__
                        },
                    )
                ],
            )
        return success(meta=meta, payload=record)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("entity_type", "record_id"),
    )
    def query(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str | None = None,
        record_id: str | None = None,
        recorded_from: datetime | None = None,
        recorded_to: datetime | None = None,
        limit: int | None = None,
    ) -> Envelope[tuple[AuditRecord, ...]]:
        """Return matching audit records, newest first, capped at the configured maximum."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        try:
            request = _QueryRequest(
                entity_type=entity_type,
                record_id=record_id,
                recorded_from=recorded_from,
                recorded_to=recorded_to,
                limit=limit,
            )
        except ValidationError as exc:
            return failure(meta=meta, errors=[_validation_failure(exc)])

        resolved_limit = min(
            request.limit or self._settings.default_query_limit,
            self._settings.max_query_limit,
        )
        query = AuditQuery(
            entity_type=request.entity_type,
            record_id=request.record_id,
            recorded_from=request.recorded_from,
            recorded_to=request.recorded_to,
            limit=resolved_limit,
        )
        try:
            records = self._repository.query(query=query)
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(meta=meta, operation="query", exc=exc)
        return success(meta=meta, payload=records)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("audit_id",),
    )
    def get_record(self, *, meta: EnvelopeMeta, audit_id: int) -> Envelope[AuditRecord]:
        """Read one audit record by id."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        if audit_id < 1:
            return failure(
                meta=meta,
                errors=[validation_error("audit_id must be >= 1", code=codes.INVALID_ARGUMENT)],
            )
        try:
            record = self._repository.get(audit_id=audit_id)
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(meta=meta, operation="get_record", exc=exc)
        if record is None:
            return failure(
                meta=meta,
                errors=[
                    not_found_error(
                        "audit record not found",
                        code=codes.RESOURCE_NOT_FOUND,
                        metadata={"audit_id": str(audit_id)},
                    )
                ],
            )
        return success(meta=meta, payload=record)

    @public_api_instrumented(logger=_LOGGER, component_id=str(SERVICE_COMPONENT_ID))
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return Audit Trail and database substrate readiness."""
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
    ) -> Envelope[object]:
        """Normalize repository exceptions to envelope errors."""
        if isinstance(exc, SQLAlchemyError):
            return failure(meta=meta, errors=[normalize_database_error(exc)])
        _LOGGER.warning(
            "Audit Trail operation failed: operation=%s exception_type=%s",
            operation,
            type(exc).__name__,
            exc_info=exc,
        )
        return failure(
            meta=meta,
            errors=[
                dependency_error(
                    f"{operation} failed",
                    code=codes.DEPENDENCY_FAILURE,
                    metadata={"exception_type": type(exc).__name__},
                )
            ],
        )


def _validation_failure(exc: ValidationError) -> ErrorDetail:
    issue = exc.errors()[0]
    field = ".".join(str(item) for item in issue.get("loc", ()))
    message = f"{field or 'payload'}: {issue.get('msg', 'invalid value')}"
    return validation_error(message, code=codes.INVALID_ARGUMENT)
