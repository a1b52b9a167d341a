"""Concrete Retention Service implementation."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Callable

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
    conflict_error,
    dependency_error,
    not_found_error,
    validation_error,
)
from packages.custodian_shared.logging import get_logger, public_api_instrumented
from resources.adapters.record_store import (
    CatalogError,
    SqlRecordStore,
    UnknownEntityType,
    normalize_entity_type,
)
from resources.adapters.record_store.snapshots import coerce_value
from resources.substrates.database import SharedDatabaseSubstrate, normalize_database_error
from services.action.retention_service.component import SERVICE_COMPONENT_ID
from services.action.retention_service.config import (
    RetentionSettings,
    resolve_retention_settings,
)
from services.action.retention_service.data import (
    SqlCleanupLedgerRepository,
    SqlRetentionPolicyRepository,
)
from services.action.retention_service.domain import (
    CleanupLedgerEntry,
    ConditionOperator,
    HealthStatus,
    LedgerKind,
    PolicyConflict,
    PolicyNotFound,
    RetentionAction,
    RetentionPolicy,
    RetentionPolicyInput,
    SweepOutcome,
    SweepStatus,
)
from services.action.retention_service.interfaces import (
    CleanupLedgerRepository,
    RetentionPolicyRepository,
)
from services.action.retention_service.service import RetentionService
from services.action.retention_service.sweeper import RetentionSweeper

_LOGGER = get_logger(__name__)

UNKNOWN_ENTITY_TYPE = "UNKNOWN_ENTITY_TYPE"
INVALID_POLICY = "INVALID_POLICY"
POLICY_CONFLICT = "POLICY_CONFLICT"

_UNARY_OPERATORS = frozenset({ConditionOperator.IS_NULL, ConditionOperator.NOT_NULL})


class DefaultRetentionService(RetentionService):
    """Default Retention Service backed by SQL repositories and the sweeper."""

    def __init__(
        self,
        *,
        settings: RetentionSettings,
        substrate: SharedDatabaseSubstrate,
        store: SqlRecordStore,
        policies: RetentionPolicyRepository | None = None,
        ledger: CleanupLedgerRepository | None = None,
        sweeper: RetentionSweeper | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._substrate = substrate
        self._store = store
        self._clock = clock or (lambda: datetime.now(UTC))
        self._policies = (
            SqlRetentionPolicyRepository(substrate.session_factory)
            if policies is None
            else policies
        )
        self._ledger = (
            SqlCleanupLedgerRepository(substrate.session_factory) if ledger is None else ledger
        )
        self._sweeper = (
            RetentionSweeper(
                store=store,
                policies=self._policies,
                ledger=self._ledger,
                session_factory=substrate.session_factory,
                settings=settings,
                clock=self._clock,
            )
            if sweeper is None
            else sweeper
        )

    @classmethod
    def from_settings(
        cls,
        *,
        settings: CustodianSettings,
        substrate: SharedDatabaseSubstrate,
        store: SqlRecordStore,
    ) -> "DefaultRetentionService":
        """Build Retention Service from typed settings and shared resources."""
        return cls(
            settings=resolve_retention_settings(settings),
            substrate=substrate,
            store=store,
        )

    @property
    def ledger(self) -> CleanupLedgerRepository:
        """Return the cleanup ledger shared with compliance operations."""
        return self._ledger

    @public_api_instrumented(logger=_LOGGER, component_id=str(SERVICE_COMPONENT_ID))
    def list_policies(self, *, meta: EnvelopeMeta) -> Envelope[tuple[RetentionPolicy, ...]]:
        """Return every registered policy ordered by entity type."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        try:
            policies = self._policies.list()
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(meta=meta, operation="list_policies", exc=exc)
        return success(meta=meta, payload=policies)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("entity_type",),
    )
    def get_policy(self, *, meta: EnvelopeMeta, entity_type: str) -> Envelope[RetentionPolicy]:
        """Return the policy for one entity type."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        normalized, error = _normalize(entity_type)
        if error is not None:
            return failure(meta=meta, errors=[error])
        try:
            policy = self._policies.get(entity_type=normalized)
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(meta=meta, operation="get_policy", exc=exc)
        if policy is None:
            return failure(meta=meta, errors=[_policy_not_found(normalized)])
        return success(meta=meta, payload=policy)

    @public_api_instrumented(logger=_LOGGER, component_id=str(SERVICE_COMPONENT_ID))
    def upsert_policy(
        self, *, meta: EnvelopeMeta, policy: RetentionPolicyInput
    ) -> Envelope[RetentionPolicy]:
        """Validate ``policy`` against the entity catalog and store it."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        error = self._check_policy(policy)
        if error is not None:
            return failure(meta=meta, errors=[error])
        try:
            stored = self._policies.upsert(policy=policy, now=self._clock())
        except PolicyConflict as exc:
            return failure(
                meta=meta,
                errors=[
                    conflict_error(
                        str(exc),
                        code=POLICY_CONFLICT,
                        metadata={"entity_type": policy.entity_type},
                    )
                ],
            )
        except PolicyNotFound:
            return failure(
                meta=meta,
                errors=[
                    not_found_error(
                        "retention policy not found",
                        code=codes.RESOURCE_NOT_FOUND,
                        metadata={"policy_id": str(policy.policy_id)},
                    )
                ],
            )
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(meta=meta, operation="upsert_policy", exc=exc)
        _LOGGER.info(
            "Retention policy stored: policy_id=%s entity_type=%s action=%s max_age_seconds=%s",
            stored.policy_id,
            stored.entity_type,
            stored.action.value,
            int(stored.max_age.total_seconds()),
        )
        return success(meta=meta, payload=stored)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("entity_type",),
    )
    def delete_policy(self, *, meta: EnvelopeMeta, entity_type: str) -> Envelope[bool]:
        """Delete the policy for one entity type."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        normalized, error = _normalize(entity_type)
        if error is not None:
            return failure(meta=meta, errors=[error])
        try:
            deleted = self._policies.delete(entity_type=normalized)
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(meta=meta, operation="delete_policy", exc=exc)
        if not deleted:
            return failure(meta=meta, errors=[_policy_not_found(normalized)])
        return success(meta=meta, payload=True)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("entity_type",),
    )
    def sweep_policy(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str,
        now: datetime | None = None,
    ) -> Envelope[SweepOutcome]:
        """Run one sweep of the policy for ``entity_type``."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        normalized, error = _normalize(entity_type)
        if error is not None:
            return failure(meta=meta, errors=[error])
        try:
            policy = self._policies.get(entity_type=normalized)
            if policy is None:
                return failure(meta=meta, errors=[_policy_not_found(normalized)])
            outcome = self._sweeper.sweep(policy, now=self._resolve_now(now))
        except UnknownEntityType as exc:
            return failure(
                meta=meta,
                errors=[validation_error(str(exc.args[0]), code=UNKNOWN_ENTITY_TYPE)],
            )
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(meta=meta, operation="sweep_policy", exc=exc)
        return success(meta=meta, payload=outcome)

    @public_api_instrumented(logger=_LOGGER, component_id=str(SERVICE_COMPONENT_ID))
    def run_sweeps(
        self, *, meta: EnvelopeMeta, now: datetime | None = None
    ) -> Envelope[tuple[SweepOutcome, ...]]:
        """Sweep every registered policy once.

        Policies run in parallel on up to ``sweep_workers`` threads. A policy
        whose sweep raises is reported with status ``failed``; the others
        still run.
        """
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        try:
            policies = self._policies.list()
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(meta=meta, operation="run_sweeps", exc=exc)

        resolved_now = self._resolve_now(now)
        workers = min(self._settings.sweep_workers, len(policies))
        if workers <= 1:
            outcomes = [self._sweep_guarded(policy, resolved_now) for policy in policies]
        else:
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="retention-sweep"
            ) as executor:
                outcomes = list(
                    executor.map(
                        lambda policy: self._sweep_guarded(policy, resolved_now),
                        policies,
                    )
                )
        return success(meta=meta, payload=tuple(outcomes))

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("entity_type",),
    )
    def list_ledger(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: str | None = None,
        kind: LedgerKind | None = None,
        limit: int | None = None,
    ) -> Envelope[tuple[CleanupLedgerEntry, ...]]:
        """Return cleanup ledger entries, newest first."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        if limit is not None and limit < 1:
            return failure(
                meta=meta,
                errors=[validation_error("limit must be >= 1", code=codes.INVALID_ARGUMENT)],
            )
        normalized: str | None = None
        if entity_type is not None and entity_type.strip():
            normalized = normalize_entity_type(entity_type)
        resolved_limit = min(
            limit or self._settings.default_ledger_limit,
            self._settings.max_ledger_limit,
        )
        try:
            entries = self._ledger.list(entity_type=normalized, kind=kind, limit=resolved_limit)
        except Exception as exc:  # noqa: BLE001
            return self._handle_exception(meta=meta, operation="list_ledger", exc=exc)
        return success(meta=meta, payload=entries)

    @public_api_instrumented(logger=_LOGGER, component_id=str(SERVICE_COMPONENT_ID))
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return Retention Service and database substrate readiness."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        substrate_ready = self._substrate.is_healthy()
        policy_count = 0
        detail = "database ping returned false"
        if substrate_ready:
            try:
                policy_count = len(self._policies.list())
                detail = "ok"
            except SQLAlchemyError as exc:
                substrate_ready = False
                detail = f"policy registry unavailable: {type(exc).__name__}"
        return success(
            meta=meta,
            payload=HealthStatus(
                service_ready=True,
                substrate_ready=substrate_ready,
                policy_count=policy_count,
                detail=detail,
            ),
        )

    def _sweep_guarded(self, policy: RetentionPolicy, now: datetime) -> SweepOutcome:
        try:
            return self._sweeper.sweep(policy, now=now)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error(
                "Sweep failed: policy_id=%s entity_type=%s exception_type=%s",
                policy.policy_id,
                policy.entity_type,
                type(exc).__name__,
                exc_info=exc,
            )
            return SweepOutcome(
                policy_id=policy.policy_id,
                entity_type=policy.entity_type,
                action=policy.action,
                status=SweepStatus.FAILED,
                detail=f"{type(exc).__name__}: {exc}",
            )

    def _check_policy(self, policy: RetentionPolicyInput) -> ErrorDetail | None:
        """Validate a policy against the monitored table it targets."""
        try:
            descriptor = self._store.catalog.get(policy.entity_type)
        except UnknownEntityType:
            return validation_error(
                f"entity type not monitored: {policy.entity_type}",
                code=UNKNOWN_ENTITY_TYPE,
                metadata={"entity_type": policy.entity_type},
            )
        if policy.action is RetentionAction.ANONYMIZE and not descriptor.supports_anonymize:
            return validation_error(
                f"{policy.entity_type} declares no identifying fields to anonymize",
                code=INVALID_POLICY,
            )
        unknown = sorted(
            name for name in policy.predicate.fields() if not descriptor.has_column(name)
        )
        if unknown:
            return validation_error(
                f"{policy.entity_type}: predicate references unknown fields {unknown}",
                code=INVALID_POLICY,
            )
        for condition in policy.predicate.conditions:
            if condition.operator in _UNARY_OPERATORS:
                continue
            try:
                coerce_value(descriptor.column(condition.field), condition.value)
            except (CatalogError, ValueError) as exc:
                return validation_error(str(exc), code=INVALID_POLICY)
        return None

    def _resolve_now(self, now: datetime | None) -> datetime:
        if now is None:
            return self._clock()
        if now.tzinfo is None:
            return now.replace(tzinfo=UTC)
        return now.astimezone(UTC)

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
        """Normalize repository and sweeper exceptions to envelope errors."""
        if isinstance(exc, SQLAlchemyError):
            return failure(meta=meta, errors=[normalize_database_error(exc)])
        _LOGGER.warning(
            "Retention Service operation failed: operation=%s exception_type=%s",
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


def _normalize(entity_type: str) -> tuple[str, ErrorDetail | None]:
    try:
        return normalize_entity_type(entity_type), None
    except ValueError as exc:
        return "", validation_error(str(exc), code=codes.MISSING_REQUIRED_FIELD)


def _policy_not_found(entity_type: str) -> ErrorDetail:
    return not_found_error(
        "retention policy not found",
        code=codes.RESOURCE_NOT_FOUND,
        metadata={"entity_type": entity_type},
    )
