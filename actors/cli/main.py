"""Custodian operator CLI implemented with Typer."""

from __future__ import annotations

import dataclasses
import json
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import typer
from pydantic import ValidationError

from packages.custodian_core import CustodianRuntime, run_migrations
from packages.custodian_shared.config import CustodianSettings, load_settings
from packages.custodian_shared.envelope import Envelope, EnvelopeKind, EnvelopeMeta, new_meta
from packages.custodian_shared.errors import ErrorDetail
from services.action.retention_service import (
    EligibilityCondition,
    EligibilityPredicate,
    LedgerKind,
    RetentionAction,
    RetentionPolicyInput,
)

SUCCESS_EXIT_CODE = 0
DOMAIN_ERROR_EXIT_CODE = 3
DEPENDENCY_ERROR_EXIT_CODE = 4

_MAX_AGE_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$")
_MAX_AGE_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


@dataclass(frozen=True)
class CliConfig:
    """Global CLI runtime options propagated to service calls."""

    settings: CustodianSettings
    principal: str
    source: str
    as_json: bool
    trace_id: str | None

    def meta(self) -> EnvelopeMeta:
        """Build request metadata for one service call."""
        return new_meta(
            kind=EnvelopeKind.COMMAND,
            source=self.source,
            principal=self.principal,
            trace_id=self.trace_id,
        )


@contextmanager
def _open_runtime(cfg: CliConfig) -> Iterator[CustodianRuntime]:
    """Yield a runtime for one command and dispose it afterwards."""
    runtime = CustodianRuntime.from_settings(cfg.settings)
    try:
        yield runtime
    finally:
        runtime.close()


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return _serialize(value.value)
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Decimal, Path)):
        return str(value)
    if hasattr(value, "model_dump"):
        return _serialize(value.model_dump(mode="python"))
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _serialize(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(key): _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_serialize(item) for item in value]
    return str(value)


def _emit_output(result: Any, as_json: bool) -> None:
    """Render command output in requested format."""
    data = _serialize(result)
    if as_json:
        typer.echo(json.dumps(data, sort_keys=True, separators=(",", ":")))
        return
    rendered = _render_human(data)
    if rendered is not None:
        typer.echo(rendered)
        return
    typer.echo("ok" if data is None or data is True else str(data))


def _emit_errors(errors: list[ErrorDetail], as_json: bool) -> None:
    """Render envelope errors to stderr."""
    if as_json:
        payload = [
            {"code": item.code, "message": item.message, "category": item.category.value}
            for item in errors
        ]
        typer.echo(json.dumps({"errors": payload}, sort_keys=True), err=True)
        return
    for item in errors:
        typer.echo(f"error: [{item.code}] {item.message}", err=True)


def _exit_code(errors: list[ErrorDetail]) -> int:
    """Map the first error category to the process exit code."""
    if errors and errors[0].category.is_caller_fault:
        return DOMAIN_ERROR_EXIT_CODE
    return DEPENDENCY_ERROR_EXIT_CODE


def _render_human(data: Any) -> str | None:
    """Return human-oriented rendering for recognized response shapes."""
    if isinstance(data, list):
        if len(data) == 0:
            return "No results."
        if all(isinstance(item, dict) for item in data):
            if all("audit_id" in item for item in data):
                return "\n".join(_render_audit_record(item) for item in data)
            if all("max_age" in item for item in data):
                return "\n".join(_render_policy(item) for item in data)
            if all("status" in item and "policy_id" in item for item in data):
                return "\n".join(_render_outcome(item) for item in data)
            if all("entry_id" in item for item in data):
                return "\n".join(_render_ledger_entry(item) for item in data)
    if isinstance(data, dict):
        if "status" in data and "policy_id" in data:
            return _render_outcome(data)
        if "already_anonymized" in data:
            return _render_receipt(data)
    if isinstance(data, (dict, list)):
        return json.dumps(data, indent=2, sort_keys=True)
    return None


def _render_audit_record(item: dict[str, Any]) -> str:
    """Render one audit record as a single line plus changed fields."""
    line = (
        f"#{item['audit_id']} {item['recorded_at']} {item['operation']} "
        f"{item['entity_type']}:{item['record_id']} by {item['principal']}"
    )
    diff = item.get("diff") or {}
    changes = [
        f"  {name}: {change.get('old', '<absent>')!r} -> {change.get('new', '<absent>')!r}"
        for name, change in sorted(diff.items())
    ]
    return "\n".join([line, *changes])


def _render_policy(item: dict[str, Any]) -> str:
    """Render one retention policy row."""
    state = "enabled" if item.get("enabled") else "disabled"
    last_run = item.get("last_run_at") or "never"
    return (
        f"{item['entity_type']}: {item['action']} after {item['max_age']}s "
        f"({state}, last run {last_run})"
    )


def _render_outcome(item: dict[str, Any]) -> str:
    """Render one sweep outcome row."""
    line = (
        f"{item['entity_type']}: {item['status']} "
        f"affected={item.get('affected_count', 0)} failed={item.get('failed_count', 0)}"
    )
    detail = str(item.get("detail", "")).strip()
    return f"{line} ({detail})" if detail else line


def _render_ledger_entry(item: dict[str, Any]) -> str:
    """Render one cleanup ledger row."""
    target = item["entity_type"]
    if item.get("record_id"):
        target = f"{target}:{item['record_id']}"
    return (
        f"#{item['entry_id']} {item['recorded_at']} {item['kind']} {item['action']} "
        f"{target} affected={item['affected_count']} failed={item['failed_count']} "
        f"by {item['requested_by']}"
    )


def _render_receipt(item: dict[str, Any]) -> str:
    """Render an anonymization receipt."""
    target = f"{item['entity_type']}:{item['record_id']}"
    if item["already_anonymized"]:
        return f"{target} was already anonymized"
    return f"{target} anonymized fields: {', '.join(item['fields'])}"


def _run_command(
    cfg: CliConfig,
    invoke: Callable[[CustodianRuntime], Envelope[Any]],
) -> None:
    """Execute one service call and map envelopes to process semantics."""
    try:
        with _open_runtime(cfg) as runtime:
            result = invoke(runtime)
    except typer.Exit:
        raise
    except Exception as exc:
        typer.echo(f"error: {type(exc).__name__}: {exc}", err=True)
        raise typer.Exit(code=DEPENDENCY_ERROR_EXIT_CODE) from exc

    if not result.ok:
        _emit_errors(result.errors, cfg.as_json)
        raise typer.Exit(code=_exit_code(result.errors))
    _emit_output(result.value, cfg.as_json)
    raise typer.Exit(code=SUCCESS_EXIT_CODE)


def _require_config(ctx: typer.Context) -> CliConfig:
    """Return required CLI config from Typer context."""
    config = ctx.obj
    if not isinstance(config, CliConfig):
        raise RuntimeError("CLI configuration not initialized")
    return config


def _parse_max_age(value: str) -> timedelta:
    """Parse ``30d``, ``12h``, ``90m``, ``3600s`` or bare seconds."""
    match = _MAX_AGE_RE.match(value)
    if match is None:
        raise typer.BadParameter("expected <number>[s|m|h|d|w], for example 30d")
    amount, unit = match.groups()
    return timedelta(**{_MAX_AGE_UNITS[unit]: int(amount)})


def _parse_condition(value: str) -> EligibilityCondition:
    """Parse ``field:operator[:value]`` into one eligibility condition."""
    field, _, rest = value.partition(":")
    operator, _, operand = rest.partition(":")
    try:
        return EligibilityCondition(
            field=field.strip(),
            operator=operator.strip(),
            value=operand if operand != "" else None,
        )
    except ValidationError as exc:
        raise typer.BadParameter(f"invalid condition {value!r}: {exc.errors()[0]['msg']}")


app = typer.Typer(no_args_is_help=True, help="Custodian command-line interface")
audit_app = typer.Typer(help="Audit trail commands")
retention_app = typer.Typer(help="Retention policy and sweep commands")
compliance_app = typer.Typer(help="Compliance export and anonymize commands")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None,
        envvar="CUSTODIAN_CONFIG_PATH",
        help="YAML settings file (default ~/.config/custodian/custodian.yaml)",
    ),
    principal: str | None = typer.Option(
        None, help="Envelope principal (default operator.principal)"
    ),
    source: str = typer.Option("cli", help="Envelope source"),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
    trace_id: str | None = typer.Option(None, help="Optional trace id"),
) -> None:
    """Store global options for all commands."""
    settings = load_settings(config_path=config)
    ctx.obj = CliConfig(
        settings=settings,
        principal=principal or settings.operator.principal,
        source=source,
        as_json=as_json,
        trace_id=trace_id,
    )


@app.command("migrate")
def migrate_command(
    ctx: typer.Context,
    revision: str = typer.Option("head", help="Target Alembic revision"),
) -> None:
    """Apply Alembic migrations for every registered service."""
    cfg = _require_config(ctx)
    try:
        result = run_migrations(settings=cfg.settings, revision=revision)
    except Exception as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=DEPENDENCY_ERROR_EXIT_CODE) from exc
    _emit_output(list(result.executed_alembic_configs), cfg.as_json)


@audit_app.command("query")
def audit_query_command(
    ctx: typer.Context,
    entity_type: str | None = typer.Option(None, help="Filter by entity type"),
    record_id: str | None = typer.Option(None, help="Filter by record id"),
    recorded_from: datetime | None = typer.Option(
        None, "--from", help="Inclusive lower bound (UTC)"
    ),
    recorded_to: datetime | None = typer.Option(
        None, "--to", help="Inclusive upper bound (UTC)"
    ),
    limit: int | None = typer.Option(None, min=1, help="Maximum records to return"),
) -> None:
    """List audit records, newest first."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda runtime: runtime.audit_trail.query(
            meta=cfg.meta(),
            entity_type=entity_type,
            record_id=record_id,
            recorded_from=recorded_from,
            recorded_to=recorded_to,
            limit=limit,
        ),
    )


@audit_app.command("show")
def audit_show_command(
    ctx: typer.Context,
    audit_id: int = typer.Argument(..., help="Audit record id"),
) -> None:
    """Show one audit record."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda runtime: runtime.audit_trail.get_record(meta=cfg.meta(), audit_id=audit_id),
    )


@retention_app.command("list")
def retention_list_command(ctx: typer.Context) -> None:
    """List retention policies."""
    cfg = _require_config(ctx)
    _run_command(cfg, lambda runtime: runtime.retention.list_policies(meta=cfg.meta()))


@retention_app.command("show")
def retention_show_command(
    ctx: typer.Context,
    entity_type: str = typer.Argument(..., help="Monitored entity type"),
) -> None:
    """Show the policy for one entity type."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda runtime: runtime.retention.get_policy(meta=cfg.meta(), entity_type=entity_type),
    )


@retention_app.command("upsert")
def retention_upsert_command(
    ctx: typer.Context,
    entity_type: str = typer.Argument(..., help="Monitored entity type"),
    max_age: str = typer.Option(..., help="Retention age, for example 30d or 12h"),
    action: RetentionAction = typer.Option(
        ..., help="Action applied to eligible records", case_sensitive=False
    ),
    timestamp_field: str | None = typer.Option(
        None, help="Override the entity's timestamp column"
    ),
    condition: list[str] = typer.Option(
        [], "--condition", help="Extra rule as field:operator[:value]; repeatable"
    ),
    disabled: bool = typer.Option(False, "--disabled", help="Store the policy disabled"),
    policy_id: int | None = typer.Option(None, min=1, help="Update this policy id"),
) -> None:
    """Create or replace the policy for one entity type."""
    cfg = _require_config(ctx)
    predicate = EligibilityPredicate(
        timestamp_field=timestamp_field,
        conditions=tuple(_parse_condition(item) for item in condition),
    )
    try:
        policy = RetentionPolicyInput(
            entity_type=entity_type,
            max_age=_parse_max_age(max_age),
            action=action,
            predicate=predicate,
            enabled=not disabled,
            policy_id=policy_id,
        )
    except ValidationError as exc:
        typer.echo(f"error: {exc.errors()[0]['msg']}", err=True)
        raise typer.Exit(code=DOMAIN_ERROR_EXIT_CODE) from exc
    _run_command(
        cfg,
        lambda runtime: runtime.retention.upsert_policy(meta=cfg.meta(), policy=policy),
    )


@retention_app.command("delete")
def retention_delete_command(
    ctx: typer.Context,
    entity_type: str = typer.Argument(..., help="Monitored entity type"),
) -> None:
    """Delete the policy for one entity type."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda runtime: runtime.retention.delete_policy(
            meta=cfg.meta(), entity_type=entity_type
        ),
    )


@retention_app.command("sweep")
def retention_sweep_command(
    ctx: typer.Context,
    entity_type: str | None = typer.Argument(
        None, help="Sweep only this entity type; all policies when omitted"
    ),
) -> None:
    """Run retention sweeps now."""
    cfg = _require_config(ctx)
    if entity_type is None:
        _run_command(cfg, lambda runtime: runtime.retention.run_sweeps(meta=cfg.meta()))
        return
    _run_command(
        cfg,
        lambda runtime: runtime.retention.sweep_policy(
            meta=cfg.meta(), entity_type=entity_type
        ),
    )


@retention_app.command("ledger")
def retention_ledger_command(
    ctx: typer.Context,
    entity_type: str | None = typer.Option(None, help="Filter by entity type"),
    kind: LedgerKind | None = typer.Option(None, help="Filter by entry kind"),
    limit: int | None = typer.Option(None, min=1, help="Maximum entries to return"),
) -> None:
    """List cleanup ledger entries, newest first."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda runtime: runtime.retention.list_ledger(
            meta=cfg.meta(), entity_type=entity_type, kind=kind, limit=limit
        ),
    )


@compliance_app.command("export")
def compliance_export_command(
    ctx: typer.Context,
    entity_type: str = typer.Argument(..., help="Monitored entity type"),
    record_id: str = typer.Argument(..., help="Record id"),
) -> None:
    """Export one record with related rows and audit history."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda runtime: runtime.compliance.export_record(
            meta=cfg.meta(), entity_type=entity_type, record_id=record_id
        ),
    )


@compliance_app.command("anonymize")
def compliance_anonymize_command(
    ctx: typer.Context,
    entity_type: str = typer.Argument(..., help="Monitored entity type"),
    record_id: str = typer.Argument(..., help="Record id"),
) -> None:
    """Anonymize one record's identifying fields."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda runtime: runtime.compliance.anonymize_record(
            meta=cfg.meta(),
            entity_type=entity_type,
            record_id=record_id,
            correlation={"client_label": "cli"},
        ),
    )


app.add_typer(audit_app, name="audit")
app.add_typer(retention_app, name="retention")
app.add_typer(compliance_app, name="compliance")


if __name__ == "__main__":
    app()
