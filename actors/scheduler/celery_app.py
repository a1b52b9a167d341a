"""Celery entry point for scheduled retention sweeps."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any

from celery import Celery

from packages.custodian_core import CustodianRuntime
from packages.custodian_shared.config import load_settings
from packages.custodian_shared.envelope import EnvelopeKind, new_meta
from packages.custodian_shared.logging import configure_logging, get_logger
from services.action.retention_service import resolve_retention_settings

_LOGGER = get_logger(__name__)

RUN_SWEEPS_TASK = "retention.run_sweeps"


def _env(var: str, default: str) -> str:
    return os.environ.get(var, default)


celery_app = Celery("custodian.scheduler")
celery_app.conf.broker_url = _env("CELERY_BROKER_URL", "redis://redis:6379/1")
celery_app.conf.result_backend = _env("CELERY_RESULT_BACKEND", "redis://redis:6379/2")
celery_app.conf.task_default_queue = _env("CELERY_QUEUE_NAME", "retention")
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.enable_utc = True
celery_app.conf.timezone = "UTC"

_SWEEP_INTERVAL_SECONDS = resolve_retention_settings(load_settings()).sweep_interval_seconds
celery_app.conf.beat_schedule = {
    RUN_SWEEPS_TASK: {
        "task": RUN_SWEEPS_TASK,
        "schedule": _SWEEP_INTERVAL_SECONDS,
    }
}


@lru_cache(maxsize=1)
def _runtime() -> CustodianRuntime:
    """Build the worker's runtime once per process."""
    settings = load_settings()
    configure_logging(
        level=settings.logging.level,
        json_output=settings.logging.json_output,
        service=f"{settings.logging.service}-scheduler",
        environment=settings.logging.environment,
    )
    return CustodianRuntime.from_settings(settings)


def run_retention_sweeps(runtime: CustodianRuntime) -> dict[str, Any]:
    """Sweep every policy once and return a JSON-ready summary.

    Raises ``RuntimeError`` when the sweep pass itself fails, so Celery
    records the task as failed; individual policy failures are reported
    in the summary.
    """
    principal = resolve_retention_settings(runtime.settings).sweep_principal
    result = runtime.retention.run_sweeps(
        meta=new_meta(kind=EnvelopeKind.COMMAND, source="scheduler", principal=principal)
    )
    if not result.ok:
        messages = "; ".join(error.message for error in result.errors)
        raise RuntimeError(f"retention sweep pass failed: {messages}")

    outcomes = result.value
    summary = {
        "policies": len(outcomes),
        "affected": sum(item.affected_count for item in outcomes),
        "failed": sum(item.failed_count for item in outcomes),
        "outcomes": [item.model_dump(mode="json") for item in outcomes],
    }
    _LOGGER.info(
        "Retention sweep pass finished: policies=%s affected=%s failed=%s",
        summary["policies"],
        summary["affected"],
        summary["failed"],
    )
    return summary


@celery_app.task(name=RUN_SWEEPS_TASK)
def run_sweeps() -> dict[str, Any]:
    """Celery task wrapper for ``run_retention_sweeps``."""
    return run_retention_sweeps(_runtime())
