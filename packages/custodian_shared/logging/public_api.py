"""Instrumentation for public service methods.

``public_api_instrumented`` wraps a keyword-only service method that takes
``meta`` and returns an ``Envelope``. Each call produces one invocation event
and one completion event, fanned out to a list of concerns; logging is the
only concern Custodian ships.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from time import perf_counter
from typing import Any, Callable, Mapping, Protocol, Sequence

from . import fields
from .context import log_context


@dataclass(frozen=True)
class InvocationContext:
    """Identity of one public API call."""

    component_id: str
    api_name: str
    trace_id: str | None
    envelope_id: str | None
    principal: str | None
    references: Mapping[str, str]

    def log_fields(self) -> dict[str, object]:
        return {
            fields.COMPONENT_ID: self.component_id,
            fields.API_NAME: self.api_name,
            fields.TRACE_ID: self.trace_id,
            fields.ENVELOPE_ID: self.envelope_id,
            fields.PRINCIPAL: self.principal,
            **self.references,
        }


@dataclass(frozen=True)
class CompletionContext:
    """Outcome of one public API call."""

    invocation: InvocationContext
    success: bool
    duration_ms: float
    errors: list[str]
    error_categories: list[str]


class PublicApiInstrumentationConcern(Protocol):
    def on_invocation(self, context: InvocationContext) -> None: ...

    def on_completion(self, context: CompletionContext) -> None: ...


class PublicApiLoggingConcern:
    """Log one line when a call starts and one when it finishes."""

    def __init__(self, *, logger: Any) -> None:
        self._logger = logger

    def on_invocation(self, context: InvocationContext) -> None:
        with log_context(
            {fields.EVENT: fields.PUBLIC_API_INVOCATION_EVENT, **context.log_fields()}
        ):
            self._logger.info("Public API invocation")

    def on_completion(self, context: CompletionContext) -> None:
        values = {
            **context.invocation.log_fields(),
            fields.EVENT: fields.PUBLIC_API_COMPLETION_EVENT,
            fields.SUCCESS: context.success,
            fields.DURATION_MS: context.duration_ms,
            fields.ERRORS: context.errors or None,
            fields.ERROR_CATEGORY: ",".join(context.error_categories) or None,
        }
        level = "info" if context.success else "warning"
        with log_context(values):
            getattr(self._logger, level)("Public API completion")


class _Dispatcher:
    """Fan events out to concerns; a failing concern never fails the call."""

    def __init__(
        self, concerns: tuple[PublicApiInstrumentationConcern, ...], logger: Any | None
    ) -> None:
        self._concerns = concerns
        self._logger = logger

    def invocation(self, context: InvocationContext) -> None:
        for concern in self._concerns:
            self._guard(concern, "invocation", context, lambda: concern.on_invocation(context))

    def completion(self, context: CompletionContext) -> None:
        for concern in self._concerns:
            self._guard(
                concern, "completion", context.invocation, lambda: concern.on_completion(context)
            )

    def _guard(
        self,
        concern: PublicApiInstrumentationConcern,
        stage: str,
        invocation: InvocationContext,
        call: Callable[[], None],
    ) -> None:
        try:
            call()
        except Exception as exc:  # noqa: BLE001
            if self._logger is None:
                return
            with log_context(
                {
                    fields.EVENT: fields.PUBLIC_API_INSTRUMENTATION_FAILURE_EVENT,
                    fields.COMPONENT_ID: invocation.component_id,
                    fields.API_NAME: invocation.api_name,
                    fields.STAGE: stage,
                    fields.CONCERN: type(concern).__name__,
                    fields.ERRORS: f"{type(exc).__name__}: {exc}",
                }
            ):
                self._logger.warning("Public API instrumentation concern failed")


def public_api_instrumented(
    *,
    component_id: str,
    api_name: str | None = None,
    id_fields: tuple[str, ...] = (),
    concerns: Sequence[PublicApiInstrumentationConcern] | None = None,
    logger: Any | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Wrap a public service method with invocation and completion events.

    Passing ``logger`` adds the logging concern. Keyword arguments named in
    ``id_fields`` (``entity_type``, ``record_id`` and the like) are attached
    to every event as references.
    """
    resolved = tuple(concerns or ())
    if logger is not None:
        resolved = (PublicApiLoggingConcern(logger=logger), *resolved)
    if not resolved:
        raise ValueError("public_api_instrumented requires at least one concern")
    dispatcher = _Dispatcher(resolved, logger)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        name = api_name or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            invocation = _invocation(component_id, name, id_fields, kwargs)
            dispatcher.invocation(invocation)
            started = perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                dispatcher.completion(
                    CompletionContext(
                        invocation=invocation,
                        success=False,
                        duration_ms=_elapsed_ms(started),
                        errors=[f"{type(exc).__name__}: {exc}"],
                        error_categories=["internal"],
                    )
                )
                raise

            errors = list(getattr(result, "errors", None) or [])
            ok = getattr(result, "ok", None)
            dispatcher.completion(
                CompletionContext(
                    invocation=invocation,
                    success=ok if isinstance(ok, bool) else not errors,
                    duration_ms=_elapsed_ms(started),
                    errors=[_summarize(item) for item in errors],
                    error_categories=[
                        str(getattr(item.category, "value", item.category)) for item in errors
                    ],
                )
            )
            return result

        return wrapper

    return decorator


def _invocation(
    component_id: str, api_name: str, id_fields: tuple[str, ...], kwargs: Mapping[str, Any]
) -> InvocationContext:
    meta = kwargs.get("meta")
    return InvocationContext(
        component_id=component_id,
        api_name=api_name,
        trace_id=_meta_field(meta, "trace_id"),
        envelope_id=_meta_field(meta, "envelope_id"),
        principal=_meta_field(meta, "principal"),
        references={
            name: str(kwargs[name]) for name in id_fields if kwargs.get(name) not in (None, "")
        },
    )


def _meta_field(meta: object | None, name: str) -> str | None:
    value = getattr(meta, name, None)
    return None if value in (None, "") else str(value)


def _summarize(error: Any) -> str:
    summary = getattr(error, "summary", None)
    return summary() if callable(summary) else str(error)


def _elapsed_ms(started: float) -> float:
    return round((perf_counter() - started) * 1000.0, 3)
