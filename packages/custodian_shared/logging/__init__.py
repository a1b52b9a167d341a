"""Structured stdout logging with thread-bound context fields."""

from .config import StructuredFormatter, configure_logging, get_logger
from .context import bind_context, clear_context, get_context, log_context
from .public_api import (
    CompletionContext,
    InvocationContext,
    PublicApiInstrumentationConcern,
    PublicApiLoggingConcern,
    public_api_instrumented,
)

__all__ = [
    "CompletionContext",
    "InvocationContext",
    "PublicApiInstrumentationConcern",
    "PublicApiLoggingConcern",
    "StructuredFormatter",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_context",
    "get_logger",
    "log_context",
    "public_api_instrumented",
]
