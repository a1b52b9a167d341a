"""Stdout logging setup shared by the CLI and the Celery processes."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from . import fields
from .context import bind_context, get_context

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


class StructuredFormatter(logging.Formatter):
    """Render records as JSON lines, or as plain text with ``key=value`` tails.

    Either way the fields bound through ``log_context`` at emission time are
    included.
    """

    def __init__(self, *, json_output: bool) -> None:
        super().__init__(fmt=_PLAIN_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")
        self._json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        context = get_context()
        if not self._json_output:
            line = super().format(record)
            tail = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
            return f"{line} {tail}" if tail else line

        payload: dict[str, object] = {
            fields.TIMESTAMP: datetime.fromtimestamp(record.created, UTC).isoformat(),
            fields.LEVEL: record.levelname,
            fields.LOGGER: record.name,
            fields.MESSAGE: record.getMessage(),
            **context,
        }
        if record.exc_info:
            payload[fields.EXCEPTION] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    service: str | None = None,
    environment: str | None = None,
) -> None:
    """Install one stdout handler on the root logger.

    Calling this again replaces the handler instead of stacking another.
    """
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(StructuredFormatter(json_output=json_output))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    # SQL echo is controlled by the database settings, not the root level.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    bind_context(**{fields.SERVICE: service, fields.ENVIRONMENT: environment})


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name)
