"""Settings loading with deterministic precedence.

The cascade is always:
1) CLI params
2) Environment variables
3) ~/.config/custodian/custodian.yaml
4) Model defaults

Environment variable format:
- Prefix: ``CUSTODIAN_``
- Nested keys: ``__`` separator
- Example: ``CUSTODIAN_LOGGING__LEVEL=DEBUG`` -> ``logging.level = "DEBUG"``
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Mapping

from .models import DEFAULT_CONFIG_PATH, CustodianSettings


def load_settings(
    *,
    cli_params: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    config_path: str | Path | None = None,
) -> CustodianSettings:
    """Load ``CustodianSettings`` applying the standard precedence cascade.

    ``environ`` replaces ``os.environ`` when given, which keeps tests hermetic.
    A missing YAML file contributes nothing.
    """
    resolved_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    resolved_environ = dict(environ) if environ is not None else None

    class _ResolvedCustodianSettings(CustodianSettings):
        _config_path: ClassVar[Path] = resolved_path
        _environ: ClassVar[Mapping[str, str] | None] = resolved_environ

    return _ResolvedCustodianSettings(**dict(cli_params or {}))
