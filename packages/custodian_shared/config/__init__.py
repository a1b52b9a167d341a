"""Public API for shared Custodian configuration utilities."""

from .loader import load_settings
from .models import (
    DEFAULT_CONFIG_PATH,
    ENV_PREFIX,
    ComponentsSettings,
    CustodianSettings,
    LoggingSettings,
    OperatorSettings,
    resolve_component_settings,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ENV_PREFIX",
    "ComponentsSettings",
    "CustodianSettings",
    "LoggingSettings",
    "OperatorSettings",
    "load_settings",
    "resolve_component_settings",
]
