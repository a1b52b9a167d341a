"""Structured log field names.

Keys bound through ``log_context`` should come from here so JSON log lines
keep one vocabulary across the CLI, the Celery worker and the services.
"""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EXCEPTION = "exception"
EVENT = "event"

SERVICE = "service"
ENVIRONMENT = "environment"

TRACE_ID = "trace_id"
ENVELOPE_ID = "envelope_id"
PRINCIPAL = "principal"

COMPONENT_ID = "component_id"
API_NAME = "api_name"
SUCCESS = "success"
DURATION_MS = "duration_ms"
ERRORS = "errors"
ERROR_CATEGORY = "error_category"
STAGE = "stage"
CONCERN = "concern"

PUBLIC_API_INVOCATION_EVENT = "public_api_invocation"
PUBLIC_API_COMPLETION_EVENT = "public_api_completion"
PUBLIC_API_INSTRUMENTATION_FAILURE_EVENT = "public_api_instrumentation_failure"

ENTITY_TYPE = "entity_type"
RECORD_ID = "record_id"
POLICY_ID = "policy_id"
