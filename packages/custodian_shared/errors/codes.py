"""Machine-readable error codes shared by every service.

Service-specific codes (``INVALID_POLICY``, ``CAPTURE_FAILED`` and so on)
live beside the service that raises them.
"""

VALIDATION_ERROR = "VALIDATION_ERROR"
INVALID_ARGUMENT = "INVALID_ARGUMENT"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"

NOT_FOUND = "NOT_FOUND"
RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

CONFLICT = "CONFLICT"
ALREADY_EXISTS = "ALREADY_EXISTS"

DEPENDENCY_FAILURE = "DEPENDENCY_FAILURE"
DEPENDENCY_TIMEOUT = "DEPENDENCY_TIMEOUT"
DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"

OPERATION_CANCELLED = "OPERATION_CANCELLED"

INTERNAL_ERROR = "INTERNAL_ERROR"
UNEXPECTED_EXCEPTION = "UNEXPECTED_EXCEPTION"
