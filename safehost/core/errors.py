"""Typed failures raised by the safety core.

Every message is redacted on construction so an error can be shown to the
user or written to a log without leaking credentials, tokens or connection
strings.
"""

from __future__ import annotations

from safehost.observability.redaction import redact_text


class SafetyError(Exception):
    """Base class for every failure raised by safehost."""

    code = "safety_error"

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        self.message = redact_text(str(message))
        self.operation = operation
        super().__init__(self.message)


class SchemaValidationError(SafetyError):
    """Malformed, missing or unknown fields; retry with corrected input."""

    code = "schema_validation"

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation)
        self.field = field


class SanitizationError(SchemaValidationError):
    """A value failed the rules of its field kind."""

    code = "sanitization"


class SecurityViolationError(SafetyError):
    """Input rejected for security reasons; never retried automatically."""

    code = "security_violation"


class PathTraversalError(SecurityViolationError):
    code = "path_traversal"


class CommandInjectionError(SecurityViolationError):
    code = "command_injection"


class PrivilegeError(SafetyError):
    """The host is missing a capability the operation requires."""

    code = "privilege"

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        privilege: str | None = None,
        remediation: str | None = None,
    ) -> None:
        if remediation:
            message = f"{message}. {remediation}"
        super().__init__(message, operation=operation)
        self.privilege = privilege
        self.remediation = remediation


class RateLimitError(SafetyError):
    code = "rate_limit"

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        retry_after: float = 0.0,
    ) -> None:
        super().__init__(message, operation=operation)
        self.retry_after = retry_after


class OperationTimeoutError(SafetyError, TimeoutError):
    """The wait was abandoned; the underlying work may still complete."""

    code = "timeout"


class ExecutionError(SafetyError):
    """The supervised work (or a command) failed."""

    code = "execution"


class RecoveryError(SafetyError):
    """Restoring from backup failed; wraps the original failure."""

    code = "recovery"

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(message, operation=operation)
        self.original = original


class EmergencyStopError(SafetyError):
    code = "emergency_stop"
