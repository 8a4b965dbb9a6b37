"""Core data model and error taxonomy."""

from safehost.core.errors import (
    CommandInjectionError,
    EmergencyStopError,
    ExecutionError,
    OperationTimeoutError,
    PathTraversalError,
    PrivilegeError,
    RateLimitError,
    RecoveryError,
    SafetyError,
    SanitizationError,
    SchemaValidationError,
    SecurityViolationError,
)
from safehost.core.types import (
    FieldKind,
    OperationCategory,
    Privilege,
    PrivilegeSnapshot,
    SafetyMetrics,
)

__all__ = [
    "CommandInjectionError",
    "EmergencyStopError",
    "ExecutionError",
    "FieldKind",
    "OperationCategory",
    "OperationTimeoutError",
    "PathTraversalError",
    "Privilege",
    "PrivilegeError",
    "PrivilegeSnapshot",
    "RateLimitError",
    "RecoveryError",
    "SafetyError",
    "SafetyMetrics",
    "SanitizationError",
    "SchemaValidationError",
    "SecurityViolationError",
]
