"""Observability helpers for logging, redaction and reports."""

from safehost.observability.redaction import REDACTED, redact_payload, sanitize_error_message, sanitize_for_logging

__all__ = ["REDACTED", "redact_payload", "sanitize_error_message", "sanitize_for_logging"]
