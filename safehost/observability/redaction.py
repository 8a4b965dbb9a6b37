"""Redaction helpers for log lines, error messages and event payloads."""

from __future__ import annotations

import re
from typing import Any

from loguru import logger

REDACTED = "***REDACTED***"

_SENSITIVE_KEYWORDS = (
    "token",
    "secret",
    "password",
    "passwd",
    "api_key",
    "apikey",
    "authorization",
    "cookie",
    "sessionid",
    "private_key",
)

_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
_BEARER_RE = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._\-]+\b")
_URL_CREDENTIALS_RE = re.compile(r"(?i)\b([a-z][a-z0-9+.-]*://[^:/\s@]+):([^@\s]+)@")
_KEY_VALUE_RE = re.compile(
    r"(?i)(password|passwd|pwd|secret|token|api[_-]?key|authorization)"
    r"([\"']?\s*[:=]\s*[\"']?)([^\"'\s,;&]+)"
)
_SECRET_VALUE_PATTERNS = (
    re.compile(r"\bsk-[A-Za-z0-9]{8,}\b"),
    re.compile(r"\bxox[baprs]-[A-Za-z0-9-]{10,}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
)

# Ordered: the first keyword found in a production error decides its message.
_GENERIC_MESSAGES = (
    ("authentication", "Authentication failed"),
    ("authorization", "Access denied"),
    ("privilege", "Access denied"),
    ("database", "Database operation failed"),
    ("network", "Network operation failed"),
    ("filesystem", "File operation failed"),
    ("path", "File operation failed"),
    ("validation", "Input validation failed"),
    ("system", "System operation failed"),
)


def _is_sensitive_key(key: str | None) -> bool:
    if not key:
        return False
    normalized = key.lower().replace("-", "_")
    return any(token in normalized for token in _SENSITIVE_KEYWORDS)


def _mask_email(match: re.Match[str]) -> str:
    local = match.group(1)
    domain = match.group(2)
    head, _, suffix = domain.partition(".")

    local_masked = f"{local[:1]}***" if local else "***"
    head_masked = f"{head[:1]}***" if head else "***"
    return f"{local_masked}@{head_masked}.{suffix}" if suffix else f"{local_masked}@{head_masked}"


def redact_text(text: str) -> str:
    """Mask secrets embedded in free-form text."""
    redacted = _URL_CREDENTIALS_RE.sub(lambda m: f"{m.group(1)}:{REDACTED}@", text)
    redacted = _EMAIL_RE.sub(_mask_email, redacted)
    redacted = _BEARER_RE.sub(f"Bearer {REDACTED}", redacted)
    redacted = _KEY_VALUE_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", redacted)
    for pattern in _SECRET_VALUE_PATTERNS:
        redacted = pattern.sub(REDACTED, redacted)
    return redacted


def _redact(value: Any, key: str | None = None) -> Any:
    if _is_sensitive_key(key):
        return REDACTED

    if isinstance(value, dict):
        return {k: _redact(v, str(k)) for k, v in value.items()}

    if isinstance(value, list):
        return [_redact(item, key) for item in value]

    if isinstance(value, tuple):
        return tuple(_redact(item, key) for item in value)

    if isinstance(value, str):
        return redact_text(value)

    return value


def redact_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a redacted copy of an observability payload."""
    return _redact(payload)


def sanitize_for_logging(data: Any, context: str = "general") -> Any:
    """Return a copy of ``data`` that is safe to write to a log."""
    if data is None:
        return data
    sanitized = _redact(data)
    if sanitized != data:
        logger.debug("Data sanitized for logging in context: {}", context)
    return sanitized


def sanitize_error_message(error: BaseException | str | None, production: bool = False) -> str:
    """Turn an error into a message that is safe to display.

    In production mode details are replaced by a generic category message;
    otherwise the message is kept but secrets are redacted.
    """
    if error is None:
        return "Unknown error"

    message = str(error) or type(error).__name__
    if production:
        lowered = message.lower()
        for keyword, generic in _GENERIC_MESSAGES:
            if keyword in lowered:
                return generic
        return "Operation failed"

    return redact_text(message)
