"""Input sanitizer for paths, credentials and free text."""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from safehost.core.errors import PathTraversalError, SanitizationError
from safehost.core.types import FieldKind

if TYPE_CHECKING:
    from safehost.core.context import SafetyContext

IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_-]*$")
HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9.-]+$")
MEMORY_SIZE_RE = re.compile(r"^\d+[kmgt]?b?$", re.I)
ALPHANUMERIC_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")
PASSWORD_FORBIDDEN = frozenset("'\"\\`")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
WINDOWS_PATH_FORBIDDEN_RE = re.compile(r"[<>:\"|?*\x00-\x1f]")
_WINDOWS_DRIVE_RE = re.compile(r"^[A-Za-z]:(?=[\\/]|$)")

IDENTIFIER_MAX = 63
PASSWORD_MIN = 8
PASSWORD_MAX = 128
HOSTNAME_MAX = 253
ALPHANUMERIC_MAX = 100


class Sanitizer:
    """Scrub and validate a value according to its :class:`FieldKind`.

    Path values are resolved before they are compared against the allow-list
    of base directories, so ``../`` sequences cannot escape by construction.
    """

    def __init__(self, context: SafetyContext) -> None:
        self._ctx = context
        self._handlers: dict[FieldKind, Callable[..., Any]] = {
            FieldKind.PATH: self._path,
            FieldKind.IDENTIFIER: self._identifier,
            FieldKind.PASSWORD: self._password,
            FieldKind.HOSTNAME: self._hostname,
            FieldKind.PORT: self._port,
            FieldKind.MEMORY_SIZE: self._memory_size,
            FieldKind.FREE_TEXT: self._free_text,
            FieldKind.ALPHANUMERIC: self._alphanumeric,
            FieldKind.FLAG: self._flag,
            FieldKind.INTEGER: self._integer,
        }

    def sanitize(
        self,
        value: Any,
        kind: FieldKind | str,
        *,
        allow_system_config: bool = False,
        field: str | None = None,
    ) -> Any:
        """Return the clean value or raise a sanitization/traversal error."""
        self._ctx.metrics.increment("data_sanitizations")
        kind = FieldKind(kind)
        label = field or kind.value
        if kind is FieldKind.PATH:
            return self._path(value, label, allow_system_config=allow_system_config)
        return self._handlers[kind](value, label)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def allowed_base_dirs(self, *, allow_system_config: bool = False) -> list[Path]:
        """Resolved base directories a path value may live under."""
        cfg = self._ctx.config
        bases = [self._ctx.cwd, self._ctx.home, cfg.state_path, *self._ctx.temp_dirs]
        bases.extend(Path(p).expanduser() for p in cfg.sanitizer.extra_allowed_dirs)
        if allow_system_config:
            bases.extend(Path(p) for p in cfg.sanitizer.system_config_dirs)
        return [b.resolve() for b in bases]

    def resolve_path(self, value: str) -> Path:
        try:
            path = Path(value).expanduser()
        except RuntimeError as e:
            # ``~user`` for an unknown account.
            raise PathTraversalError(f"Cannot expand home directory in path: {value}") from e
        if not path.is_absolute():
            path = self._ctx.cwd / path
        return path.resolve()

    def _path(self, value: Any, label: str, *, allow_system_config: bool = False) -> str:
        if not isinstance(value, (str, Path)):
            raise SanitizationError(f"Invalid path for {label}: expected a string", field=label)
        raw = str(value)
        if not raw:
            raise SanitizationError(f"Invalid path for {label}: empty value", field=label)
        if "\0" in raw:
            raise PathTraversalError(f"Null byte detected in path for {label}")
        if self._ctx.platform == "win32":
            if WINDOWS_PATH_FORBIDDEN_RE.search(_WINDOWS_DRIVE_RE.sub("", raw, count=1)):
                raise PathTraversalError(f"Dangerous characters detected in Windows path for {label}")

        resolved = self.resolve_path(raw)
        bases = self.allowed_base_dirs(allow_system_config=allow_system_config)
        if not any(resolved.is_relative_to(base) for base in bases):
            raise PathTraversalError(f"Path traversal detected: {raw} resolves to {resolved}")

        logger.debug("Path security validated: {}", resolved.name)
        return str(resolved)

    # ------------------------------------------------------------------
    # Credentials and identifiers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_str(value: Any, label: str) -> str:
        if not isinstance(value, str):
            raise SanitizationError(f"Invalid value for {label}: expected a string", field=label)
        return value

    def _identifier(self, value: Any, label: str) -> str:
        text = self._require_str(value, label)
        if not text or len(text) > IDENTIFIER_MAX:
            raise SanitizationError(
                f"Invalid identifier for {label}: length must be 1-{IDENTIFIER_MAX}", field=label
            )
        if not IDENTIFIER_RE.fullmatch(text):
            raise SanitizationError(
                f"Invalid identifier for {label}: must start with a letter or underscore "
                "and contain only letters, digits, '_' or '-'",
                field=label,
            )
        return text

    def _password(self, value: Any, label: str) -> str:
        text = self._require_str(value, label)
        if not PASSWORD_MIN <= len(text) <= PASSWORD_MAX:
            raise SanitizationError(
                f"Invalid {label} (length must be {PASSWORD_MIN}-{PASSWORD_MAX} characters)",
                field=label,
            )
        if any(ch in PASSWORD_FORBIDDEN for ch in text):
            raise SanitizationError(
                f"Invalid {label} (quotes, backslashes and backticks are not allowed)",
                field=label,
            )
        return text

    def _hostname(self, value: Any, label: str) -> str:
        text = self._require_str(value, label)
        if not text or len(text) > HOSTNAME_MAX or not HOSTNAME_RE.fullmatch(text):
            raise SanitizationError(f"Invalid hostname for {label}", field=label)
        return text

    def _port(self, value: Any, label: str) -> int:
        if isinstance(value, bool):
            raise SanitizationError(f"Invalid port for {label}", field=label)
        if isinstance(value, str) and value.isdigit():
            value = int(value)
        if not isinstance(value, int) or not 1 <= value <= 65535:
            raise SanitizationError(f"Invalid port for {label}: must be 1-65535", field=label)
        return value

    def _memory_size(self, value: Any, label: str) -> str:
        text = self._require_str(value, label)
        if not MEMORY_SIZE_RE.fullmatch(text):
            raise SanitizationError(
                f"Invalid memory size for {label}: expected e.g. 256mb or 2g", field=label
            )
        return text

    def _alphanumeric(self, value: Any, label: str) -> str:
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        text = self._require_str(value, label)
        if not text or len(text) > ALPHANUMERIC_MAX or not ALPHANUMERIC_RE.fullmatch(text):
            raise SanitizationError(f"Invalid argument for {label}", field=label)
        return text

    def _flag(self, value: Any, label: str) -> bool:
        if not isinstance(value, bool):
            raise SanitizationError(f"Invalid flag for {label}: expected a boolean", field=label)
        return value

    def _integer(self, value: Any, label: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise SanitizationError(f"Invalid integer for {label}", field=label)
        return value

    # ------------------------------------------------------------------
    # Free text
    # ------------------------------------------------------------------

    def _free_text(self, value: Any, label: str) -> str:
        text = self._require_str(value, label)
        cleaned = CONTROL_CHARS_RE.sub("", text)
        if cleaned != text:
            logger.warning("Input sanitized for parameter {}", label)
        limit = self._ctx.config.sanitizer.free_text_max_length
        if len(cleaned) > limit:
            logger.warning("Input truncated for parameter {} (length: {})", label, len(cleaned))
            self._ctx.metrics.increment("warnings")
            cleaned = cleaned[:limit]
        return cleaned
