"""Shared core DTOs used across the guard, exec and orchestrator layers."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4


class FieldKind(str, Enum):
    """Sanitization/validation kind attached to every operation field."""

    IDENTIFIER = "identifier"
    PASSWORD = "password"
    PATH = "path"
    HOSTNAME = "hostname"
    PORT = "port"
    MEMORY_SIZE = "memory_size"
    FREE_TEXT = "free_text"
    ALPHANUMERIC = "alphanumeric"
    FLAG = "flag"
    INTEGER = "integer"


class OperationCategory(str, Enum):
    """Typed category of a registered operation."""

    DATABASE = "database"
    CACHE = "cache"
    CONTAINER = "container"
    PROCESS_MANAGER = "process_manager"
    WEB_SERVER = "web_server"
    SECURITY = "security"
    PROJECT = "project"
    DEPENDENCIES = "dependencies"
    DEPLOYMENT = "deployment"
    SYSTEM = "system"

    @property
    def is_platform_service(self) -> bool:
        """Whether operations in this category may touch system config dirs."""
        return self in _PLATFORM_SERVICE_CATEGORIES


_PLATFORM_SERVICE_CATEGORIES = frozenset(
    {
        OperationCategory.DATABASE,
        OperationCategory.CACHE,
        OperationCategory.CONTAINER,
        OperationCategory.WEB_SERVER,
    }
)


class Privilege(str, Enum):
    """Host capability an operation may require."""

    SUDO = "sudo"
    DOCKER = "docker"
    NETWORK = "network"
    FILESYSTEM = "filesystem"


@dataclass(frozen=True, slots=True)
class PrivilegeSnapshot:
    """Point-in-time view of what the current process is allowed to do."""

    user: str
    uid: int | None
    platform: str
    is_elevated: bool
    has_sudo: bool
    groups: tuple[str, ...] = ()
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": self.user,
            "uid": self.uid,
            "platform": self.platform,
            "is_elevated": self.is_elevated,
            "has_sudo": self.has_sudo,
            "groups": list(self.groups),
            "captured_at": self.captured_at.isoformat(),
        }


@dataclass(slots=True)
class RateWindow:
    """Attempt counter for one operation inside one fixed window."""

    operation: str
    window_index: int
    count: int = 0


@dataclass(frozen=True, slots=True)
class BackupRecord:
    """Best-effort copy of a file or directory taken before a risky operation."""

    operation: str
    source_path: str
    backup_path: str
    is_directory: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class CompatibilityEntry:
    """Static support information for one component on one platform."""

    component: str
    platform: str
    supported: bool
    service_manager: str | None = None
    package_manager: str | None = None
    native: bool = False
    alternatives: tuple[str, ...] = ()
    notes: str = ""
    directories: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "component": self.component,
            "platform": self.platform,
            "supported": self.supported,
            "service_manager": self.service_manager,
            "package_manager": self.package_manager,
            "native": self.native,
            "alternatives": list(self.alternatives),
            "notes": self.notes,
            "directories": list(self.directories),
        }


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of one subprocess invocation."""

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


@dataclass(frozen=True, slots=True)
class CommandRecord:
    """History entry for a secure or validated command."""

    command: str
    timestamp: str
    success: bool
    error: str | None = None


_METRIC_NAMES = (
    "operations",
    "errors",
    "warnings",
    "backups",
    "validations",
    "secure_commands",
    "privilege_checks",
    "data_sanitizations",
)


class SafetyMetrics:
    """Process-wide monotonic counters, reset only explicitly."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = dict.fromkeys(_METRIC_NAMES, 0)

    def increment(self, name: str, amount: int = 1) -> int:
        if name not in self._counters:
            raise KeyError(f"Unknown metric: {name}")
        with self._lock:
            self._counters[name] += amount
            return self._counters[name]

    def __getattr__(self, name: str) -> int:
        counters = self.__dict__.get("_counters")
        if counters is not None and name in counters:
            return counters[name]
        raise AttributeError(name)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def reset(self) -> None:
        with self._lock:
            for name in self._counters:
                self._counters[name] = 0


@dataclass(slots=True)
class DiagnosticEvent:
    """Structured observability event emitted by the supervisor."""

    name: str
    component: str
    severity: str = "info"
    event_id: str = field(default_factory=lambda: uuid4().hex)
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    operation: str | None = None
    status: str | None = None
    latency_ms: float | None = None
    error_code: str | None = None
    error_message: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable payload."""
        return {
            "event_id": self.event_id,
            "ts": self.ts.isoformat(),
            "name": self.name,
            "component": self.component,
            "severity": self.severity,
            "operation": self.operation,
            "status": self.status,
            "latency_ms": self.latency_ms,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "attrs": self.attrs,
        }
