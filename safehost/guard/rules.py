"""Operation registry: per-operation field rules and shape validation.

Each :class:`OperationDescriptor` lists :class:`FieldRule` entries. The
registry turns them into a Pydantic model (``extra="forbid"``) so that a
parameters mapping is shape-checked the same way a Pydantic schema would be,
and the same rules later drive sanitization dispatch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from safehost.core.errors import SchemaValidationError
from safehost.core.types import FieldKind, OperationCategory

_PLATFORMS = ("linux", "darwin", "win32")


@dataclass(frozen=True, slots=True)
class FieldRule:
    """Shape and sanitization rule for one parameter."""

    name: str
    kind: FieldKind
    required: bool = False
    min: int | None = None
    max: int | None = None
    pattern: str | None = None
    choices: tuple[str, ...] | None = None
    default: Any = None
    many: bool = False


@dataclass(frozen=True, slots=True)
class OperationDescriptor:
    """Immutable schema for one named operation."""

    name: str
    category: OperationCategory
    fields: tuple[FieldRule, ...] = ()
    description: str = ""

    def rule(self, name: str) -> FieldRule | None:
        for item in self.all_fields:
            if item.name == name:
                return item
        return None

    @property
    def all_fields(self) -> tuple[FieldRule, ...]:
        own = {r.name for r in self.fields}
        return self.fields + tuple(r for r in COMMON_FIELDS if r.name not in own)


COMMON_FIELDS: tuple[FieldRule, ...] = (
    FieldRule("backup", FieldKind.FLAG),
    FieldRule("targetPath", FieldKind.PATH),
    FieldRule("path", FieldKind.PATH),
    FieldRule("platform", FieldKind.FREE_TEXT, choices=_PLATFORMS),
)

_KIND_DEFAULTS: dict[FieldKind, dict[str, Any]] = {
    FieldKind.IDENTIFIER: {"min": 1, "max": 63, "pattern": r"^[a-zA-Z_][a-zA-Z0-9_-]*$"},
    FieldKind.PASSWORD: {"min": 8, "max": 128, "pattern": r"^[^'\"\\`]*$"},
    FieldKind.PATH: {"min": 1, "max": 500, "pattern": r"^[^;&|`]*$"},
    FieldKind.HOSTNAME: {"min": 1, "max": 253, "pattern": r"^[a-zA-Z0-9.-]+$"},
    FieldKind.PORT: {"min": 1, "max": 65535},
    FieldKind.MEMORY_SIZE: {"pattern": r"(?i)^\d+[kmgt]?b?$"},
    FieldKind.ALPHANUMERIC: {"min": 1, "max": 100, "pattern": r"^[a-zA-Z0-9_.-]+$"},
    FieldKind.FREE_TEXT: {},
    FieldKind.FLAG: {},
    FieldKind.INTEGER: {},
}


def _annotation(rule: FieldRule) -> tuple[Any, Any]:
    defaults = _KIND_DEFAULTS[rule.kind]
    low = rule.min if rule.min is not None else defaults.get("min")
    high = rule.max if rule.max is not None else defaults.get("max")
    pattern = rule.pattern or defaults.get("pattern")

    constraints: dict[str, Any] = {}
    if rule.choices:
        base: Any = Literal[rule.choices]
    elif rule.kind is FieldKind.FLAG:
        base = bool
    elif rule.kind in (FieldKind.PORT, FieldKind.INTEGER):
        base = int
        if low is not None:
            constraints["ge"] = low
        if high is not None:
            constraints["le"] = high
    else:
        base = str
        if low is not None:
            constraints["min_length"] = low
        if high is not None:
            constraints["max_length"] = high
        if pattern:
            constraints["pattern"] = pattern

    if rule.many:
        base = list[Annotated[base, Field(**constraints)]]
        constraints = {}

    if rule.required:
        return base, Field(..., **constraints)
    default = list(rule.default) if rule.many and rule.default is not None else rule.default
    return Optional[base], Field(default, **constraints)


def build_model(descriptor: OperationDescriptor) -> type[BaseModel]:
    """Build the Pydantic model that shape-checks ``descriptor``'s parameters."""
    definitions = {rule.name: _annotation(rule) for rule in descriptor.all_fields}
    model_name = "".join(part.capitalize() for part in descriptor.name.split("-")) + "Params"
    return create_model(
        model_name,
        __config__=ConfigDict(extra="forbid"),
        **definitions,
    )


def _first_error(operation: str, exc: ValidationError) -> SchemaValidationError:
    errors = exc.errors()
    if not errors:
        return SchemaValidationError(f"Validation failed for {operation}", operation=operation)
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ())) or "parameters"
    detail = first.get("msg", "invalid value")
    return SchemaValidationError(
        f"Validation failed for {operation}: {loc} ({detail})",
        operation=operation,
        field=loc,
    )


class OperationRegistry:
    """Closed set of operations known to the safety core."""

    def __init__(self, descriptors: tuple[OperationDescriptor, ...] = ()) -> None:
        self._descriptors: dict[str, OperationDescriptor] = {}
        self._models: dict[str, type[BaseModel]] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: OperationDescriptor) -> None:
        if descriptor.name in self._descriptors:
            raise ValueError(f"Operation already registered: {descriptor.name}")
        self._descriptors[descriptor.name] = descriptor
        self._models[descriptor.name] = build_model(descriptor)

    def get(self, name: str) -> OperationDescriptor | None:
        return self._descriptors.get(name)

    def require(self, name: str) -> OperationDescriptor:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise SchemaValidationError(f"Unknown operation: {name}", operation=name)
        return descriptor

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    @property
    def names(self) -> list[str]:
        return sorted(self._descriptors)

    def validate_shape(self, name: str, parameters: dict[str, Any]) -> dict[str, Any]:
        """Shape-check ``parameters``; return the coerced values that were supplied."""
        self.require(name)
        if not isinstance(parameters, dict):
            raise SchemaValidationError(
                f"Validation failed for {name}: parameters must be a mapping", operation=name
            )
        try:
            model = self._models[name].model_validate(parameters)
        except ValidationError as e:
            raise _first_error(name, e) from None
        return model.model_dump(exclude_unset=True)


# ----------------------------------------------------------------------
# Built-in operation table
# ----------------------------------------------------------------------

_VERSION = r"^\d+\.\d+$"
_EMAIL = r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"
_HOST_PORT = r"^[a-zA-Z0-9.-]+:\d{1,5}$"
_REPOSITORY = r"^(https://|git@)[A-Za-z0-9._@:/~-]+$"


def _version(required: bool = True) -> FieldRule:
    return FieldRule("version", FieldKind.FREE_TEXT, required=required, pattern=_VERSION)


def _db_fields(default_port: int) -> tuple[FieldRule, ...]:
    return (
        _version(),
        FieldRule("port", FieldKind.PORT, min=1024, max=65535, default=default_port),
        FieldRule("username", FieldKind.IDENTIFIER, required=True),
        FieldRule("database", FieldKind.IDENTIFIER, required=True),
        FieldRule("password", FieldKind.PASSWORD, required=True),
        FieldRule("host", FieldKind.HOSTNAME),
    )


def _redis_fields(version_required: bool) -> tuple[FieldRule, ...]:
    return (
        _version(version_required),
        FieldRule("port", FieldKind.PORT, min=1024, max=65535, default=6379),
        FieldRule("password", FieldKind.PASSWORD, min=0),
        FieldRule("maxMemory", FieldKind.MEMORY_SIZE, default="256mb"),
        FieldRule("host", FieldKind.HOSTNAME),
    )


def _op(
    name: str,
    category: OperationCategory,
    *fields: FieldRule,
    description: str = "",
) -> OperationDescriptor:
    return OperationDescriptor(name=name, category=category, fields=tuple(fields), description=description)


_DOMAIN = FieldRule("domain", FieldKind.HOSTNAME, required=True)
_PROCESS_NAME = FieldRule("processName", FieldKind.IDENTIFIER, required=True)
_SITE_NAME = FieldRule("siteName", FieldKind.IDENTIFIER, required=True)
_PROJECT_PATH = FieldRule("projectPath", FieldKind.PATH)

DB = OperationCategory.DATABASE
CACHE = OperationCategory.CACHE
CONTAINER = OperationCategory.CONTAINER
PM = OperationCategory.PROCESS_MANAGER
WEB = OperationCategory.WEB_SERVER
SEC = OperationCategory.SECURITY
PROJECT = OperationCategory.PROJECT
DEPS = OperationCategory.DEPENDENCIES
DEPLOY = OperationCategory.DEPLOYMENT
SYSTEM = OperationCategory.SYSTEM

BUILTIN_OPERATIONS: tuple[OperationDescriptor, ...] = (
    _op(
        "system",
        SYSTEM,
        FieldRule("pythonVersion", FieldKind.FREE_TEXT, required=True, pattern=r"^\d+\.\d+(\.\d+)?"),
        FieldRule("platform", FieldKind.FREE_TEXT, required=True, choices=_PLATFORMS),
        FieldRule("arch", FieldKind.FREE_TEXT, required=True,
                  choices=("x86_64", "amd64", "x64", "arm64", "aarch64", "i386", "i686", "x86")),
        FieldRule("memory", FieldKind.INTEGER, required=True, min=1024**3),
        FieldRule("diskSpace", FieldKind.INTEGER, required=True, min=5 * 1024**3),
        description="Host requirements checked during preflight",
    ),
    # PostgreSQL
    _op("postgresql", DB, *_db_fields(5432)),
    _op("postgresql-download", DB, _version(required=False)),
    _op("postgresql-automatic-setup", DB, *_db_fields(5432)),
    _op("postgresql-manual-setup", DB, *_db_fields(5432)),
    # Redis
    _op("redis", CACHE, *_redis_fields(version_required=True)),
    _op("redis-download", CACHE, _version(required=False)),
    _op("redis-automatic-setup", CACHE, *_redis_fields(version_required=False)),
    _op("redis-manual-setup", CACHE, *_redis_fields(version_required=False)),
    # Docker
    _op(
        "docker",
        CONTAINER,
        _version(),
        FieldRule("composeVersion", FieldKind.FREE_TEXT, required=True, pattern=_VERSION),
        FieldRule("networks", FieldKind.IDENTIFIER, many=True, default=()),
        FieldRule("volumes", FieldKind.IDENTIFIER, many=True, default=()),
    ),
    _op(
        "docker-setup",
        CONTAINER,
        _version(required=False),
        FieldRule("composeVersion", FieldKind.FREE_TEXT, pattern=_VERSION),
    ),
    _op("docker-download", CONTAINER),
    _op("docker-automatic-setup", CONTAINER),
    _op("docker-engine-install", CONTAINER),
    _op("docker-compose-install", CONTAINER),
    _op("docker-daemon-config", CONTAINER),
    _op("docker-network-setup", CONTAINER, FieldRule("networkName", FieldKind.IDENTIFIER, required=True)),
    _op("docker-volume-setup", CONTAINER, FieldRule("volumeName", FieldKind.IDENTIFIER, required=True)),
    # PM2
    _op("pm2-download", PM),
    _op("pm2-global-install", PM),
    _op("pm2-startup-setup", PM),
    _op(
        "pm2-start-process",
        PM,
        FieldRule("scriptPath", FieldKind.PATH, required=True),
        _PROCESS_NAME,
    ),
    _op("pm2-stop-process", PM, _PROCESS_NAME),
    _op("pm2-restart-process", PM, _PROCESS_NAME),
    _op("pm2-delete-process", PM, _PROCESS_NAME),
    _op("pm2-list-processes", PM),
    _op("pm2-monitor-processes", PM),
    # Nginx
    _op("nginx-download", WEB),
    _op(
        "nginx-reverse-proxy",
        WEB,
        _DOMAIN,
        FieldRule("frontendPort", FieldKind.PORT, default=3000),
        FieldRule("backendPort", FieldKind.PORT, default=5000),
    ),
    _op("nginx-single-proxy", WEB, _DOMAIN, FieldRule("backendPort", FieldKind.PORT, required=True)),
    _op("nginx-load-balancer", WEB, _DOMAIN, FieldRule("backendPorts", FieldKind.PORT, required=True, many=True)),
    _op("nginx-load-balanced", WEB, _DOMAIN, FieldRule("backendPorts", FieldKind.PORT, required=True, many=True)),
    _op("nginx-websocket", WEB, _DOMAIN, FieldRule("backendServer", FieldKind.FREE_TEXT, required=True, pattern=_HOST_PORT)),
    _op("nginx-static-files", WEB, _DOMAIN, FieldRule("rootPath", FieldKind.PATH, required=True)),
    _op("nginx-full-config", WEB, _DOMAIN),
    _op("nginx-self-signed", WEB, _DOMAIN),
    _op("nginx-letsencrypt", WEB, _DOMAIN, FieldRule("email", FieldKind.FREE_TEXT, required=True, pattern=_EMAIL)),
    _op(
        "nginx-existing-cert",
        WEB,
        _DOMAIN,
        FieldRule("certPath", FieldKind.PATH, required=True),
        FieldRule("keyPath", FieldKind.PATH, required=True),
    ),
    _op("nginx-list-sites", WEB),
    _op("nginx-enable-site", WEB, _SITE_NAME),
    _op("nginx-disable-site", WEB, _SITE_NAME),
    _op("nginx-delete-site", WEB, _SITE_NAME),
    _op("nginx-test-config", WEB),
    _op("nginx-reload", WEB),
    # Security and compliance
    _op("security-scan", SEC, FieldRule("context", FieldKind.FREE_TEXT, max=200), _PROJECT_PATH),
    _op("security-policies", SEC, _PROJECT_PATH),
    _op("vulnerability-monitoring", SEC, _PROJECT_PATH),
    _op("security-report", SEC, _PROJECT_PATH),
    _op("compliance-check", SEC, _PROJECT_PATH, FieldRule("framework", FieldKind.ALPHANUMERIC)),
    # Projects and templates
    _op(
        "project",
        PROJECT,
        FieldRule("name", FieldKind.FREE_TEXT, required=True, min=1, max=50, pattern=r"^[a-zA-Z0-9_-]+$"),
        FieldRule("type", FieldKind.FREE_TEXT, required=True,
                  choices=("basic", "fullstack", "backend", "frontend", "microservices")),
        FieldRule("location", FieldKind.PATH, required=True),
        FieldRule("template", FieldKind.ALPHANUMERIC),
        FieldRule("features", FieldKind.ALPHANUMERIC, many=True, default=()),
    ),
    _op(
        "project-creation",
        PROJECT,
        FieldRule("name", FieldKind.FREE_TEXT, required=True, min=1, max=50, pattern=r"^[a-zA-Z0-9_-]+$"),
        FieldRule("location", FieldKind.PATH),
        FieldRule("template", FieldKind.ALPHANUMERIC),
    ),
    _op(
        "project-clone",
        PROJECT,
        FieldRule("repository", FieldKind.FREE_TEXT, required=True, max=500, pattern=_REPOSITORY),
        FieldRule("location", FieldKind.PATH),
    ),
    _op(
        "template-generation",
        PROJECT,
        FieldRule("template", FieldKind.ALPHANUMERIC, required=True),
        FieldRule("location", FieldKind.PATH),
    ),
    # Dependency installs scoped to a project directory
    _op("client-deps-install", DEPS, _PROJECT_PATH),
    _op("server-deps-install", DEPS, _PROJECT_PATH),
    _op("template-deps-install", DEPS, _PROJECT_PATH),
    _op("deps-install", DEPS, _PROJECT_PATH),
    # Deployment
    _op("deploy-development", DEPLOY, _PROJECT_PATH),
    _op("deploy-staging", DEPLOY, _PROJECT_PATH),
    _op("deploy-production", DEPLOY, _PROJECT_PATH),
)


def build_default_registry() -> OperationRegistry:
    """Registry pre-populated with every built-in operation."""
    return OperationRegistry(BUILTIN_OPERATIONS)
