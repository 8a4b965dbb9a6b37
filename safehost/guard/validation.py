"""Operation validation pipeline: shape, paths, credentials, free text, rate limit."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from safehost.core.types import FieldKind
from safehost.guard.rules import OperationRegistry, build_default_registry
from safehost.guard.sanitizer import Sanitizer

if TYPE_CHECKING:
    from safehost.core.context import SafetyContext

PATH_FIELDS = ("targetPath", "path")
CREDENTIAL_FIELDS: dict[str, FieldKind] = {
    "username": FieldKind.IDENTIFIER,
    "database": FieldKind.IDENTIFIER,
    "password": FieldKind.PASSWORD,
    "host": FieldKind.HOSTNAME,
}


class OperationValidator:
    """Run every pre-execution check for a named operation.

    ``parameters`` is modified in place: coerced values, resolved paths and
    scrubbed free text replace what the caller supplied.
    """

    def __init__(
        self,
        context: SafetyContext,
        registry: OperationRegistry | None = None,
        sanitizer: Sanitizer | None = None,
    ) -> None:
        self._ctx = context
        self.registry = registry or build_default_registry()
        self.sanitizer = sanitizer or Sanitizer(context)

    def validate_operation(self, operation: str, parameters: dict[str, Any]) -> dict[str, Any]:
        descriptor = self.registry.require(operation)
        parameters.update(self.registry.validate_shape(operation, parameters))

        allow_system = descriptor.category.is_platform_service
        handled: set[str] = set()

        path_fields = list(PATH_FIELDS)
        path_fields.extend(
            r.name for r in descriptor.all_fields
            if r.kind is FieldKind.PATH and r.name not in PATH_FIELDS
        )
        for name in path_fields:
            value = parameters.get(name)
            if value is None:
                continue
            rule = descriptor.rule(name)
            if rule is not None and rule.many:
                parameters[name] = [
                    self.sanitizer.sanitize(v, FieldKind.PATH, allow_system_config=allow_system, field=name)
                    for v in value
                ]
            else:
                parameters[name] = self.sanitizer.sanitize(
                    value, FieldKind.PATH, allow_system_config=allow_system, field=name
                )
            handled.add(name)

        for name, kind in CREDENTIAL_FIELDS.items():
            value = parameters.get(name)
            if value in (None, ""):
                continue
            parameters[name] = self.sanitizer.sanitize(value, kind, field=name)
            handled.add(name)

        for name, value in list(parameters.items()):
            if name in handled or not isinstance(value, str):
                continue
            parameters[name] = self.sanitizer.sanitize(value, FieldKind.FREE_TEXT, field=name)

        self._ctx.rate_limiter.check(operation)
        self._ctx.metrics.increment("validations")
        logger.debug("Operation validated: {}", operation)
        return parameters
