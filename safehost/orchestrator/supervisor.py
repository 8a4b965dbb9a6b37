"""Execution supervisor: the validate, authorize, back up, run, verify pipeline."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Awaitable, Callable

from loguru import logger

from safehost.core.context import SafetyContext
from safehost.core.errors import (
    ExecutionError,
    OperationTimeoutError,
    RecoveryError,
    SafetyError,
    SchemaValidationError,
)
from safehost.core.types import (
    BackupRecord,
    CommandRecord,
    CommandResult,
    CompatibilityEntry,
    DiagnosticEvent,
    OperationCategory,
    PrivilegeSnapshot,
)
from safehost.exec.backup import BackupStore
from safehost.exec.commands import SecureCommandExecutor
from safehost.exec.validators import ResultValidator, ValidatorRegistry
from safehost.guard.privileges import PrivilegeResolver
from safehost.guard.rules import OperationRegistry, build_default_registry
from safehost.guard.validation import OperationValidator
from safehost.observability import redaction
from safehost.orchestrator.lifecycle import Lifecycle
from safehost.platform.compat import CompatibilityMatrix

Work = Callable[[], Awaitable[Any]]


def _target_dir(parameters: dict[str, Any]) -> Path | None:
    """Directory the operation writes into, taken from its sanitized path."""
    for name in ("targetPath", "path"):
        value = parameters.get(name)
        if isinstance(value, str) and value:
            target = Path(value)
            return target if target.is_dir() else target.parent
    return None


class ExecutionSupervisor:
    """Run privileged operations behind validation, privilege checks and recovery.

    Every component shares one :class:`SafetyContext`, so metrics, the rate
    limit table and the privilege cache are per instance rather than global.
    """

    def __init__(
        self,
        context: SafetyContext | None = None,
        *,
        registry: OperationRegistry | None = None,
        validators: ValidatorRegistry | None = None,
        compat: CompatibilityMatrix | None = None,
        privileges: PrivilegeResolver | None = None,
        commands: SecureCommandExecutor | None = None,
    ) -> None:
        self.context = context or SafetyContext.create()
        self.registry = registry or build_default_registry()
        self.validator = OperationValidator(self.context, self.registry)
        self.privileges = privileges or PrivilegeResolver(self.context)
        self.commands = commands or SecureCommandExecutor(self.context, sanitizer=self.validator.sanitizer)
        self.backups = BackupStore(self.context.config.backup_dir)
        self.result_validators = validators or ValidatorRegistry()
        self.compat = compat or CompatibilityMatrix()
        self.lifecycle = Lifecycle(self.context, self.backups)
        self._pending: set[asyncio.Task] = set()

    @property
    def timeout(self) -> float:
        return self.context.config.execution.timeout_seconds

    @property
    def pending_tasks(self) -> frozenset[asyncio.Task]:
        """Work that outlived its timeout and is still running."""
        return frozenset(self._pending)

    # ------------------------------------------------------------------
    # safe_execute
    # ------------------------------------------------------------------

    async def safe_execute(
        self,
        operation: str,
        parameters: dict[str, Any] | None,
        work: Work,
    ) -> Any:
        """Validate, authorize, back up, run ``work`` and verify its result.

        ``parameters`` is sanitized in place. Any failure is raised as a
        :class:`SafetyError` subclass after at most one recovery attempt.
        """
        parameters = {} if parameters is None else parameters
        metrics = self.context.metrics
        started = time.perf_counter()
        backup: BackupRecord | None = None
        logger.info("Starting safe execution: {}", operation)

        try:
            if not callable(work):
                raise SchemaValidationError(
                    f"Work for {operation} must be an async callable", operation=operation
                )
            descriptor = self.registry.require(operation)
            self.validator.validate_operation(operation, parameters)
            requirements = self.privileges.get_requirements(operation)
            await self.privileges.validate_privileges(
                operation, requirements, target_dir=_target_dir(parameters)
            )

            if parameters.get("backup") and parameters.get("targetPath"):
                backup = await self.backups.create(operation, parameters["targetPath"])
                if backup is not None:
                    metrics.increment("backups")

            try:
                result = await self._run_with_timeout(operation, work)
                await self._validate_result(operation, descriptor.category, parameters, result)
            except Exception as e:
                error = self._as_safety_error(operation, e)
                if backup is not None:
                    await self._recover(backup, error)
                if error is e:
                    raise
                raise error from e
        except Exception as e:
            error = self._as_safety_error(operation, e)
            metrics.increment("errors")
            await self._report_failure(operation, parameters, error, started)
            if error is e:
                raise
            raise error from e

        metrics.increment("operations")
        latency_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info("Safe execution completed: {} ({} ms)", operation, latency_ms)
        await self._emit(
            DiagnosticEvent(
                name="operation.completed",
                component="supervisor",
                operation=operation,
                status="ok",
                latency_ms=latency_ms,
                attrs={"backup": backup.backup_path if backup else None},
            )
        )
        return result

    async def _run_with_timeout(self, operation: str, work: Work) -> Any:
        task = asyncio.ensure_future(work())
        done, _ = await asyncio.wait({task}, timeout=self.timeout)
        if task in done:
            return task.result()

        # The task keeps running; only the wait is abandoned.
        self._pending.add(task)
        task.add_done_callback(self._on_detached_done)
        logger.warning("Operation {} exceeded {}s, leaving it running", operation, self.timeout)
        raise OperationTimeoutError(
            f"Operation timeout: {operation} exceeded {self.timeout}s", operation=operation
        )

    def _on_detached_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Timed-out work finished with error: {}", redaction.sanitize_error_message(exc))
        else:
            logger.info("Timed-out work finished after its deadline")

    async def _validate_result(
        self,
        operation: str,
        category: OperationCategory,
        parameters: dict[str, Any],
        result: Any,
    ) -> None:
        validator = self.result_validators.resolve(operation, category)
        if not await validator.validate(operation, parameters, result):
            raise ExecutionError(f"Result validation failed for {operation}", operation=operation)

    async def _recover(self, backup: BackupRecord, error: SafetyError) -> None:
        logger.warning("Attempting recovery for {}", backup.operation)
        try:
            await self.backups.restore(backup, original=error)
        except RecoveryError as recovery:
            raise recovery from error

    @staticmethod
    def _as_safety_error(operation: str, exc: BaseException) -> SafetyError:
        if isinstance(exc, SafetyError):
            return exc
        return ExecutionError(f"Operation {operation} failed: {exc}", operation=operation)

    async def _report_failure(
        self,
        operation: str,
        parameters: dict[str, Any],
        error: SafetyError,
        started: float,
    ) -> None:
        message = self.sanitize_error_message(error)
        logger.error("Safe execution failed for {}: {}", operation, message)
        logger.debug("Failed parameters for {}: {}", operation, redaction.sanitize_for_logging(parameters, operation))
        await self._emit(
            DiagnosticEvent(
                name="operation.failed",
                component="supervisor",
                severity="error",
                operation=operation,
                status="failed",
                latency_ms=round((time.perf_counter() - started) * 1000, 2),
                error_code=error.code,
                error_message=message,
            )
        )

    async def _emit(self, event: DiagnosticEvent) -> None:
        sink = self.context.event_sink
        if sink is None:
            return
        try:
            await sink.emit(event)
        except OSError as e:
            logger.warning("Could not write diagnostic event {}: {}", event.name, e)

    # ------------------------------------------------------------------
    # Facade
    # ------------------------------------------------------------------

    def validate_operation(self, operation: str, parameters: dict[str, Any]) -> dict[str, Any]:
        return self.validator.validate_operation(operation, parameters)

    async def execute_secure_command(
        self,
        key: str,
        parameters: dict[str, Any] | None = None,
        **options: Any,
    ) -> CommandResult:
        self.context.metrics.increment("secure_commands")
        try:
            return await self.commands.execute_secure(key, parameters, **options)
        except SafetyError:
            self.context.metrics.increment("errors")
            raise

    async def execute_validated_command(self, command: str, **options: Any) -> CommandResult:
        self.context.metrics.increment("secure_commands")
        try:
            return await self.commands.execute_validated(command, **options)
        except SafetyError:
            self.context.metrics.increment("errors")
            raise

    def get_command_history(self) -> list[CommandRecord]:
        return self.commands.get_history()

    def sanitize_for_logging(self, data: Any, context: str = "general") -> Any:
        self.context.metrics.increment("data_sanitizations")
        return redaction.sanitize_for_logging(data, context)

    def sanitize_error_message(self, error: BaseException | str | None, production: bool | None = None) -> str:
        if production is None:
            production = self.context.config.production
        return redaction.sanitize_error_message(error, production)

    def get_metrics(self) -> dict[str, int]:
        return self.context.metrics.snapshot()

    async def get_privilege_status(self) -> PrivilegeSnapshot:
        return await self.privileges.current_privileges()

    def clear_privilege_cache(self) -> None:
        self.privileges.clear_cache()

    def check_compatibility(self, component: str, platform: str | None = None) -> CompatibilityEntry:
        return self.compat.is_supported(component, platform or self.context.platform)

    def register_validator(self, target: str | OperationCategory, validator: ResultValidator) -> None:
        """Attach a result validator to an operation name or a category."""
        if isinstance(target, OperationCategory):
            self.result_validators.register_category(target, validator)
        else:
            self.result_validators.register_operation(target, validator)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, *, install_signal_handlers: bool = True):
        return await self.lifecycle.initialize(install_signal_handlers=install_signal_handlers)

    async def shutdown(self, signal_name: str = "shutdown") -> int:
        return await self.lifecycle.shutdown(signal_name)

    async def emergency_stop(self, reason: str) -> None:
        """Take an emergency backup, write the report and raise."""
        await self.lifecycle.emergency_stop(reason)


SafetyFramework = ExecutionSupervisor
