"""Whitelisted command execution and validated raw commands."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from safehost.core.errors import (
    CommandInjectionError,
    ExecutionError,
    SafetyError,
    SchemaValidationError,
)
from safehost.core.types import CommandRecord, CommandResult, FieldKind
from safehost.exec.sandbox import CommandPolicy
from safehost.guard.sanitizer import Sanitizer
from safehost.observability.redaction import redact_text

if TYPE_CHECKING:
    from safehost.core.context import SafetyContext

RESERVED_KEYS = frozenset({"action", "args"})
_STDERR_PREVIEW = 200


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Whitelisted binary with the actions and flags it may receive."""

    base_command: tuple[str, ...]
    actions: tuple[str, ...] = ()
    allowed_flags: tuple[str, ...] = ()
    sanitize_fields: dict[str, FieldKind] = field(default_factory=dict)


DEFAULT_COMMANDS: dict[str, CommandSpec] = {
    "psql": CommandSpec(
        ("psql",),
        allowed_flags=("-U", "-h", "-p", "-d", "-c", "-f"),
        sanitize_fields={
            "-U": FieldKind.IDENTIFIER,
            "-d": FieldKind.IDENTIFIER,
            "-h": FieldKind.HOSTNAME,
            "-p": FieldKind.PORT,
            "-c": FieldKind.FREE_TEXT,
            "-f": FieldKind.PATH,
        },
    ),
    "redis": CommandSpec(
        ("redis-cli",),
        allowed_flags=("-h", "-p", "-a", "-n"),
        sanitize_fields={
            "-h": FieldKind.HOSTNAME,
            "-p": FieldKind.PORT,
            "-a": FieldKind.PASSWORD,
            "-n": FieldKind.INTEGER,
        },
    ),
    "docker": CommandSpec(
        ("docker",),
        actions=("run", "build", "pull", "push", "exec", "logs", "ps", "images", "info", "version", "network", "volume"),
        allowed_flags=("--name", "--network", "--tail", "-d", "--rm", "-a"),
        sanitize_fields={
            "--name": FieldKind.IDENTIFIER,
            "--network": FieldKind.IDENTIFIER,
            "--tail": FieldKind.INTEGER,
        },
    ),
    "systemctl": CommandSpec(
        ("systemctl",),
        actions=("start", "stop", "restart", "status", "enable", "disable", "is-active", "reload"),
        allowed_flags=("--no-pager", "--now"),
    ),
    "pm2": CommandSpec(
        ("pm2",),
        actions=("start", "stop", "restart", "delete", "list", "logs", "monit", "save", "startup"),
        allowed_flags=("--name", "--watch", "-i", "--lines"),
        sanitize_fields={
            "--name": FieldKind.IDENTIFIER,
            "-i": FieldKind.INTEGER,
            "--lines": FieldKind.INTEGER,
        },
    ),
    "nginx": CommandSpec(
        ("nginx",),
        allowed_flags=("-t", "-s", "-c"),
        sanitize_fields={"-c": FieldKind.PATH},
    ),
    "npm": CommandSpec(
        ("npm",),
        actions=("install", "ci", "run", "list", "audit"),
        allowed_flags=("--prefix", "--omit", "--no-audit", "--no-fund"),
        sanitize_fields={"--prefix": FieldKind.PATH},
    ),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SecureCommandExecutor:
    """Build argv vectors for whitelisted tools and run raw commands under policy."""

    def __init__(
        self,
        context: SafetyContext,
        *,
        commands: dict[str, CommandSpec] | None = None,
        policy: CommandPolicy | None = None,
        sanitizer: Sanitizer | None = None,
    ) -> None:
        self._ctx = context
        self.commands = dict(DEFAULT_COMMANDS if commands is None else commands)
        self.policy = policy or CommandPolicy()
        self.sanitizer = sanitizer or Sanitizer(context)
        self._history: list[CommandRecord] = []

    # ------------------------------------------------------------------
    # Whitelisted mode
    # ------------------------------------------------------------------

    def build_argv(self, key: str, parameters: dict[str, Any]) -> list[str]:
        spec = self.commands.get(key)
        if spec is None:
            raise CommandInjectionError(f"Command not allowed: {key}")

        argv = list(spec.base_command)
        action = parameters.get("action")
        if spec.actions:
            if action not in spec.actions:
                raise CommandInjectionError(f"Action not allowed for {key}: {action}")
            argv.append(action)
        elif action is not None:
            raise CommandInjectionError(f"Command {key} does not take an action")

        for name, value in parameters.items():
            if name in RESERVED_KEYS:
                continue
            if name not in spec.allowed_flags:
                logger.warning("Dropping flag not allowed for {}: {}", key, name)
                continue
            if value is True:
                argv.append(name)
                continue
            if value is None or value is False:
                continue
            kind = spec.sanitize_fields.get(name, FieldKind.ALPHANUMERIC)
            clean = self.sanitizer.sanitize(value, kind, allow_system_config=True, field=name)
            argv.extend([name, str(clean)])

        args = parameters.get("args") or []
        if not isinstance(args, (list, tuple)):
            raise SchemaValidationError(f"Invalid args for {key}: expected a list", field="args")
        for arg in args:
            argv.append(self.sanitizer.sanitize(arg, FieldKind.ALPHANUMERIC, field="args"))
        return argv

    async def execute_secure(
        self,
        key: str,
        parameters: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a whitelisted command as an argv vector, never through a shell."""
        try:
            argv = self.build_argv(key, parameters or {})
            logger.info("Executing secure command: {}", key)
            result = await self._ctx.runner.run(
                argv, timeout=self._timeout(timeout), cwd=cwd or self._ctx.cwd, env=env
            )
            self._raise_for_result(key, result)
        except SafetyError as e:
            self._record(key, success=False, error=e.message)
            logger.error("Command execution failed: {}: {}", key, e.message)
            raise
        self._record(key, success=True)
        logger.info("Command executed successfully: {}", key)
        return result

    # ------------------------------------------------------------------
    # Validated raw mode
    # ------------------------------------------------------------------

    async def execute_validated(
        self,
        command: str,
        *,
        timeout: float | None = None,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a trusted internal command string after the policy check.

        Commands without shell syntax are split and run as argv; only the
        rest go through the shell.
        """
        if not isinstance(command, str) or not command.strip():
            raise SchemaValidationError("Invalid command format", field="command")

        cmd = command.strip()
        label = redact_text(cmd[:100])
        try:
            decision = self.policy.check(cmd)
            if not decision.allowed:
                raise CommandInjectionError(decision.reason or "Command rejected by policy")

            logger.warning("Executing validated raw command: {}", label)
            limit = self._timeout(timeout)
            workdir = cwd or self._ctx.cwd
            if self.policy.needs_shell(cmd):
                result = await self._ctx.runner.run_shell(cmd, timeout=limit, cwd=workdir, env=env)
            else:
                result = await self._ctx.runner.run(shlex.split(cmd), timeout=limit, cwd=workdir, env=env)
            self._raise_for_result(label, result)
        except SafetyError as e:
            self._record(label, success=False, error=e.message)
            logger.error("Validated command execution failed: {}", e.message)
            raise
        self._record(label, success=True)
        return result

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(self) -> list[CommandRecord]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
        logger.info("Command history cleared")

    def _record(self, command: str, *, success: bool, error: str | None = None) -> None:
        self._history.append(CommandRecord(command=command, timestamp=_now(), success=success, error=error))

    def _timeout(self, timeout: float | None) -> float:
        return timeout if timeout is not None else self._ctx.config.execution.command_timeout_seconds

    @staticmethod
    def _raise_for_result(label: str, result: CommandResult) -> None:
        if result.timed_out:
            raise ExecutionError(f"Command timed out: {label}")
        if result.returncode != 0:
            detail = result.stderr.strip()[:_STDERR_PREVIEW]
            message = f"Command failed with exit code {result.returncode}: {label}"
            raise ExecutionError(f"{message} ({detail})" if detail else message)
