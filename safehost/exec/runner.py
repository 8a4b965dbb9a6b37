"""Async subprocess runner shared by probes and command executors."""

from __future__ import annotations

import asyncio
import os
import shlex
from pathlib import Path
from typing import Sequence

from loguru import logger

from safehost.core.types import CommandResult

_KILL_GRACE_SECONDS = 5.0


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


def _spawn_failure(display: str, program: str, cwd: str | Path | None, exc: OSError) -> CommandResult:
    """Map a failed spawn to a shell-style exit code.

    126 cannot execute, 127 not found, 1 for a missing working directory.
    """
    if cwd and not Path(cwd).is_dir():
        return CommandResult(display, 1, stderr=f"working directory not found: {cwd}")
    if isinstance(exc, FileNotFoundError):
        return CommandResult(display, 127, stderr=f"command not found: {program}")
    if isinstance(exc, PermissionError):
        return CommandResult(display, 126, stderr=str(exc))
    raise exc


class CommandRunner:
    """Run subprocesses with a hard timeout.

    Probes and executors receive a runner through the :class:`SafetyContext`
    so tests can substitute a fake that never touches the host.
    """

    def __init__(self, default_timeout: float = 30.0, path_append: str = "") -> None:
        self.default_timeout = default_timeout
        self.path_append = path_append

    def _env(self, env: dict[str, str] | None) -> dict[str, str]:
        merged = os.environ.copy()
        if env:
            merged.update(env)
        if self.path_append:
            merged["PATH"] = merged.get("PATH", "") + os.pathsep + self.path_append
        return merged

    async def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float | None = None,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Execute ``argv`` without a shell."""
        display = shlex.join(argv)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=self._env(env),
            )
        except OSError as e:
            return _spawn_failure(display, argv[0], cwd, e)
        return await self._communicate(process, display, timeout)

    async def run_shell(
        self,
        command: str,
        *,
        timeout: float | None = None,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Execute ``command`` through the platform shell."""
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=self._env(env),
            )
        except OSError as e:
            return _spawn_failure(command, "shell", cwd, e)
        return await self._communicate(process, command, timeout)

    async def _communicate(
        self,
        process: asyncio.subprocess.Process,
        display: str,
        timeout: float | None,
    ) -> CommandResult:
        limit = timeout if timeout is not None else self.default_timeout
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            process.kill()
            # Reap the child so pipes and file descriptors are released.
            try:
                await asyncio.wait_for(process.wait(), timeout=_KILL_GRACE_SECONDS)
            except asyncio.TimeoutError:
                pass
            logger.warning("Command timed out after {}s: {}", limit, display.split(" ", 1)[0])
            return CommandResult(display, -1, stderr=f"timed out after {limit}s", timed_out=True)

        return CommandResult(
            display,
            process.returncode if process.returncode is not None else -1,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
        )
