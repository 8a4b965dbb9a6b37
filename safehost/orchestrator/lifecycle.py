"""Process lifecycle: initialization, graceful shutdown and emergency stop."""

from __future__ import annotations

import asyncio
import shutil
import signal
import sys
from pathlib import Path
from typing import Callable

from loguru import logger

from safehost.core.context import SafetyContext
from safehost.core.errors import EmergencyStopError
from safehost.exec.backup import BackupStore, backup_stamp
from safehost.observability.report import write_emergency_report, write_safety_report
from safehost.platform.preflight import PreflightSnapshot, collect_preflight

SHUTDOWN_SIGNALS = ("SIGTERM", "SIGINT", "SIGUSR2")
EMERGENCY_FILES = (Path("/etc/hosts"), Path("/etc/passwd"), Path("/etc/group"))


class Lifecycle:
    """Own the state directory layout and the process exit path."""

    def __init__(
        self,
        context: SafetyContext,
        backups: BackupStore,
        *,
        exit_fn: Callable[[int], object] = sys.exit,
        emergency_files: tuple[Path, ...] = EMERGENCY_FILES,
    ) -> None:
        self._ctx = context
        self._backups = backups
        self.exit_fn = exit_fn
        self.emergency_files = emergency_files
        self._installed: list[int] = []
        self._shutting_down = False

    async def initialize(self, *, install_signal_handlers: bool = True) -> PreflightSnapshot:
        """Create state directories, run preflight and hook shutdown signals."""
        logger.info("Initializing safety framework")
        await asyncio.to_thread(self._ctx.ensure_dirs)
        snapshot = collect_preflight(self._ctx)
        if install_signal_handlers:
            self.install_signal_handlers()
        logger.info("Safety framework initialized (readiness: {})", snapshot.readiness)
        return snapshot

    def install_signal_handlers(self) -> list[str]:
        """Register graceful shutdown for each available signal; return their names."""
        loop = asyncio.get_running_loop()
        names: list[str] = []
        for name in SHUTDOWN_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            try:
                loop.add_signal_handler(signum, self._on_signal, name)
            except (NotImplementedError, RuntimeError, ValueError):
                # Windows event loops do not support add_signal_handler.
                logger.debug("Signal handler unavailable for {}", name)
                continue
            self._installed.append(signum)
            names.append(name)
        return names

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in self._installed:
            loop.remove_signal_handler(signum)
        self._installed.clear()

    def _on_signal(self, name: str) -> None:
        if self._shutting_down:
            return
        self._shutting_down = True
        asyncio.get_running_loop().create_task(self._shutdown_and_exit(name))

    async def _shutdown_and_exit(self, name: str) -> None:
        code = await self.shutdown(name)
        self.exit_fn(code)

    async def shutdown(self, signal_name: str = "shutdown") -> int:
        """Clean up and write the final report; return the process exit code."""
        logger.info("Received {}, shutting down gracefully", signal_name)
        try:
            await self.cleanup()
            await write_safety_report(self._ctx)
        except OSError as e:
            logger.error("Error during shutdown: {}", e)
            return 1
        logger.info("Graceful shutdown completed")
        return 0

    async def cleanup(self) -> None:
        await asyncio.to_thread(self._cleanup_sync)
        logger.info("Cleanup completed")

    def _cleanup_sync(self) -> None:
        temp_dir = self._ctx.config.temp_dir
        if temp_dir.exists():
            for entry in temp_dir.iterdir():
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()

        limit = self._ctx.config.logging.max_log_bytes
        log_dir = self._ctx.config.log_dir
        if log_dir.exists():
            for entry in log_dir.iterdir():
                if entry.is_file() and entry.stat().st_size > limit:
                    logger.warning("Removing oversized log file: {}", entry.name)
                    entry.unlink()

    async def emergency_stop(self, reason: str) -> None:
        logger.error("EMERGENCY STOP: {}", reason)
        destination = self._ctx.config.backup_dir / f"emergency_{backup_stamp()}"
        try:
            copied = await asyncio.to_thread(
                self._backups.copy_best_effort, destination, list(self.emergency_files)
            )
            logger.info("Emergency backup created: {} ({} files)", destination, len(copied))
        except OSError as e:
            logger.error("Emergency backup failed: {}", e)
        await write_emergency_report(self._ctx, reason)
        raise EmergencyStopError(f"Emergency stop triggered: {reason}")
