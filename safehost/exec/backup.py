"""Best-effort backups taken before risky operations."""

from __future__ import annotations

import asyncio
import shutil
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from safehost.core.errors import ExecutionError, RecoveryError
from safehost.core.types import BackupRecord


def backup_stamp(moment: datetime | None = None) -> str:
    """ISO timestamp safe for use in a directory name."""
    moment = moment or datetime.now(timezone.utc)
    return moment.isoformat().replace(":", "-").replace(".", "-")


class BackupStore:
    """Copy files or directories into ``backups/<operation>_<stamp>/``."""

    def __init__(self, backup_dir: Path) -> None:
        self.backup_dir = backup_dir

    async def create(self, operation: str, target: str | Path) -> BackupRecord | None:
        """Back up ``target``; return ``None`` when it does not exist."""
        source = Path(target)
        if not source.exists():
            logger.debug("Nothing to back up for {}: {} does not exist", operation, source)
            return None
        try:
            return await asyncio.to_thread(self._create_sync, operation, source)
        except OSError as e:
            raise ExecutionError(f"Backup failed for {operation}: {e}", operation=operation) from e

    def _create_sync(self, operation: str, source: Path) -> BackupRecord:
        destination_dir = self.backup_dir / f"{operation}_{backup_stamp()}"
        destination_dir.mkdir(parents=True, exist_ok=True)
        destination = destination_dir / source.name
        is_directory = source.is_dir()
        if is_directory:
            shutil.copytree(source, destination)
        else:
            shutil.copy2(source, destination)
        logger.info("Backup created: {}", destination)
        return BackupRecord(
            operation=operation,
            source_path=str(source),
            backup_path=str(destination),
            is_directory=is_directory,
        )

    async def restore(self, record: BackupRecord, original: BaseException | None = None) -> None:
        """Copy the backup over its source; raise :class:`RecoveryError` on failure."""
        try:
            await asyncio.to_thread(self._restore_sync, record)
        except OSError as e:
            raise RecoveryError(
                f"Recovery failed for {record.operation}: {e}",
                operation=record.operation,
                original=original,
            ) from e
        logger.info("Recovery completed from backup: {}", record.backup_path)

    @staticmethod
    def _restore_sync(record: BackupRecord) -> None:
        source = Path(record.backup_path)
        target = Path(record.source_path)
        if not source.exists():
            raise FileNotFoundError(f"backup missing: {source}")
        if record.is_directory:
            if target.exists():
                shutil.rmtree(target)
            shutil.copytree(source, target)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)

    def copy_best_effort(self, destination_dir: Path, sources: list[Path]) -> list[str]:
        """Copy whichever ``sources`` are readable; return what was copied."""
        destination_dir.mkdir(parents=True, exist_ok=True)
        copied: list[str] = []
        for source in sources:
            try:
                shutil.copy2(source, destination_dir / source.name)
            except OSError as e:
                logger.warning("Emergency backup skipped {}: {}", source, e)
                continue
            copied.append(str(source))
        return copied
