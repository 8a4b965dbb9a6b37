"""Operation event log: ``logs/events.jsonl`` plus timestamped archives."""

from __future__ import annotations

import asyncio
import json
import time
from collections import deque
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

from safehost.config.schema import Config
from safehost.core.types import DiagnosticEvent
from safehost.observability.redaction import redact_payload


@dataclass(frozen=True, slots=True)
class EventFilter:
    """Exact-match criteria over supervisor event fields; ``None`` matches anything."""

    operation: str | None = None
    status: str | None = None
    severity: str | None = None
    error_code: str | None = None
    name: str | None = None

    def matches(self, event: dict[str, Any]) -> bool:
        for item in fields(self):
            wanted = getattr(self, item.name)
            if wanted is not None and event.get(item.name) != wanted:
                return False
        return True


def _decode(raw: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


class EventLog:
    """Append redacted supervisor events and read them back.

    When the active file would exceed ``rotate_bytes`` it is archived as
    ``events-<UTC stamp>.jsonl``; only the newest ``keep_archives`` archives
    are kept.
    """

    def __init__(self, path: Path, *, rotate_bytes: int = 5 * 1024 * 1024, keep_archives: int = 3) -> None:
        self.path = path
        self.rotate_bytes = rotate_bytes
        self.keep_archives = max(0, keep_archives)
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: Config) -> EventLog:
        return cls(
            config.event_log_path,
            rotate_bytes=config.logging.event_rotate_bytes,
            keep_archives=config.logging.event_archives,
        )

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def emit(self, event: DiagnosticEvent | dict[str, Any]) -> None:
        payload = event.to_dict() if isinstance(event, DiagnosticEvent) else dict(event)
        line = json.dumps(redact_payload(payload), ensure_ascii=False, default=str) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._write, line.encode("utf-8"))

    def _write(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            size = 0
        if size and size + len(data) > self.rotate_bytes:
            self._archive()
        with self.path.open("ab") as handle:
            handle.write(data)

    def _archive_target(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        return self.path.with_name(f"{self.path.stem}-{stamp}{self.path.suffix}")

    def _archive(self) -> None:
        target = self._archive_target()
        while target.exists():
            target = self._archive_target()
        self.path.replace(target)
        archives = self.archives()
        excess = len(archives) - self.keep_archives
        for old in archives[: max(0, excess)]:
            old.unlink(missing_ok=True)
        logger.debug("Event log archived to {}", target.name)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def archives(self) -> list[Path]:
        """Archived event files, oldest first."""
        pattern = f"{self.path.stem}-*{self.path.suffix}"
        return sorted(self.path.parent.glob(pattern))

    def query(self, criteria: EventFilter | None = None, *, limit: int = 100) -> list[dict[str, Any]]:
        """The newest ``limit`` matching events, oldest first."""
        if limit <= 0:
            return []
        criteria = criteria or EventFilter()
        newest: deque[dict[str, Any]] = deque(maxlen=limit)
        sources = self.archives()
        if self.path.exists():
            sources.append(self.path)
        for source in sources:
            with source.open(encoding="utf-8") as handle:
                for raw in handle:
                    event = _decode(raw)
                    if event is not None and criteria.matches(event):
                        newest.append(event)
        return list(newest)

    def follow(self, criteria: EventFilter | None = None, *, poll_interval: float = 0.5) -> Iterator[dict[str, Any]]:
        """Yield events appended after the call, across archiving."""
        offset, inode = self._position()
        return self._tail(criteria or EventFilter(), offset, inode, poll_interval)

    def _tail(
        self,
        criteria: EventFilter,
        offset: int,
        inode: int | None,
        poll_interval: float,
    ) -> Iterator[dict[str, Any]]:
        while True:
            current_offset, current_inode = self._position()
            if current_inode != inode or current_offset < offset:
                offset, inode = 0, current_inode
            if current_offset > offset:
                try:
                    with self.path.open("rb") as handle:
                        handle.seek(offset)
                        chunk = handle.read(current_offset - offset)
                except FileNotFoundError:
                    continue
                # Hold back a trailing partial line until it is complete.
                complete = chunk[: chunk.rfind(b"\n") + 1]
                offset += len(complete)
                for raw in complete.decode("utf-8", errors="replace").splitlines():
                    event = _decode(raw)
                    if event is not None and criteria.matches(event):
                        yield event
                if complete:
                    continue
            time.sleep(poll_interval)

    def _position(self) -> tuple[int, int | None]:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return 0, None
        return stat.st_size, stat.st_ino
