"""Per-process shared state for the safety core."""

from __future__ import annotations

import sys
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from safehost.config.schema import Config
from safehost.core.types import SafetyMetrics
from safehost.exec.runner import CommandRunner
from safehost.guard.privileges import PrivilegeCache
from safehost.guard.ratelimit import RateLimiter
from safehost.observability.logging_sink import EventLog


def normalize_platform(name: str) -> str:
    """Map ``sys.platform`` style names onto linux/darwin/win32."""
    if name.startswith("linux"):
        return "linux"
    if name.startswith(("win", "cygwin", "msys")):
        return "win32"
    return name


@dataclass(slots=True)
class SafetyContext:
    """Shared state constructed once per process and injected everywhere.

    Holds the configuration, the clock, the rate-limit table, the privilege
    cache, metrics and the command runner so components never reach for
    module-level singletons.
    """

    config: Config
    clock: Callable[[], float] = time.time
    platform: str = field(default_factory=lambda: normalize_platform(sys.platform))
    cwd: Path = field(default_factory=Path.cwd)
    home: Path = field(default_factory=Path.home)
    metrics: SafetyMetrics = field(default_factory=SafetyMetrics)
    runner: CommandRunner = field(default_factory=CommandRunner)
    rate_limiter: RateLimiter | None = None
    privilege_cache: PrivilegeCache | None = None
    event_sink: EventLog | None = None
    started_at: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        if self.rate_limiter is None:
            self.rate_limiter = RateLimiter(
                max_requests=self.config.rate_limit.max_requests,
                window_seconds=self.config.rate_limit.window_seconds,
                clock=self.clock,
            )
        if self.privilege_cache is None:
            self.privilege_cache = PrivilegeCache(
                ttl_seconds=self.config.privileges.cache_ttl_seconds,
                clock=self.clock,
            )
        if self.event_sink is None:
            self.event_sink = EventLog.from_config(self.config)

    @classmethod
    def create(cls, config: Config | None = None, **overrides) -> SafetyContext:
        """Build a context from config (loaded from disk when omitted)."""
        if config is None:
            from safehost.config.loader import load_config

            config = load_config()
        return cls(config=config, **overrides)

    @property
    def state_dir(self) -> Path:
        return self.config.state_path

    @property
    def temp_dirs(self) -> tuple[Path, ...]:
        dirs = [Path(tempfile.gettempdir())]
        if self.platform != "win32":
            dirs.extend([Path("/tmp"), Path("/var/tmp")])
        return tuple(dirs)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def ensure_dirs(self) -> None:
        """Create the state directory layout."""
        for path in (
            self.config.state_path,
            self.config.backup_dir,
            self.config.log_dir,
            self.config.temp_dir,
        ):
            path.mkdir(parents=True, exist_ok=True)
