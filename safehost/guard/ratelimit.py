"""Fixed-window attempt limiter keyed by operation name."""

from __future__ import annotations

import math
import threading
import time
from typing import Callable

from safehost.core.errors import RateLimitError
from safehost.core.types import RateWindow


class RateLimiter:
    """Count attempts per ``operation:window_index`` and reject overflow.

    The counter is incremented before the ceiling is checked and is never
    rolled back, so a rejected attempt still consumes budget and the first
    ``max_requests`` attempts of a window are the ones that pass.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    def _window_index(self, now: float) -> int:
        return math.floor(now / self.window_seconds)

    def check(self, operation: str) -> int:
        """Record one attempt; return the post-increment count or raise."""
        now = self._clock()
        index = self._window_index(now)
        key = f"{operation}:{index}"

        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = RateWindow(operation=operation, window_index=index)
                self._windows[key] = window
            window.count += 1
            count = window.count
            self._sweep(index)

        if count > self.max_requests:
            retry_after = (index + 1) * self.window_seconds - now
            raise RateLimitError(
                f"Rate limit exceeded for operation: {operation} "
                f"({self.max_requests} per {int(self.window_seconds)}s)",
                operation=operation,
                retry_after=max(0.0, retry_after),
            )
        return count

    def _sweep(self, current_index: int) -> None:
        stale = [k for k, w in self._windows.items() if w.window_index < current_index - 1]
        for key in stale:
            del self._windows[key]

    def count(self, operation: str) -> int:
        """Attempts recorded for ``operation`` in the current window."""
        key = f"{operation}:{self._window_index(self._clock())}"
        with self._lock:
            window = self._windows.get(key)
            return window.count if window else 0

    def __len__(self) -> int:
        return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
