"""
Fixed-window rate limiting keyed by scope.

Each scope gets a counter that resets when the wall clock enters a new
window. State is process-local: several running instances each keep
their own counters.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from loguru import logger

from runecore.errors import RateLimited

DEFAULT_SCOPE = "global"
RATE_LIMIT_MESSAGE = "Too many requests. Please try again in a moment."


@dataclass
class FixedWindow:
    """Request count for the window starting at window_start."""

    window_start: int
    count: int = 0


class RateLimiter:
    """
    Admit at most max_requests per window_sec for each scope.

    Windows are aligned to wall-clock multiples of window_sec, so with the
    default one-second window the counter resets on second rollover.
    """

    def __init__(self, max_requests: int, window_sec: int = 1):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_sec < 1:
            raise ValueError("window_sec must be at least 1")
        self.max_requests = max_requests
        self.window_sec = window_sec
        self._windows: dict[str, FixedWindow] = {}
        self._violation_counts: dict[str, int] = {}

    def _current_window(self) -> int:
        now = int(time.time())
        return now - now % self.window_sec

    def check(self, scope: str = DEFAULT_SCOPE) -> bool:
        """
        Count one request against scope.

        Returns True if admitted, False if the window is already full.
        """
        window_start = self._current_window()
        window = self._windows.get(scope)
        if window is None or window.window_start != window_start:
            window = FixedWindow(window_start=window_start)
            self._windows[scope] = window

        if window.count >= self.max_requests:
            self._violation_counts[scope] = self._violation_counts.get(scope, 0) + 1
            return False
        window.count += 1
        return True

    def acquire(self, scope: str = DEFAULT_SCOPE) -> None:
        """Like check, but raises RateLimited on rejection."""
        if not self.check(scope):
            logger.warning(f"Rate limit hit for scope {scope!r}")
            raise RateLimited(RATE_LIMIT_MESSAGE)

    def get_violation_count(self, scope: str = DEFAULT_SCOPE) -> int:
        return self._violation_counts.get(scope, 0)

    def clear(self) -> None:
        self._windows.clear()
        self._violation_counts.clear()
