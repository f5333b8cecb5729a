"""Fixed-window counters used to throttle model calls and desktop alerts."""

from __future__ import annotations

import asyncio
import logging

LOGGER = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 60.0


class WindowCounter:
    """Counter allowing ``limit`` acquisitions until the next reset.

    The reset runs from a periodic task owned by the counter; callers start it
    once an event loop is running and stop it on shutdown.
    """

    def __init__(self, limit: int, window_seconds: float = RATE_WINDOW_SECONDS) -> None:
        """Create a counter allowing ``limit`` uses per window."""
        if limit < 0:
            raise ValueError("limit must not be negative")
        self.limit = limit
        self.window_seconds = window_seconds
        self.count = 0
        self._reset_task: asyncio.Task[None] | None = None

    @property
    def exhausted(self) -> bool:
        """Whether the current window has no capacity left."""
        return self.count >= self.limit

    @property
    def running(self) -> bool:
        """Whether the periodic reset task is active."""
        return self._reset_task is not None and not self._reset_task.done()

    def try_acquire(self) -> bool:
        """Consume one slot; return ``False`` when the window is exhausted."""
        if self.exhausted:
            return False
        self.count += 1
        return True

    def reset(self) -> None:
        """Start a fresh window."""
        self.count = 0

    def start(self) -> None:
        """Begin resetting every ``window_seconds``; no-op when already running."""
        if self.running:
            return
        self._reset_task = asyncio.create_task(self._reset_periodically())

    def stop(self) -> None:
        """Cancel the periodic reset."""
        task, self._reset_task = self._reset_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _reset_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.window_seconds)
            if self.count:
                LOGGER.debug("Resetting rate window (used %s/%s)", self.count, self.limit)
            self.reset()


__all__ = ["RATE_WINDOW_SECONDS", "WindowCounter"]
