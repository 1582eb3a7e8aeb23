"""
Interval Scheduler for Periodic Sync Triggers

Provides ScheduledLoop class that fires an async callback every N seconds,
scheduling each run relative to the original timeline so slow callbacks
do not push later runs back.

Usage:
    scheduler = ScheduledLoop(30.0, coordinator.flush_tick, name="flush")
    await scheduler.start()

    # Later:
    scheduler.stop()
"""

import asyncio
import time
from typing import Callable, Awaitable

from .logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class ScheduledLoop:
    """
    Interval scheduler that accounts for execution time.

    Attributes:
        interval: The interval in seconds between executions
        callback: Async function to call each interval
        skipped_count: Number of intervals skipped because a run overran
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
    ):
        self.interval = interval_seconds
        self.callback = callback
        self.name = name

        self._next_run: float = 0
        self._running = False
        self._task: asyncio.Task | None = None

        self._skipped_count: int = 0
        self._execution_count: int = 0
        self._error_count: int = 0
        self._last_execution_time: float = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduled loop in a background task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Stop the scheduled loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        """Main loop that fires callback every interval."""
        self._next_run = time.monotonic() + self.interval

        while self._running:
            sleep_duration = self._next_run - time.monotonic()
            if sleep_duration > 0:
                try:
                    await asyncio.sleep(sleep_duration)
                except asyncio.CancelledError:
                    break

            if not self._running:
                break

            try:
                start = time.monotonic()
                await self.callback()
                self._last_execution_time = time.monotonic() - start
                self._execution_count += 1
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._error_count += 1
                logger.error(f"Scheduled callback '{self.name}' error: {e}")

            # Skip missed intervals instead of queueing them up
            now = time.monotonic()
            skipped = 0
            while self._next_run <= now:
                self._next_run += self.interval
                skipped += 1

            if skipped > 1:
                self._skipped_count += skipped - 1
                logger.warning(
                    f"Scheduler '{self.name}' skipped {skipped - 1} intervals "
                    f"(execution took {self._last_execution_time:.3f}s)"
                )

    @property
    def skipped_count(self) -> int:
        return self._skipped_count

    @property
    def execution_count(self) -> int:
        return self._execution_count

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "execution_count": self._execution_count,
            "error_count": self._error_count,
            "skipped_count": self._skipped_count,
            "last_execution_s": round(self._last_execution_time, 3),
        }
