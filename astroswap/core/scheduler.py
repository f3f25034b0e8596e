"""
Cycle Scheduler - fixed-interval driver for decision cycles.

The loop waits on a stop event with a timeout instead of sleeping, so
``stop()`` takes effect at the next wait and never cancels a cycle that is
already running. A tick that finds the previous cycle still in flight is
skipped.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from astroswap.core.logger import get_logger

logger = get_logger("scheduler")


class CycleScheduler:
    """Runs ``cycle_fn`` every ``interval_seconds`` while running."""

    def __init__(
        self,
        cycle_fn: Callable[[], Awaitable[Any]],
        interval_seconds: float = 60.0,
        is_busy: Optional[Callable[[], bool]] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._cycle_fn = cycle_fn
        self.interval_seconds = float(interval_seconds)
        self._is_busy = is_busy
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.tick_count = 0
        self.skipped_ticks = 0

    @property
    def is_running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    def start(self) -> bool:
        """Arm the timer. Returns False if already running."""
        if self.is_running:
            return False
        # A fresh event per run: a loop still finishing its last cycle after
        # stop() keeps its own, already-set event and exits on its own.
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._task = asyncio.create_task(self._loop(stop_event), name="cycle_scheduler")
        logger.info("Scheduler armed", interval_seconds=self.interval_seconds)
        return True

    def stop(self) -> bool:
        """Disarm the timer. Returns False if not running."""
        if not self.is_running:
            return False
        self._stop_event.set()
        logger.info("Scheduler disarmed")
        return True

    async def wait_stopped(self, timeout: float = 30.0) -> None:
        """Wait for the loop task (and any in-flight cycle) to finish."""
        task = self._task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Scheduler loop did not finish in time", timeout=timeout)

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            await self._tick()

    async def _tick(self) -> None:
        self.tick_count += 1
        if self._is_busy is not None and self._is_busy():
            self.skipped_ticks += 1
            logger.info("Previous cycle still running, skipping tick", tick=self.tick_count)
            return
        try:
            await self._cycle_fn()
        except Exception as e:
            logger.error("Scheduled cycle failed", error=str(e), error_type=type(e).__name__)
