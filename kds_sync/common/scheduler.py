"""
Unified Scheduler for Precise Interval Execution

Provides ScheduledLoop class that fires callbacks at exact intervals,
accounting for callback execution time to prevent drift.

Unlike asyncio.sleep()-based loops, this scheduler:
- Fires at exact wall-clock boundaries
- Finishes one tick before scheduling the next (no queued ticks)
- Skips missed intervals to catch up
- Stops gracefully, letting an in-flight tick finish within a bound

Usage:
    async def poll_log():
        # Do work...
        pass

    scheduler = ScheduledLoop(1.0, poll_log, name="tail")
    await scheduler.start()

    # Later:
    await scheduler.shutdown(timeout=5.0)
"""

import asyncio
import time
from typing import Callable, Awaitable
from kds_sync.common.logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class ScheduledLoop:
    """
    Precise interval scheduler that accounts for execution time.

    If callback execution takes time, the next iteration is scheduled
    relative to the original schedule, not relative to when the callback
    finished. Ticks that were missed while a callback ran are skipped.

    Attributes:
        interval: The interval in seconds between executions
        callback: Async function to call each interval
        name: Name for logging/identification
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
    ):
        if interval_seconds <= 0:
            raise ValueError(f"Scheduler '{name}' interval must be positive")

        self.interval = interval_seconds
        self.callback = callback
        self.name = name

        self._next_run: float = 0
        self._running = False
        self._task: asyncio.Task | None = None
        self._wake: asyncio.Event | None = None

        # Observability metrics
        self._drift_total: float = 0
        self._skipped_count: int = 0
        self._execution_count: int = 0
        self._error_count: int = 0
        self._last_execution_time: float = 0
        self._last_drift_ms: float = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduled loop in a background task."""
        if self._running:
            return

        self._running = True
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"scheduler-{self.name}")

    async def shutdown(self, timeout: float = 5.0) -> None:
        """
        Stop the loop, giving an in-flight tick up to `timeout` seconds.

        The tick is cancelled if it is still running after the timeout.
        """
        self._running = False
        if self._wake:
            self._wake.set()

        task, self._task = self._task, None
        if task is None or task.done():
            return

        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            logger.warning(
                f"Scheduler '{self.name}' tick still running after {timeout:.1f}s, cancelling"
            )
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _sleep_until(self, deadline: float) -> None:
        """Sleep until `deadline` or until the loop is told to stop."""
        sleep_duration = deadline - time.time()
        if sleep_duration <= 0:
            return
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=sleep_duration)
        except asyncio.TimeoutError:
            pass

    async def _run(self) -> None:
        """Main loop that fires callback at exact intervals."""
        # Align first run to next interval boundary
        now = time.time()
        self._next_run = ((now // self.interval) + 1) * self.interval

        while self._running:
            await self._sleep_until(self._next_run)

            if not self._running:
                break

            # Track drift (how late we are)
            actual_time = time.time()
            drift = actual_time - self._next_run

            if drift > 30:
                # Clock jump (NTP correction, suspend/resume); not real drift
                logger.info(
                    f"Scheduler '{self.name}' clock jump detected ({drift:.0f}s), realigning"
                )
                self._last_drift_ms = 0
            else:
                self._drift_total += max(0, drift)
                self._last_drift_ms = drift * 1000

            # Execute callback
            try:
                start = time.time()
                await self.callback()
                self._last_execution_time = time.time() - start
                self._execution_count += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._error_count += 1
                logger.error(f"Scheduled callback '{self.name}' error: {e}", exc_info=True)

            # Schedule next run
            # Skip missed intervals to catch up (don't queue up missed executions)
            now = time.time()
            skipped = 0
            while self._next_run <= now:
                self._next_run += self.interval
                skipped += 1

            # First skip is expected (the one we just executed)
            if skipped > 1:
                self._skipped_count += skipped - 1
                logger.warning(
                    f"Scheduler '{self.name}' skipped {skipped - 1} intervals "
                    f"(execution took {self._last_execution_time:.3f}s)"
                )

    @property
    def execution_count(self) -> int:
        """Total number of successful executions."""
        return self._execution_count

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "running": self._running,
            "execution_count": self._execution_count,
            "error_count": self._error_count,
            "drift_total_s": round(self._drift_total, 3),
            "drift_last_ms": round(self._last_drift_ms, 1),
            "skipped_count": self._skipped_count,
            "last_execution_s": round(self._last_execution_time, 3),
        }


class SchedulerGroup:
    """
    Manage multiple scheduled loops together.

    Provides a single interface to start/stop multiple schedulers
    and aggregate their statistics.
    """

    def __init__(self):
        self._schedulers: dict[str, ScheduledLoop] = {}

    def add(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
    ) -> ScheduledLoop:
        """Add a scheduler to the group."""
        scheduler = ScheduledLoop(interval_seconds, callback, name)
        self._schedulers[name] = scheduler
        return scheduler

    async def start_all(self) -> None:
        """Start all schedulers."""
        for scheduler in self._schedulers.values():
            await scheduler.start()

    async def shutdown_all(self, timeout: float = 5.0) -> None:
        """Stop all schedulers, sharing one bounded wait for in-flight ticks."""
        if not self._schedulers:
            return
        await asyncio.gather(
            *(s.shutdown(timeout) for s in self._schedulers.values())
        )

    def clear(self) -> None:
        self._schedulers.clear()

    def get_stats(self) -> dict:
        """Get aggregated statistics for all schedulers."""
        return {
            name: scheduler.get_stats()
            for name, scheduler in self._schedulers.items()
        }
