"""
Interval Scheduler with Overlap Protection

Provides ScheduledLoop class that fires callbacks at exact intervals.
Each firing runs the callback as its own task, so a slow callback never
delays the timer. If the previous run is still in flight when the timer
fires again, that firing is skipped (and logged) instead of starting a
second, overlapping run.

Usage:
    async def poll_cycle():
        # Do work...
        pass

    scheduler = ScheduledLoop(2.0, poll_cycle, name="poll")
    await scheduler.start()

    # Later (waits for an in-flight run to finish):
    await scheduler.stop()
    print(f"Skipped cycles: {scheduler.skipped_count}")
"""

import asyncio
import time
from typing import Callable, Awaitable
from common.logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class ScheduledLoop:
    """
    Precise interval scheduler with a single in-flight run.

    The timer fires at wall-clock boundaries independent of how long the
    callback takes. At most one callback run exists at any time.

    Attributes:
        interval: The interval in seconds between firings
        callback: Async function to call each interval
        skipped_count: Number of firings skipped (overlap or missed ticks)
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
    ):
        """
        Initialize a scheduled loop.

        Args:
            interval_seconds: Time between firings (supports sub-second)
            callback: Async function to call each interval
            name: Name for logging/identification
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.interval = interval_seconds
        self.callback = callback
        self.name = name

        self._next_run: float = 0
        self._running = False
        self._timer_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None

        # Observability metrics
        self._drift_total: float = 0
        self._skipped_count: int = 0
        self._overlap_skips: int = 0
        self._execution_count: int = 0
        self._error_count: int = 0
        self._last_execution_time: float = 0
        self._last_drift_ms: float = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_callback_running(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def start(self) -> None:
        """Start the scheduled loop in a background task (no-op if running)."""
        if self._running:
            return

        self._running = True
        self._timer_task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """
        Stop firing and wait for an in-flight callback run to finish.

        The in-flight run is not cancelled.
        """
        self._running = False

        if self._timer_task:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        if self._inflight and not self._inflight.done():
            logger.info(f"Scheduler '{self.name}' waiting for in-flight run to finish")
            await asyncio.wait({self._inflight})
        self._inflight = None

    async def _execute(self) -> None:
        """Run the callback once, recording timing and errors."""
        start = time.monotonic()
        try:
            await self.callback()
            self._execution_count += 1
        except Exception as e:
            self._error_count += 1
            logger.error(f"Scheduled callback '{self.name}' error: {e}", exc_info=True)
        finally:
            self._last_execution_time = time.monotonic() - start

    def _fire(self) -> None:
        """Start a callback run unless the previous one is still running."""
        if self.is_callback_running:
            self._skipped_count += 1
            self._overlap_skips += 1
            logger.warning(
                f"Scheduler '{self.name}' skipped a run: previous run still in progress",
                extra={"skipped_count": self._skipped_count},
            )
            return

        self._inflight = asyncio.create_task(self._execute())

    async def _run(self) -> None:
        """Timer loop that fires at exact intervals."""
        # Align first run to next interval boundary
        now = time.time()
        self._next_run = ((now // self.interval) + 1) * self.interval

        while self._running:
            sleep_duration = self._next_run - time.time()
            if sleep_duration > 0:
                await asyncio.sleep(sleep_duration)

            if not self._running:
                break

            # Track drift (how late we are)
            drift = time.time() - self._next_run

            if drift > 30:
                # Clock jump (NTP sync after boot, suspend/resume), not real drift
                logger.info(
                    f"Scheduler '{self.name}' clock jump detected ({drift:.0f}s), realigning"
                )
                self._last_drift_ms = 0
            else:
                self._drift_total += max(0, drift)
                self._last_drift_ms = drift * 1000

            self._fire()

            # Skip missed intervals (don't queue up missed firings)
            now = time.time()
            skipped = 0
            while self._next_run <= now:
                self._next_run += self.interval
                skipped += 1

            # First skip is expected (the one we just fired)
            if skipped > 1:
                self._skipped_count += skipped - 1
                logger.warning(
                    f"Scheduler '{self.name}' missed {skipped - 1} intervals"
                )

    @property
    def drift_seconds(self) -> float:
        """Total accumulated drift in seconds."""
        return self._drift_total

    @property
    def skipped_count(self) -> int:
        """Number of firings skipped."""
        return self._skipped_count

    @property
    def overlap_skips(self) -> int:
        """Firings skipped because the previous run was still in flight."""
        return self._overlap_skips

    @property
    def execution_count(self) -> int:
        """Total number of successful callback runs."""
        return self._execution_count

    @property
    def last_execution_time(self) -> float:
        """Duration of last callback run in seconds."""
        return self._last_execution_time

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
            "overlap_skips": self._overlap_skips,
            "last_execution_s": round(self._last_execution_time, 3),
        }
