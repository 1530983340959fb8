"""
Module: icon_pack.progress
Purpose: Cosmetic per-job progress ramps driven by the event loop

The backend never reports real progress, only start and finish. To give the
user a sense of motion each running job gets a linear ramp that climbs from
0 toward the ceiling over a fixed duration. The real terminal event always
wins: the tracker stops the ramp and pins the job at 100.
"""

import asyncio
import logging
from typing import Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)

# Called with (key, percent) on every tick
TickCallback = Callable[[Hashable, float], None]


class ProgressEstimator:
    """
    Keyed set of independent progress ramps.

    Each key owns at most one asyncio task at a time. Ramps for different
    keys never interfere with each other.

    Example:
        >>> estimator = ProgressEstimator(on_tick=print, tick_seconds=0.1)
        >>> estimator.start("flux-gen1", duration=40.0)
        >>> estimator.is_running("flux-gen1")
        True
        >>> estimator.stop("flux-gen1")
    """

    def __init__(
        self,
        on_tick: Optional[TickCallback] = None,
        tick_seconds: float = 0.1,
        ceiling: float = 100.0,
    ):
        """
        Initialize the estimator.

        Args:
            on_tick: Receives every new estimate
            tick_seconds: Wall clock time between ticks
            ceiling: Value at which a ramp stops on its own
        """
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self.on_tick = on_tick
        self.tick_seconds = tick_seconds
        self.ceiling = min(100.0, ceiling)
        self._tasks: Dict[Hashable, asyncio.Task] = {}
        self._values: Dict[Hashable, float] = {}

    def start(self, key: Hashable, duration: float, initial: float = 0.0) -> None:
        """
        Start a ramp for ``key``, cancelling and replacing any running one.

        Must be called from inside a running event loop.

        Args:
            key: Job key the ramp belongs to
            duration: Seconds to climb from 0 to the ceiling
            initial: Starting value
        """
        self.stop(key)
        steps = max(1.0, duration / self.tick_seconds)
        increment = self.ceiling / steps
        self._values[key] = initial
        task = asyncio.get_running_loop().create_task(self._ramp(key, increment))
        self._tasks[key] = task
        logger.debug(f"Progress ramp started for {key} ({duration:.1f}s)")

    def ensure(self, key: Hashable, duration: float, initial: float = 0.0) -> bool:
        """
        Start a ramp unless one is already running for ``key``.

        Returns:
            True if a new ramp was started
        """
        if self.is_running(key):
            return False
        self.start(key, duration, initial)
        return True

    def stop(self, key: Hashable) -> bool:
        """
        Cancel the ramp for ``key`` immediately.

        Returns:
            True if a running ramp was cancelled
        """
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        if task.done():
            return False
        task.cancel()
        logger.debug(f"Progress ramp stopped for {key}")
        return True

    def stop_all(self) -> int:
        """Cancel every ramp. Returns how many were still running."""
        stopped = 0
        for key in list(self._tasks):
            if self.stop(key):
                stopped += 1
        return stopped

    def is_running(self, key: Hashable) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def running_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def value(self, key: Hashable) -> float:
        return self._values.get(key, 0.0)

    async def _ramp(self, key: Hashable, increment: float) -> None:
        current = asyncio.current_task()
        try:
            while self._values[key] < self.ceiling:
                await asyncio.sleep(self.tick_seconds)
                self._values[key] = min(self.ceiling, self._values[key] + increment)
                if self.on_tick is not None:
                    self.on_tick(key, self._values[key])
        finally:
            # A replacement ramp may already own the slot
            if self._tasks.get(key) is current:
                del self._tasks[key]
