"""
Worker Reaper

Reclaims finished connection workers so they never pile up.

Each worker task is registered with track(). When any tracked task
finishes, its done-callback runs a sweep that reaps every finished
task, not just the one that fired: several workers can finish within
the same loop iteration and their callbacks may find each other's
work already done. A sweep never blocks and never raises.

Reaping a task means retrieving its outcome (so asyncio never warns
about an unretrieved exception), logging it, and dropping the last
reference to it.
"""

import asyncio
import logging
from typing import Callable, Optional, Set

logger = logging.getLogger(__name__)

# Called with each reaped task's result (None when it raised or was cancelled)
ReapCallback = Callable[[asyncio.Task, Optional[object]], None]


class Reaper:
    """Supervises worker tasks and sweeps them once they finish."""

    def __init__(self, on_reap: Optional[ReapCallback] = None):
        self._tasks: Set[asyncio.Task] = set()
        self._on_reap = on_reap

        # Statistics
        self.tracked = 0
        self.reaped = 0
        self.failed = 0

    @property
    def active(self) -> int:
        """Tracked workers that are still running."""
        return sum(1 for task in self._tasks if not task.done())

    @property
    def unreaped(self) -> int:
        """Workers that have finished but not been swept yet."""
        return sum(1 for task in self._tasks if task.done())

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Register a worker task for reaping."""
        self._tasks.add(task)
        self.tracked += 1
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        try:
            self.sweep()
        except Exception:
            logger.exception("Reaper sweep failed")

    def sweep(self) -> int:
        """
        Reap every finished worker without waiting for running ones.

        Returns:
            Number of workers reaped by this sweep
        """
        finished = [task for task in self._tasks if task.done()]
        for task in finished:
            self._tasks.discard(task)
            self._reap(task)
        return len(finished)

    def _reap(self, task: asyncio.Task):
        name = task.get_name() if hasattr(task, 'get_name') else repr(task)
        result = None
        if task.cancelled():
            self.failed += 1
            logger.info(f"Worker {name} cancelled")
        elif task.exception() is not None:
            self.failed += 1
            exc = task.exception()
            logger.error(f"Worker {name} crashed: {exc!r}")
        else:
            result = task.result()
            if getattr(result, 'status', 0) != 0:
                self.failed += 1

        self.reaped += 1

        if self._on_reap:
            try:
                self._on_reap(task, result)
            except Exception:
                logger.exception("Reap callback failed")

    async def drain(self):
        """Wait for every tracked worker to finish, then reap them."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            self.sweep()

    def cancel_all(self) -> int:
        """Cancel all running workers; returns how many were cancelled."""
        count = 0
        for task in self._tasks:
            if not task.done():
                task.cancel()
                count += 1
        return count

    def get_stats(self) -> dict:
        """Get reaper statistics."""
        return {
            'tracked': self.tracked,
            'active': self.active,
            'unreaped': self.unreaped,
            'reaped': self.reaped,
            'failed': self.failed,
        }
