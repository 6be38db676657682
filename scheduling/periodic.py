"""
Periodic Task — Fixed-rate asyncio timer with per-firing fault isolation.
"""

from __future__ import annotations
import asyncio
import time
from typing import Awaitable, Callable, Optional
import logging

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Fires ``action`` immediately on start and then every ``interval`` seconds.

    A firing that overruns its period delays only the next firing of this
    task. Exceptions raised by a firing are logged and never stop the timer.
    """

    def __init__(self, name: str, interval: float, action: Callable[[], Awaitable[None]]):
        self.name = name
        self.interval = interval
        self.action = action
        self.runs = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._firing = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_firing(self) -> bool:
        return self._firing

    def start(self):
        if self.is_running:
            logger.warning(f"[SCHED] {self.name}: already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info(f"[SCHED] {self.name}: started, every {self.interval}s")

    async def stop(self, grace: float = 30.0) -> bool:
        """
        Stop firing and wait up to ``grace`` seconds for an in-flight firing.
        Returns False if the firing had to be cancelled.
        """
        if self._task is None:
            return True
        self._stop_event.set()
        task, self._task = self._task, None

        done, _ = await asyncio.wait({task}, timeout=grace)
        if done:
            logger.info(f"[SCHED] {self.name}: stopped")
            return True

        logger.warning(f"[SCHED] {self.name}: still running after {grace}s, cancelling")
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return False

    async def _loop(self):
        next_fire = time.monotonic()
        while not self._stop_event.is_set():
            self._firing = True
            try:
                await self.action()
            except Exception as e:
                self.failures += 1
                logger.error(f"[SCHED] {self.name}: firing failed: {e}", exc_info=True)
            finally:
                self._firing = False
                self.runs += 1

            next_fire += self.interval
            delay = next_fire - time.monotonic()
            if delay < 0:
                # Overran one or more periods: fire again right away, no catch-up burst.
                next_fire = time.monotonic()
                delay = 0
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
