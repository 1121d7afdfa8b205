"""Periodic background tasks on the asyncio loop.

Each task sleeps on its stop event with a timeout, runs its job when the
timeout elapses, and exits as soon as the event is set.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from dualmem.errors import BackgroundTaskError

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run ``job`` every ``interval`` seconds until stopped."""

    def __init__(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[None]],
    ) -> None:
        self.name = name
        self.interval = interval
        self._job = job
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        logger.debug("Periodic task %s started (every %.1fs)", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.debug("Periodic task %s stopped", self.name)

    async def run_once(self) -> None:
        """Run the job a single time, logging failures instead of raising."""
        self.runs += 1
        try:
            await self._job()
        except Exception as e:
            self.failures += 1
            logger.error("%s", BackgroundTaskError(self.name, e))

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

            await self.run_once()
