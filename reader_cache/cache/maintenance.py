"""
Periodic maintenance task owned by a cache instance.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class MaintenanceTask:
    """
    Runs an async callback on a fixed interval until stopped.

    The owner starts it from ``initialize()`` and stops it from ``dispose()``.
    A failing run is logged and the schedule continues.
    """

    def __init__(self, name: str, interval: timedelta, callback: Callable[[], Awaitable[object]]):
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"maintenance:{self.name}")
        logger.debug(f"Started maintenance task {self.name} every {self.interval}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Stopped maintenance task {self.name}")

    async def run_once(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Maintenance task {self.name} failed: {e}", exc_info=True)
        finally:
            self.runs += 1

    async def _run(self) -> None:
        seconds = self.interval.total_seconds()
        while True:
            await asyncio.sleep(seconds)
            await self.run_once()
