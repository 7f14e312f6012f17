"""Supervised periodic background tasks for aumos-access-ledger.

Replaces constructor-started timers with tasks whose lifecycle is owned by
the application lifespan: started explicitly, stopped explicitly, and a
failing tick is logged without killing the loop.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

from aumos_access_ledger.observability import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """Runs an async callable every ``interval_seconds`` until stopped.

    Args:
        name: Name used in logs.
        interval_seconds: Delay between the end of one tick and the next.
        func: Coroutine function executed on each tick.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[object]],
    ) -> None:
        self.name = name
        self._interval_seconds = interval_seconds
        self._func = func
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("Periodic task already running", task=self.name)
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        logger.info("Started periodic task", task=self.name, interval_seconds=self._interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Stopped periodic task", task=self.name, ticks=self.ticks, failures=self.failures)

    async def run_once(self) -> None:
        """Execute one tick, logging (not raising) its failure."""
        try:
            await self._func()
        except Exception:
            self.failures += 1
            logger.exception("Periodic task tick failed", task=self.name)
        finally:
            self.ticks += 1

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.run_once()


class BackgroundSupervisor:
    """Starts and stops a group of periodic tasks together."""

    def __init__(self, tasks: list[PeriodicTask] | None = None) -> None:
        self._tasks: list[PeriodicTask] = list(tasks or [])

    def add(self, task: PeriodicTask) -> None:
        self._tasks.append(task)

    @property
    def tasks(self) -> list[PeriodicTask]:
        return list(self._tasks)

    def start(self) -> None:
        for task in self._tasks:
            task.start()

    async def stop(self) -> None:
        for task in reversed(self._tasks):
            await task.stop()
