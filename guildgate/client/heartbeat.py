"""
MODULE OVERVIEW:
A cancellable, re-schedulable periodic task used for gateway heartbeats.

WHAT IS HAPPENING HERE:
The connection starts beating on a default interval before the server says
anything, and the Hello frame then dictates the real interval. `reset()` cancels
the pending sleep and starts a fresh schedule, so a tick that was due under the
old interval can never fire afterwards.
"""
import asyncio
import contextlib
from typing import Awaitable, Callable

from loguru import logger

SleepFn = Callable[[float], Awaitable[None]]


class PeriodicTask:
    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        interval_s: float,
        *,
        name: str = "periodic",
        sleep: SleepFn = asyncio.sleep,
    ):
        self._callback = callback
        self._sleep = sleep
        self._name = name
        self.interval_s = interval_s
        self._task: asyncio.Task | None = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running or self._stopped:
            return
        self._task = asyncio.create_task(self._loop(self.interval_s), name=self._name)

    def reset(self, interval_s: float) -> None:
        """
        Reschedule on a new interval; the next tick is `interval_s` from now.
        Does nothing once the task has been stopped.
        """
        if interval_s <= 0:
            raise ValueError(f"interval must be positive, got {interval_s}")
        if self._stopped:
            logger.debug(f"task={self._name} action=reset_ignored reason=stopped")
            return
        if self._task is not None:
            self._task.cancel()
        self.interval_s = interval_s
        self._task = asyncio.create_task(self._loop(interval_s), name=self._name)
        logger.debug(f"task={self._name} action=reset interval_s={interval_s}")

    async def stop(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _loop(self, interval_s: float) -> None:
        while True:
            await self._sleep(interval_s)
            await self._callback()
