"""Fixed-cadence background task with explicit cancellation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

_logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run a synchronous callback every ``interval`` seconds on the loop.

    A callback that raises is logged and the schedule continues; one bad
    tick never stops the timer.
    """

    def __init__(self, callback: Callable[[], object], interval: float, *, name: str = "periodic") -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._callback = callback
        self._interval = interval
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() + self._interval
        while True:
            await asyncio.sleep(max(next_at - loop.time(), 0.0))
            next_at += self._interval
            try:
                self._callback()
            except Exception:
                _logger.exception("%s tick failed", self._name)
