"""Cancellable periodic asyncio task."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

LOGGER = logging.getLogger(__name__)


class PeriodicTask:
    """Run `callback` every `interval_s` seconds until stopped.

    `stop()` may be called from inside the callback itself; in that case the
    loop exits once the callback returns instead of cancelling the running
    task out from under it.
    """

    def __init__(
        self,
        name: str,
        interval_s: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        self.name = name
        self.interval_s = interval_s
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()

    async def aclose(self) -> None:
        task = self._task
        self.stop()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            try:
                await self._callback()
            except Exception:
                LOGGER.exception("Periodic task %s tick failed", self.name)
            if self._task is not me:
                return
            await asyncio.sleep(self.interval_s)
