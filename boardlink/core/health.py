"""Connection liveness polling."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from boardlink.core.periodic import PeriodicTask

LOGGER = logging.getLogger(__name__)


class HealthMonitor:
    """Polls `probe` and calls `on_lost` once, the first time it returns False.

    Serial drivers do not signal cable removal on their own, so an open port
    is watched until it reports closed.
    """

    def __init__(
        self,
        probe: Callable[[], bool],
        on_lost: Callable[[], Awaitable[None]],
        *,
        interval_s: float = 0.01,
    ) -> None:
        self._probe = probe
        self._on_lost = on_lost
        self._poller = PeriodicTask("connection-health", interval_s, self._tick)

    @property
    def running(self) -> bool:
        return self._poller.running

    def start(self) -> None:
        self._poller.start()

    def stop(self) -> None:
        self._poller.stop()

    async def aclose(self) -> None:
        await self._poller.aclose()

    async def _tick(self) -> None:
        if self._probe():
            return
        self._poller.stop()
        LOGGER.warning("Port no longer open; treating as unplugged")
        await self._on_lost()
