"""Serial peripheral registry and periodic scanner."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from serial.tools import list_ports

from boardlink.core.device_match import match_port
from boardlink.core.errors import InvalidFilterError
from boardlink.core.model import DiscoveryFilter, Peripheral
from boardlink.core.periodic import PeriodicTask

LOGGER = logging.getLogger(__name__)

PortLister = Callable[[], Iterable[Any]]


def enumerate_peripherals(
    discovery_filter: DiscoveryFilter,
    device_names: Mapping[str, str],
    lister: PortLister | None = None,
) -> list[Peripheral]:
    ports = (lister or list_ports.comports)()
    found: list[Peripheral] = []
    for port in ports:
        peripheral = match_port(port, discovery_filter, device_names)
        if peripheral is not None:
            found.append(peripheral)
    return found


class PeripheralScanner:
    """Polls the OS port list and reports each matching port once per scan."""

    def __init__(
        self,
        on_discover: Callable[[Peripheral], None],
        *,
        device_names: Mapping[str, str] | None = None,
        lister: PortLister | None = None,
        interval_s: float = 0.1,
    ) -> None:
        self._on_discover = on_discover
        self._device_names = dict(device_names or {})
        self._lister = lister
        self._filter: DiscoveryFilter | None = None
        self._registry: dict[str, Peripheral] = {}
        self._poller = PeriodicTask("peripheral-scan", interval_s, self._tick)

    @property
    def scanning(self) -> bool:
        return self._poller.running

    @property
    def peripherals(self) -> dict[str, Peripheral]:
        return dict(self._registry)

    def get(self, peripheral_id: str) -> Peripheral | None:
        return self._registry.get(peripheral_id)

    def start(self, discovery_filter: DiscoveryFilter) -> None:
        if not discovery_filter.pnpid:
            raise InvalidFilterError("discovery request must include filters")
        self._poller.stop()
        self._registry.clear()
        self._filter = discovery_filter
        LOGGER.debug("Starting scan with filter %s", sorted(discovery_filter.pnpid))
        self._poller.start()

    def stop(self) -> None:
        if self._poller.running:
            LOGGER.debug("Stopping scan")
        self._poller.stop()

    async def aclose(self) -> None:
        await self._poller.aclose()

    def clear(self) -> None:
        self._registry.clear()
        self._filter = None

    async def scan_once(self) -> list[Peripheral]:
        """Enumerate ports once; return the matches not reported before."""
        if self._filter is None:
            return []
        matches = await asyncio.to_thread(
            enumerate_peripherals, self._filter, self._device_names, self._lister
        )
        found: list[Peripheral] = []
        for peripheral in matches:
            if peripheral.id in self._registry:
                continue
            self._registry[peripheral.id] = peripheral
            found.append(peripheral)
        return found

    async def _tick(self) -> None:
        for peripheral in await self.scan_once():
            LOGGER.info("Discovered %s", peripheral.name)
            self._on_discover(peripheral)
