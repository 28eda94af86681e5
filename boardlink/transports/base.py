"""Transport interfaces and shared session bookkeeping."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

from boardlink.core.errors import MethodNotFoundError

LOGGER = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


class RemoteChannel(Protocol):
    def send_remote_request(self, method: str, params: dict[str, Any] | None) -> None:
        """Push an event to the host application."""


class SerialPort(Protocol):
    path: str

    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def read(self) -> bytes: ...

    async def write(self, data: bytes) -> int: ...

    async def drain(self) -> None: ...


class PeripheralSession(Protocol):
    """RPC surface every transport kind exposes to the host."""

    async def did_receive_call(self, method: str, params: dict[str, Any] | None) -> Any: ...

    async def dispose(self) -> None: ...


class Dispatcher:
    """Routes RPC calls to handlers one at a time and pushes events back.

    Sessions compose a `Dispatcher` rather than inheriting from it; after
    `dispose()` pushed events are dropped.
    """

    def __init__(self, channel: RemoteChannel, handlers: Mapping[str, Handler]) -> None:
        self._channel: RemoteChannel | None = channel
        self._handlers = dict(handlers)
        self._lock = asyncio.Lock()

    @property
    def methods(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    async def dispatch(self, method: str, params: dict[str, Any] | None) -> Any:
        handler = self._handlers.get(method)
        if handler is None:
            raise MethodNotFoundError(f"Method not found: {method}")
        async with self._lock:
            LOGGER.debug("Dispatching %s", method)
            return await handler(params or {})

    def send(self, method: str, params: dict[str, Any] | None = None) -> None:
        if self._channel is None:
            LOGGER.debug("Dropping %s event after dispose", method)
            return
        self._channel.send_remote_request(method, params)

    def dispose(self) -> None:
        self._channel = None
