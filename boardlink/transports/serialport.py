"""Serial-port device session: discovery, connection, I/O relay, uploads."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Mapping
from typing import Any

from boardlink.core.encoding import decode_message, encode_message
from boardlink.core.errors import (
    AlreadyConnectedError,
    BoardlinkError,
    InvalidEncodingError,
    InvalidFilterError,
    InvalidStateError,
    NotConnectedError,
    OpenFailedError,
    ReadFailedError,
    SessionClosingError,
    UnknownPeripheralError,
    UnsupportedBoardError,
    UploadError,
)
from boardlink.core.health import HealthMonitor
from boardlink.core.model import (
    ConnectionConfig,
    DiscoveryFilter,
    Peripheral,
    SessionState,
    UploadRequest,
)
from boardlink.core.runner import SubprocessRunner
from boardlink.core.scanner import PeripheralScanner, PortLister
from boardlink.core.settings import Settings
from boardlink.transports.base import Dispatcher, RemoteChannel, SerialPort
from boardlink.transports.pyserial_port import PySerialPort
from boardlink.upload.arduino import ArduinoUploader
from boardlink.upload.base import Uploader, run_upload
from boardlink.upload.microbit import MicrobitUploader

LOGGER = logging.getLogger(__name__)

PortFactory = Callable[[str, ConnectionConfig], SerialPort]

UPLOADERS: dict[str, type[Uploader]] = {
    ArduinoUploader.board_type: ArduinoUploader,
    MicrobitUploader.board_type: MicrobitUploader,
}

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.DISCOVERING, SessionState.CONNECTING}),
    SessionState.DISCOVERING: frozenset(
        {SessionState.DISCOVERING, SessionState.IDLE, SessionState.CONNECTING}
    ),
    SessionState.CONNECTING: frozenset({SessionState.CONNECTED, SessionState.IDLE}),
    SessionState.CONNECTED: frozenset({SessionState.DISCONNECTING}),
    SessionState.DISCONNECTING: frozenset({SessionState.IDLE}),
}


class SerialportSession:
    """One long-lived session per RPC client, owning at most one open port.

    Teardown runs under a lock so concurrent `disconnect()` calls close the
    port once; writes hold a separate I/O lock that teardown waits on before
    draining, and writes arriving mid-teardown raise `SessionClosingError`.
    """

    def __init__(
        self,
        channel: RemoteChannel,
        settings: Settings,
        *,
        port_factory: PortFactory | None = None,
        lister: PortLister | None = None,
        runner: SubprocessRunner | None = None,
        uploaders: Mapping[str, type[Uploader]] | None = None,
    ) -> None:
        self.settings = settings
        self._dispatcher = Dispatcher(
            channel,
            {
                "discover": self._rpc_discover,
                "connect": self._rpc_connect,
                "disconnect": self._rpc_disconnect,
                "write": self._rpc_write,
                "read": self._rpc_read,
                "upload": self._rpc_upload,
                "uploadFirmware": self._rpc_upload_firmware,
                "getServices": self._rpc_get_services,
                "pingMe": self._rpc_ping_me,
            },
        )
        self._scanner = PeripheralScanner(
            self._report_peripheral,
            device_names=settings.device_names,
            lister=lister,
            interval_s=settings.scan_interval_s,
        )
        self._health = HealthMonitor(
            self._port_is_open,
            self._on_port_lost,
            interval_s=settings.health_interval_s,
        )
        self._port_factory: PortFactory = port_factory or PySerialPort
        self._runner = runner or SubprocessRunner(settings.subprocess_timeout_s)
        self._uploaders = dict(UPLOADERS if uploaders is None else uploaders)

        self._state = SessionState.IDLE
        self._port: SerialPort | None = None
        self._last_connection: tuple[str, ConnectionConfig] | None = None
        self._receiver: asyncio.Task[None] | None = None
        self._teardown_lock = asyncio.Lock()
        self._io_lock = asyncio.Lock()
        self._disposed = False
        self.read_enabled = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._port is not None

    @property
    def peripherals(self) -> dict[str, Peripheral]:
        return self._scanner.peripherals

    @property
    def scanning(self) -> bool:
        return self._scanner.scanning

    @property
    def monitoring(self) -> bool:
        return self._health.running

    async def did_receive_call(self, method: str, params: dict[str, Any] | None) -> Any:
        return await self._dispatcher.dispatch(method, params)

    def send_event(self, method: str, params: dict[str, Any] | None = None) -> None:
        self._dispatcher.send(method, params)

    # State machine

    def _transition(self, new: SessionState) -> None:
        if new not in _TRANSITIONS[self._state]:
            raise InvalidStateError(f"Cannot go from {self._state.value} to {new.value}")
        LOGGER.debug("Session %s -> %s", self._state.value, new.value)
        self._state = new

    def _check_not_disposed(self) -> None:
        if self._disposed:
            raise InvalidStateError("session has been disposed")

    async def discover(self, discovery_filter: DiscoveryFilter) -> None:
        self._check_not_disposed()
        if self._port is not None:
            raise AlreadyConnectedError("cannot discover when connected")
        if not discovery_filter.pnpid:
            raise InvalidFilterError("discovery request must include filters")
        self._transition(SessionState.DISCOVERING)
        self._scanner.start(discovery_filter)

    async def connect(
        self,
        peripheral_id: str,
        config: ConnectionConfig,
        *,
        after_upload: bool = False,
    ) -> None:
        self._check_not_disposed()
        if self._port is not None:
            raise AlreadyConnectedError("already connected to peripheral")
        peripheral = self._scanner.get(peripheral_id)
        if peripheral is None:
            raise UnknownPeripheralError(f"invalid peripheral ID: {peripheral_id}")

        self._scanner.stop()
        self._transition(SessionState.CONNECTING)
        port = self._port_factory(peripheral.id, config)
        try:
            await port.open()
        except BaseException as exc:
            self._transition(SessionState.IDLE)
            if after_upload and isinstance(exc, OpenFailedError):
                LOGGER.warning("Board did not come back after upload: %s", exc)
                self.send_event("peripheralUnplug", {})
            raise

        if self._disposed:
            # dispose() ran while the port was opening.
            try:
                await port.close()
            finally:
                self._transition(SessionState.IDLE)
            raise InvalidStateError(f"session was disposed while opening {peripheral.id}")

        self._port = port
        self._last_connection = (peripheral.id, config)
        self._transition(SessionState.CONNECTED)
        LOGGER.info("Connected to %s at %s baud", peripheral.id, config.baud_rate)
        self._receiver = asyncio.get_running_loop().create_task(
            self._receive(port), name=f"receive-{peripheral.id}"
        )
        self._health.start()

    async def reconnect(self) -> None:
        if self._last_connection is None:
            raise NotConnectedError("no previous connection to restore")
        peripheral_id, config = self._last_connection
        await self.connect(peripheral_id, config, after_upload=True)

    async def disconnect(self) -> None:
        async with self._teardown_lock:
            port = self._port
            if port is None:
                return
            self._transition(SessionState.DISCONNECTING)
            self._health.stop()
            try:
                await self._stop_receiver()
                async with self._io_lock:
                    # An unplugged port still holds its OS handle; only drain is skipped.
                    try:
                        if port.is_open:
                            await port.drain()
                    finally:
                        await port.close()
            finally:
                self._port = None
                self._transition(SessionState.IDLE)
                LOGGER.info("Disconnected from %s", port.path)

    async def write(self, message: str, encoding: str) -> int:
        if self._state is SessionState.DISCONNECTING:
            raise SessionClosingError("port is closing; write dropped")
        if self._port is None:
            raise NotConnectedError("not connected to a peripheral")
        data = decode_message(message, encoding)
        async with self._io_lock:
            port = self._port
            if port is None or self._state is not SessionState.CONNECTED:
                raise SessionClosingError("port is closing; write dropped")
            await port.write(data)
            await port.drain()
        LOGGER.debug("Wrote %d bytes to %s", len(data), port.path)
        return len(data)

    def read(self, enable: bool = True) -> None:
        self.read_enabled = enable

    def get_services(self) -> list[str]:
        return []

    async def upload(self, request: UploadRequest) -> bool:
        uploader = self._make_uploader(request.board_type, request.board_config)
        if uploader is None:
            return False
        return await run_upload(self, uploader, request.source_code)

    async def upload_firmware(self, board_config: dict[str, Any]) -> bool:
        uploader = self._make_uploader(str(board_config.get("type", "")), board_config)
        if uploader is None:
            return False
        return await run_upload(self, uploader)

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        await self._scanner.aclose()
        try:
            await self.disconnect()
        except (BoardlinkError, OSError) as exc:
            LOGGER.warning("Error while closing port during dispose: %s", exc)
        await self._health.aclose()
        self._scanner.clear()
        self._last_connection = None
        self.read_enabled = False
        if self._state is SessionState.DISCOVERING:
            self._transition(SessionState.IDLE)
        self._dispatcher.dispose()

    # Internals

    def _make_uploader(self, board_type: str, board_config: dict[str, Any]) -> Uploader | None:
        if self._port is None:
            raise NotConnectedError("upload requires a connected peripheral")
        try:
            uploader_cls = self._uploaders.get(board_type)
            if uploader_cls is None:
                raise UnsupportedBoardError(f"Unsupported board type '{board_type}'")
            return uploader_cls(
                self._port.path,
                board_config,
                self.settings,
                self._send_stdout,
                self._runner,
            )
        except UploadError as exc:
            self.send_event("uploadError", {"message": f"{exc}\n"})
            return None

    def _send_stdout(self, message: str) -> None:
        self.send_event("uploadStdout", {"message": message})

    def _report_peripheral(self, peripheral: Peripheral) -> None:
        self.send_event(
            "didDiscoverPeripheral",
            {"peripheralId": peripheral.id, "name": peripheral.name},
        )

    def _port_is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    async def _on_port_lost(self) -> None:
        await self.disconnect()
        self.send_event("peripheralUnplug", {})

    async def _receive(self, port: SerialPort) -> None:
        while port.is_open:
            try:
                data = await port.read()
            except ReadFailedError as exc:
                LOGGER.debug("Receive loop stopped: %s", exc)
                return
            if data and self.read_enabled:
                self.send_event("onMessage", encode_message(data))

    async def _stop_receiver(self) -> None:
        task, self._receiver = self._receiver, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # RPC handlers

    async def _rpc_discover(self, params: dict[str, Any]) -> None:
        await self.discover(DiscoveryFilter.from_params(params.get("filters")))

    async def _rpc_connect(self, params: dict[str, Any]) -> None:
        config = ConnectionConfig.from_params(params.get("peripheralConfig"))
        await self.connect(str(params.get("peripheralId")), config)

    async def _rpc_disconnect(self, params: dict[str, Any]) -> None:
        await self.disconnect()

    async def _rpc_write(self, params: dict[str, Any]) -> int:
        return await self.write(params.get("message", ""), params.get("encoding", "utf8"))

    async def _rpc_read(self, params: dict[str, Any]) -> None:
        self.read(bool(params.get("enable", True)))

    async def _rpc_upload(self, params: dict[str, Any]) -> None:
        if self._port is None:
            raise NotConnectedError("upload requires a connected peripheral")
        try:
            request = UploadRequest.from_params(params)
        except InvalidEncodingError as exc:
            self.send_event("uploadError", {"message": f"{exc}\n"})
            return
        await self.upload(request)

    async def _rpc_upload_firmware(self, params: dict[str, Any]) -> None:
        await self.upload_firmware(params)

    async def _rpc_get_services(self, params: dict[str, Any]) -> list[str]:
        return self.get_services()

    async def _rpc_ping_me(self, params: dict[str, Any]) -> str:
        self.send_event("ping")
        return "willPing"
