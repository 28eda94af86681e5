"""Serial port implementation using pyserial."""

from __future__ import annotations

import asyncio
import threading

import serial

from boardlink.core.errors import OpenFailedError, ReadFailedError, WriteFailedError
from boardlink.core.model import ConnectionConfig


class PySerialPort:
    """Async facade over `serial.Serial`; blocking calls run in worker threads.

    pyserial keeps `is_open` true after the device disappears, so a failed
    read marks the port lost and `is_open` reports False from then on.
    """

    def __init__(self, path: str, config: ConnectionConfig, *, read_timeout_s: float = 0.1) -> None:
        self.path = path
        self._serial = serial.Serial()
        self._serial.port = path
        self._serial.baudrate = config.baud_rate
        self._serial.bytesize = config.data_bits
        self._serial.stopbits = config.stop_bits
        self._serial.timeout = read_timeout_s
        self._lost = False
        self._read_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._serial.is_open and not self._lost

    async def open(self) -> None:
        try:
            await asyncio.to_thread(self._serial.open)
        except (serial.SerialException, OSError, ValueError) as exc:
            raise OpenFailedError(f"Could not open {self.path}: {exc}") from exc

    async def close(self) -> None:
        await asyncio.to_thread(self._close_blocking)

    async def read(self) -> bytes:
        try:
            return await asyncio.to_thread(self._read_blocking)
        except (serial.SerialException, OSError, TypeError) as exc:
            self._lost = True
            raise ReadFailedError(f"Error while reading from {self.path}: {exc}") from exc

    async def write(self, data: bytes) -> int:
        try:
            written = await asyncio.to_thread(self._serial.write, data)
        except (serial.SerialException, OSError) as exc:
            raise WriteFailedError(f"Error while attempting to write: {exc}") from exc
        return len(data) if written is None else written

    async def drain(self) -> None:
        try:
            await asyncio.to_thread(self._serial.flush)
        except (serial.SerialException, OSError) as exc:
            raise WriteFailedError(f"Error while draining {self.path}: {exc}") from exc

    def _read_blocking(self) -> bytes:
        with self._read_lock:
            if not self._serial.is_open:
                return b""
            return self._serial.read(max(1, self._serial.in_waiting))

    def _close_blocking(self) -> None:
        # Waits out an in-flight read (bounded by the read timeout).
        with self._read_lock:
            self._serial.close()
