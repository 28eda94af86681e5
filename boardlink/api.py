"""Stable public API for hosts embedding boardlink.

A host creates one session per RPC client with `create_session`, forwards
inbound calls to `did_receive_call`, and receives push events through the
`RemoteChannel` it supplies.
"""

from __future__ import annotations

from typing import Any

from boardlink.core.errors import (
    AlreadyConnectedError,
    BoardlinkError,
    DiscoveryError,
    FirmwareProbeFailure,
    InvalidEncodingError,
    InvalidFilterError,
    InvalidStateError,
    MethodNotFoundError,
    NotConnectedError,
    OpenFailedError,
    PortIOError,
    SessionClosingError,
    SessionConnectError,
    SettingsError,
    SubprocessError,
    UnknownPeripheralError,
    UnsupportedBoardError,
    UploadBuildError,
    UploadError,
    UploadFlashError,
    WriteFailedError,
)
from boardlink.core.model import (
    ConnectionConfig,
    DiscoveryFilter,
    Peripheral,
    SessionState,
    SubprocessResult,
    UploadRequest,
)
from boardlink.core.runner import SubprocessRunner
from boardlink.core.settings import Settings, load_settings
from boardlink.transports.base import PeripheralSession, RemoteChannel, SerialPort
from boardlink.transports.pyserial_port import PySerialPort
from boardlink.transports.serialport import SerialportSession

__all__ = [
    "AlreadyConnectedError",
    "BoardlinkError",
    "DiscoveryError",
    "FirmwareProbeFailure",
    "InvalidEncodingError",
    "InvalidFilterError",
    "InvalidStateError",
    "MethodNotFoundError",
    "NotConnectedError",
    "OpenFailedError",
    "PortIOError",
    "SessionClosingError",
    "SessionConnectError",
    "SettingsError",
    "SubprocessError",
    "UnknownPeripheralError",
    "UnsupportedBoardError",
    "UploadBuildError",
    "UploadError",
    "UploadFlashError",
    "WriteFailedError",
    "ConnectionConfig",
    "DiscoveryFilter",
    "Peripheral",
    "SessionState",
    "SubprocessResult",
    "UploadRequest",
    "SubprocessRunner",
    "Settings",
    "load_settings",
    "PeripheralSession",
    "RemoteChannel",
    "SerialPort",
    "PySerialPort",
    "SerialportSession",
    "create_session",
]


def create_session(
    channel: RemoteChannel,
    *,
    settings: Settings | None = None,
    **kwargs: Any,
) -> SerialportSession:
    """Build a serial session, loading settings from disk when none are given."""
    if settings is None:
        settings = load_settings().settings
    return SerialportSession(channel, settings, **kwargs)
