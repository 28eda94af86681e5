"""Shared upload pipeline and the uploader interface board families implement."""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable
from typing import Any, ClassVar, Protocol

from boardlink.core.errors import BoardlinkError, UnsupportedBoardError, UploadFlashError
from boardlink.core.runner import SubprocessRunner
from boardlink.core.settings import Settings

LOGGER = logging.getLogger(__name__)

_PIPELINE_ERRORS = (BoardlinkError, OSError)


class UploadHost(Protocol):
    """What an upload needs from the session that owns the port."""

    async def disconnect(self) -> None: ...

    async def reconnect(self) -> None: ...

    async def write(self, message: str, encoding: str) -> int: ...

    def send_event(self, method: str, params: dict[str, Any] | None = None) -> None: ...


class Uploader(abc.ABC):
    """Board-family build/flash steps; subclasses must provide `flash`.

    `build` and `prepare_firmware` run while the session is still connected;
    `flash` and `flash_firmware` run with the port released.
    """

    board_type: ClassVar[str] = ""

    def __init__(
        self,
        port_path: str,
        board_config: dict[str, Any],
        settings: Settings,
        send_stdout: Callable[[str], None],
        runner: SubprocessRunner,
    ) -> None:
        self.port_path = port_path
        self.board_config = board_config
        self.settings = settings
        self.send_stdout = send_stdout
        self.runner = runner

    async def build(self, code: str) -> None:
        pass

    @abc.abstractmethod
    async def flash(self) -> None:
        ...

    async def prepare_firmware(self) -> None:
        pass

    async def flash_firmware(self) -> None:
        raise UnsupportedBoardError(f"{self.board_type} boards have no firmware to flash")

    async def after_reconnect(self, host: UploadHost) -> None:
        pass


def _report_error(host: UploadHost, exc: BaseException) -> None:
    LOGGER.warning("Upload failed: %s", exc)
    host.send_event("uploadError", {"message": f"{exc}\n"})


async def _restore_connection(host: UploadHost) -> None:
    try:
        await host.reconnect()
    except _PIPELINE_ERRORS as exc:
        LOGGER.warning("Could not reconnect after failed upload: %s", exc)


async def run_upload(host: UploadHost, uploader: Uploader, code: str | None = None) -> bool:
    """Build, release the port, flash, reconnect, and report the outcome.

    With `code=None` the board's firmware is flashed instead of user code.
    Every failure ends in exactly one `uploadError` event.
    """
    try:
        if code is None:
            await uploader.prepare_firmware()
        else:
            await uploader.build(code)
    except _PIPELINE_ERRORS as exc:
        _report_error(host, exc)
        return False

    try:
        await host.disconnect()
        if code is None:
            await uploader.flash_firmware()
        else:
            await uploader.flash()
    except UploadFlashError as exc:
        _report_error(host, exc)
        if exc.unplug:
            host.send_event("peripheralUnplug", {})
        else:
            await _restore_connection(host)
        return False
    except _PIPELINE_ERRORS as exc:
        _report_error(host, exc)
        await _restore_connection(host)
        return False

    try:
        await host.reconnect()
        await uploader.after_reconnect(host)
    except _PIPELINE_ERRORS as exc:
        _report_error(host, exc)
        return False

    host.send_event("uploadSuccess", {})
    return True
