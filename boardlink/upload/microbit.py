"""Probe-then-write uploads for micro:bit boards via ufs and uflash."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from boardlink.core.errors import FirmwareProbeFailure, UploadFlashError
from boardlink.upload.base import UploadHost, Uploader

LOGGER = logging.getLogger(__name__)

REPL_FAILURE = "Could not enter raw REPL."
# Ctrl-D: soft reboot so the freshly written main.py runs.
WAKE_UP_HEX = "04"


class MicrobitUploader(Uploader):
    board_type = "microbit"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.project_path = self.settings.user_data_path / "microbit" / "project"
        self.code_path = self.project_path / "main.py"
        self.libraries_path = self.settings.extensions_path / "Microbit"
        python_root = self.settings.tools_path / "Python"
        self.python_path = python_root / "python"
        self.uflash_path = python_root / "Scripts" / "uflash-script.py"
        self.ufs_path = python_root / "Scripts" / "ufs-script.py"
        self.staged: list[Path] = []

    async def build(self, code: str) -> None:
        """Stage main.py plus any extension library files for writing."""
        self.project_path.mkdir(parents=True, exist_ok=True)
        self.code_path.write_text(code, encoding="utf-8")
        self.staged = [self.code_path]
        if self.libraries_path.is_dir():
            self.staged.extend(sorted(p for p in self.libraries_path.iterdir() if p.is_file()))

    async def flash(self) -> None:
        try:
            await self.probe_firmware()
        except FirmwareProbeFailure as exc:
            LOGGER.info("Firmware probe failed on %s; reflashing", self.port_path)
            self.send_stdout(f"{exc}\n")
            self.send_stdout("Try to flash standard firmware to fix\n")
            await self.flash_firmware()

        self.send_stdout("Writing files...\n")
        for path in self.staged:
            await self.put(path)
        self.send_stdout("Success\n")

    async def flash_firmware(self) -> None:
        self.send_stdout("Start flash standard firmware...\n")
        self.send_stdout("This step will take tens of seconds, please wait\n")
        result = await self.runner.run(
            [self.python_path, self.uflash_path],
            on_stdout=self.send_stdout,
            on_stderr=self.send_stdout,
        )
        if result.exit_status != 0:
            raise UploadFlashError("uflash failed to flash", unplug=True)
        self.send_stdout("Flash Success.\n")

    async def after_reconnect(self, host: UploadHost) -> None:
        await host.write(WAKE_UP_HEX, "hex")

    async def probe_firmware(self) -> None:
        """List the board filesystem; raise if the raw REPL is unreachable."""
        result = await self.runner.run(
            [self.python_path, self.ufs_path, "ls"],
            abort_on=lambda text: REPL_FAILURE in text,
        )
        if result.aborted or REPL_FAILURE in result.output:
            raise FirmwareProbeFailure(REPL_FAILURE)

    async def put(self, path: Path) -> None:
        # ufs prints nothing on success, so any stdout is an error message.
        result = await self.runner.run(
            [self.python_path, self.ufs_path, "put", path],
            on_stdout=self.send_stdout,
            abort_on=lambda text: True,
        )
        if result.aborted:
            raise UploadFlashError(
                f"ufs failed to write {path.name}: {result.stdout.strip()}", unplug=True
            )
        if result.exit_status != 0:
            raise UploadFlashError(
                f"ufs failed to write {path.name} (exit status {result.exit_status})", unplug=True
            )
        self.send_stdout(f"{path} write finish\n")
