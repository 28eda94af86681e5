"""Build-then-flash uploads for Arduino-style boards via arduino-cli."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from boardlink.core.errors import UploadBuildError, UploadError, UploadFlashError
from boardlink.core.model import SubprocessResult
from boardlink.upload.base import Uploader

LOGGER = logging.getLogger(__name__)

SKETCH_NAME = "project"


def _diagnostics(result: SubprocessResult, fallback: str) -> str:
    return result.stderr.strip() or result.stdout.strip() or fallback


class ArduinoUploader(Uploader):
    board_type = "arduino"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        fqbn = self.board_config.get("fqbn") or self.board_config.get("board")
        if not fqbn:
            raise UploadError("Arduino upload requires an 'fqbn' in the board config")
        self.fqbn = str(fqbn)
        arduino_root = self.settings.user_data_path / "arduino"
        self.project_path = arduino_root / SKETCH_NAME
        self.build_path = arduino_root / "build"
        self.cli_path = self.settings.tools_path / "Arduino" / "arduino-cli"
        self.libraries_path = self.settings.extensions_path / "Arduino"

    @property
    def sketch_path(self) -> Path:
        return self.project_path / f"{SKETCH_NAME}.ino"

    def _firmware_path(self) -> Path:
        firmware = self.board_config.get("firmware")
        if not firmware:
            raise UploadError(f"No realtime firmware configured for {self.fqbn}")
        return self.settings.tools_path / "Arduino" / "firmwares" / str(firmware)

    async def build(self, code: str) -> None:
        self.project_path.mkdir(parents=True, exist_ok=True)
        self.sketch_path.write_text(code, encoding="utf-8")

        argv: list[str | Path] = [
            self.cli_path,
            "compile",
            "--fqbn",
            self.fqbn,
            "--build-path",
            self.build_path,
        ]
        if self.libraries_path.is_dir():
            argv += ["--libraries", self.libraries_path]
        argv.append(self.project_path)

        self.send_stdout("Compiling...\n")
        result = await self.runner.run(argv, on_stdout=self.send_stdout, on_stderr=self.send_stdout)
        if result.exit_status != 0:
            raise UploadBuildError(
                _diagnostics(result, f"arduino-cli compile exited with {result.exit_status}")
            )

    async def flash(self) -> None:
        self.send_stdout(f"Uploading to {self.port_path}...\n")
        await self._upload(["--input-dir", self.build_path])
        self.send_stdout("Upload finished.\n")

    async def prepare_firmware(self) -> None:
        firmware = self._firmware_path()
        if not firmware.is_file():
            raise UploadError(f"Firmware image {firmware} not found")

    async def flash_firmware(self) -> None:
        self.send_stdout(f"Flashing realtime firmware to {self.port_path}...\n")
        await self._upload(["--input-file", self._firmware_path()])
        self.send_stdout("Firmware flashed.\n")

    async def _upload(self, source: list[str | Path]) -> None:
        argv: list[str | Path] = [
            self.cli_path,
            "upload",
            "--fqbn",
            self.fqbn,
            "--port",
            self.port_path,
            *source,
        ]
        result = await self.runner.run(argv, on_stdout=self.send_stdout, on_stderr=self.send_stdout)
        if result.exit_status != 0:
            raise UploadFlashError(
                _diagnostics(result, f"arduino-cli upload exited with {result.exit_status}")
            )
