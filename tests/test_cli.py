from __future__ import annotations

from pathlib import Path

import pytest
from serial.tools import list_ports
from typer.testing import CliRunner

from conftest import UNO_PID, UNO_VID, FakePortInfo

from boardlink import cli
from boardlink.core.errors import OpenFailedError
from boardlink.core.model import Peripheral

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


class FakeSession:
    instances: list[FakeSession] = []
    fail_connect = False
    succeed = True

    def __init__(self, channel, settings) -> None:
        self.channel = channel
        self.settings = settings
        self.peripherals: dict[str, Peripheral] = {}
        self.calls: list[str] = []
        FakeSession.instances.append(self)

    async def discover(self, discovery_filter) -> None:
        self.calls.append("discover")
        self.peripherals["COM3"] = Peripheral(id="COM3", vendor_id=UNO_VID, product_id=UNO_PID, name="Arduino Uno (COM3)")

    async def connect(self, peripheral_id, config) -> None:
        self.calls.append(f"connect {peripheral_id} {config.baud_rate}")
        if self.fail_connect:
            raise OpenFailedError(f"Could not open {peripheral_id}")

    async def upload(self, request) -> bool:
        self.calls.append(f"upload {request.board_type} {request.board_config.get('fqbn')}")
        self.channel.send_remote_request("uploadStdout", {"message": "Compiling...\n"})
        if self.succeed:
            self.channel.send_remote_request("uploadSuccess", {})
        else:
            self.channel.send_remote_request("uploadError", {"message": "build failed\n"})
        return self.succeed

    async def upload_firmware(self, board_config) -> bool:
        self.calls.append(f"firmware {board_config['type']}")
        self.channel.send_remote_request("uploadSuccess", {})
        return True

    async def dispose(self) -> None:
        self.calls.append("dispose")


@pytest.fixture
def fake_session(monkeypatch: pytest.MonkeyPatch):
    FakeSession.instances = []
    FakeSession.fail_connect = False
    FakeSession.succeed = True
    monkeypatch.setattr(cli, "SerialportSession", FakeSession)
    return FakeSession


def test_ports_command(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        list_ports,
        "comports",
        lambda: [FakePortInfo("COM3", UNO_VID, UNO_PID), FakePortInfo("COM4")],
    )
    result = runner.invoke(cli.app, ["ports"])
    assert result.exit_code == 0
    assert "COM3 USB\\VID_2341&PID_0043 Arduino Uno (COM3)" in result.stdout
    assert "COM4 - Unknown device (COM4)" in result.stdout


def test_ports_command_with_filter(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(list_ports, "comports", lambda: [FakePortInfo("COM4")])
    result = runner.invoke(cli.app, ["ports", "--pnpid", "USB\\VID_2341&PID_0043"])
    assert result.exit_code == 0
    assert "No serial devices found" in result.stdout


def test_upload_command(fake_session, tmp_path: Path) -> None:
    sketch = tmp_path / "blink.ino"
    sketch.write_text("void setup(){}", encoding="utf-8")
    result = runner.invoke(
        cli.app,
        ["upload", "COM3", str(sketch), "--board", "arduino", "--fqbn", "arduino:avr:uno", "--baud", "9600"],
    )
    assert result.exit_code == 0
    assert "Compiling..." in result.stdout
    assert "Upload succeeded" in result.stdout
    (session,) = fake_session.instances
    assert session.calls == ["discover", "connect COM3 9600", "upload arduino arduino:avr:uno", "dispose"]


def test_upload_failure_exits_nonzero(fake_session, tmp_path: Path) -> None:
    fake_session.succeed = False
    source = tmp_path / "main.py"
    source.write_text("print('hi')", encoding="utf-8")
    result = runner.invoke(cli.app, ["upload", "COM3", str(source), "--board", "microbit"])
    assert result.exit_code == 1
    assert "Error: build failed" in result.stderr


def test_connect_error_is_clean(fake_session, tmp_path: Path) -> None:
    fake_session.fail_connect = True
    source = tmp_path / "main.py"
    source.write_text("print('hi')", encoding="utf-8")
    result = runner.invoke(cli.app, ["upload", "COM3", str(source), "--board", "microbit"])
    assert result.exit_code == 1
    assert "Error: Could not open COM3" in result.stderr
    assert "Traceback" not in result.stdout
    assert fake_session.instances[0].calls[-1] == "dispose"


def test_missing_port_is_reported(fake_session, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "_PORT_WAIT_S", 0.05)
    result = runner.invoke(cli.app, ["firmware", "COM9", "--board", "microbit"])
    assert result.exit_code == 1
    assert "Error: Serial port COM9 not found" in result.stderr


def test_firmware_command(fake_session) -> None:
    result = runner.invoke(cli.app, ["firmware", "COM3", "--board", "microbit"])
    assert result.exit_code == 0
    assert fake_session.instances[0].calls == ["discover", "connect COM3 115200", "firmware microbit", "dispose"]
