from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable

import pytest

from boardlink.core.errors import OpenFailedError
from boardlink.core.model import ConnectionConfig, SubprocessResult
from boardlink.core.settings import Settings
from boardlink.transports.serialport import SerialportSession

UNO_VID = 0x2341
UNO_PID = 0x0043


@dataclass
class FakePortInfo:
    device: str
    vid: int | None = None
    pid: int | None = None


class RecordingChannel:
    def __init__(self, log: list[tuple[Any, ...]]) -> None:
        self.log = log
        self.events: list[tuple[str, dict[str, Any] | None]] = []

    def send_remote_request(self, method: str, params: dict[str, Any] | None) -> None:
        self.events.append((method, params))
        self.log.append(("event", method))

    def named(self, method: str) -> list[dict[str, Any] | None]:
        return [params for name, params in self.events if name == method]


class FakePort:
    def __init__(
        self,
        path: str,
        config: ConnectionConfig,
        log: list[tuple[Any, ...]],
        *,
        fail_open: bool,
        open_gate: asyncio.Event | None = None,
    ) -> None:
        self.path = path
        self.config = config
        self.log = log
        self.fail_open = fail_open
        self.open_gate = open_gate
        self.opened = False
        self.close_calls = 0
        self.written: list[bytes] = []
        self.incoming: asyncio.Queue[bytes] = asyncio.Queue()
        self.drain_gate: asyncio.Event | None = None

    @property
    def is_open(self) -> bool:
        return self.opened

    async def open(self) -> None:
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.fail_open:
            raise OpenFailedError(f"Could not open {self.path}")
        self.opened = True
        self.log.append(("open", self.path))

    async def close(self) -> None:
        await asyncio.sleep(0)
        self.close_calls += 1
        self.opened = False
        self.log.append(("close", self.path))

    async def read(self) -> bytes:
        return await self.incoming.get()

    async def write(self, data: bytes) -> int:
        self.written.append(data)
        self.log.append(("write", data))
        return len(data)

    async def drain(self) -> None:
        if self.drain_gate is not None:
            await self.drain_gate.wait()
        await asyncio.sleep(0)

    def unplug(self) -> None:
        self.opened = False


class FakePortFactory:
    def __init__(self, log: list[tuple[Any, ...]]) -> None:
        self.log = log
        self.ports: list[FakePort] = []
        self.fail_paths: set[str] = set()
        self.open_gate: asyncio.Event | None = None

    def __call__(self, path: str, config: ConnectionConfig) -> FakePort:
        port = FakePort(path, config, self.log, fail_open=path in self.fail_paths, open_gate=self.open_gate)
        self.ports.append(port)
        return port

    @property
    def last(self) -> FakePort:
        return self.ports[-1]


class FakeRunner:
    """Answers tool invocations from `script`, mimicking SubprocessRunner.run."""

    def __init__(self, log: list[tuple[Any, ...]], script: Callable[[list[str]], SubprocessResult] | None = None) -> None:
        self.log = log
        self.script = script or (lambda cmd: SubprocessResult(exit_status=0))
        self.calls: list[list[str]] = []
        self.hold: dict[str, asyncio.Event] = {}

    async def run(self, argv, *, on_stdout=None, on_stderr=None, abort_on=None, cwd=None) -> SubprocessResult:
        cmd = [os.fspath(arg) for arg in argv]
        self.calls.append(cmd)
        self.log.append(("run", label(cmd)))
        gate = self.hold.get(label(cmd))
        if gate is not None:
            await gate.wait()
        result = self.script(cmd)
        if result.stdout and on_stdout is not None:
            on_stdout(result.stdout)
        if result.stderr and on_stderr is not None:
            on_stderr(result.stderr)
        if abort_on is not None and result.stdout and abort_on(result.stdout):
            return replace(result, exit_status=None, aborted=True)
        return result


def label(cmd: list[str]) -> str:
    """Short tool label, e.g. 'compile', 'upload', 'uflash', 'ufs ls', 'ufs put main.py'."""
    if Path(cmd[0]).name == "arduino-cli":
        return cmd[1]
    script = Path(cmd[1]).name
    if script.startswith("uflash"):
        return "uflash"
    if cmd[2] == "put":
        return f"ufs put {Path(cmd[3]).name}"
    return f"ufs {cmd[2]}"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        user_data_path=tmp_path / "data",
        tools_path=tmp_path / "tools",
        scan_interval_s=0.005,
        health_interval_s=0.005,
        subprocess_timeout_s=5.0,
        device_names={"USB\\VID_2341&PID_0043": "Arduino Uno"},
    )


@dataclass
class SessionEnv:
    session: SerialportSession
    channel: RecordingChannel
    ports: FakePortFactory
    runner: FakeRunner
    log: list[tuple[Any, ...]]


@pytest.fixture
def make_env(settings: Settings) -> Callable[..., SessionEnv]:
    """Build a session wired to fakes. Must be called inside a running loop."""

    def _make(
        devices: list[FakePortInfo] | None = None,
        script: Callable[[list[str]], SubprocessResult] | None = None,
    ) -> SessionEnv:
        log: list[tuple[Any, ...]] = []
        listed = devices if devices is not None else [FakePortInfo("COM3", UNO_VID, UNO_PID)]
        channel = RecordingChannel(log)
        ports = FakePortFactory(log)
        runner = FakeRunner(log, script)
        session = SerialportSession(
            channel,
            settings,
            port_factory=ports,
            lister=lambda: list(listed),
            runner=runner,
        )
        return SessionEnv(session=session, channel=channel, ports=ports, runner=runner, log=log)

    return _make


async def discover_all(session: SerialportSession, expected: int = 1) -> None:
    await session.did_receive_call("discover", {"filters": {"pnpid": ["*"]}})
    for _ in range(200):
        if len(session.peripherals) >= expected:
            return
        await asyncio.sleep(0.005)
    raise AssertionError("scan did not register the expected peripherals")


def connect_params(peripheral_id: str = "COM3", baud: int = 9600) -> dict[str, Any]:
    return {
        "peripheralId": peripheral_id,
        "peripheralConfig": {"config": {"baudRate": baud, "dataBits": 8, "stopBits": 1}},
    }


async def wait_for(predicate: Callable[[], bool], timeout_s: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
