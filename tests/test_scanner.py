from __future__ import annotations

import asyncio

import pytest

from conftest import UNO_PID, UNO_VID, FakePortInfo

from boardlink.core.errors import InvalidFilterError
from boardlink.core.model import DiscoveryFilter
from boardlink.core.scanner import PeripheralScanner, enumerate_peripherals

NAMES = {"USB\\VID_2341&PID_0043": "Arduino Uno"}
ALL = DiscoveryFilter(pnpid=frozenset({"*"}))


def test_scan_once_reports_new_devices_only() -> None:
    devices = [FakePortInfo("COM3", UNO_VID, UNO_PID), FakePortInfo("COM4")]
    scanner = PeripheralScanner(lambda p: None, device_names=NAMES, lister=lambda: devices)

    async def scenario():
        scanner.start(ALL)
        scanner.stop()
        first = await scanner.scan_once()
        second = await scanner.scan_once()
        devices.append(FakePortInfo("COM5"))
        third = await scanner.scan_once()
        return first, second, third

    first, second, third = asyncio.run(scenario())
    assert [p.id for p in first] == ["COM3", "COM4"]
    assert second == []
    assert [p.id for p in third] == ["COM5"]
    assert scanner.get("COM3").name == "Arduino Uno (COM3)"


def test_start_rejects_empty_filter() -> None:
    scanner = PeripheralScanner(lambda p: None, lister=lambda: [])
    with pytest.raises(InvalidFilterError):
        scanner.start(DiscoveryFilter(pnpid=frozenset()))


def test_restart_clears_registry() -> None:
    devices = [FakePortInfo("COM3", UNO_VID, UNO_PID)]
    scanner = PeripheralScanner(lambda p: None, lister=lambda: devices)

    async def scenario():
        scanner.start(ALL)
        scanner.stop()
        await scanner.scan_once()
        assert scanner.get("COM3") is not None
        scanner.start(ALL)
        scanner.stop()
        assert scanner.peripherals == {}
        return await scanner.scan_once()

    assert [p.id for p in asyncio.run(scenario())] == ["COM3"]


def test_polling_reports_each_device_once() -> None:
    seen: list[str] = []
    devices = [FakePortInfo("COM3", UNO_VID, UNO_PID), FakePortInfo("/dev/ttyACM0", UNO_VID, UNO_PID)]
    scanner = PeripheralScanner(lambda p: seen.append(p.id), lister=lambda: devices, interval_s=0.005)

    async def scenario():
        scanner.start(ALL)
        await asyncio.sleep(0.1)
        assert scanner.scanning
        await scanner.aclose()
        assert not scanner.scanning

    asyncio.run(scenario())
    assert sorted(seen) == ["/dev/ttyACM0", "COM3"]


def test_lister_failure_does_not_stop_polling() -> None:
    calls = 0

    def flaky():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise OSError("enumeration failed")
        return [FakePortInfo("COM3")]

    seen: list[str] = []
    scanner = PeripheralScanner(lambda p: seen.append(p.id), lister=flaky, interval_s=0.005)

    async def scenario():
        scanner.start(ALL)
        await asyncio.sleep(0.1)
        await scanner.aclose()

    asyncio.run(scenario())
    assert seen == ["COM3"]


def test_enumerate_peripherals_uses_pyserial_comports(monkeypatch: pytest.MonkeyPatch) -> None:
    from serial.tools import list_ports

    monkeypatch.setattr(list_ports, "comports", lambda: [FakePortInfo("COM7", UNO_VID, UNO_PID)])
    found = enumerate_peripherals(DiscoveryFilter(pnpid=frozenset({"USB\\VID_2341&PID_0043"})), NAMES)
    assert [p.id for p in found] == ["COM7"]
    assert found[0].pnpid == "USB\\VID_2341&PID_0043"
