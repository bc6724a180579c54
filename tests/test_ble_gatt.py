from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from fusectl.core import identifiers
from fusectl.core.errors import TransportConnectError, TransportError
from fusectl.core.model import CharacteristicHandle, PeripheralHandle, ServiceHandle
from fusectl.transports import ble_gatt
from fusectl.transports.base import PowerState
from fusectl.transports.ble_gatt import BleakTransport, advertisement_from


def test_advertisement_from_bleak_objects() -> None:
    device = SimpleNamespace(address="C8:0F:10:AA:BB:CC", name="FUSE")
    data = SimpleNamespace(
        local_name="FUSE",
        tx_power=4,
        rssi=-58,
        manufacturer_data={0x0059: bytearray(b"\x01\x02")},
        service_data={"180f": bytearray(b"\x55")},
    )

    advertisement = advertisement_from(device, data)

    assert advertisement.address == "C8:0F:10:AA:BB:CC"
    assert advertisement.local_name == "FUSE"
    assert advertisement.tx_power == 4
    assert advertisement.rssi == -58
    assert advertisement.manufacturer_data == {0x0059: b"\x01\x02"}
    assert advertisement.service_data == {identifiers.SERVICE_BATTERY.uuid: b"\x55"}
    assert advertisement.raw is device


def test_watch_power_reports_powered_on() -> None:
    seen: list[PowerState] = []

    async def scenario() -> None:
        BleakTransport().watch_power(seen.append)
        await asyncio.sleep(0)

    asyncio.run(scenario())
    assert seen == [PowerState.POWERED_ON]


def test_discover_characteristics_filters_requested() -> None:
    battery = SimpleNamespace(uuid="00002A19-0000-1000-8000-00805F9B34FB", properties=["read", "notify"])
    other = SimpleNamespace(uuid="00002a00-0000-1000-8000-00805f9b34fb", properties=["read"])
    service = ServiceHandle(uuid=identifiers.SERVICE_BATTERY.uuid, raw=SimpleNamespace(characteristics=[battery, other]))

    handles = asyncio.run(BleakTransport().discover_characteristics(service, [identifiers.CHAR_BATTERY.uuid]))

    assert handles == [
        CharacteristicHandle(uuid=identifiers.CHAR_BATTERY.uuid, properties=frozenset({"read", "notify"}))
    ]
    assert handles[0].raw is battery


def test_io_without_connection_is_a_transport_error() -> None:
    handle = CharacteristicHandle(uuid=identifiers.CHAR_BATTERY.uuid)
    transport = BleakTransport()

    with pytest.raises(TransportError, match="not connected"):
        asyncio.run(transport.read(handle))
    with pytest.raises(TransportError, match="not connected"):
        asyncio.run(transport.write(handle, b"\x00"))


def test_stop_scan_and_disconnect_are_no_ops_when_idle() -> None:
    transport = BleakTransport()
    asyncio.run(transport.stop_scan())
    asyncio.run(transport.disconnect(PeripheralHandle(address="C8:0F:10:AA:BB:CC")))


class _StalledScanner:
    instances: list[_StalledScanner] = []

    def __init__(self, detection_callback=None) -> None:
        self.started = asyncio.Event()
        self.stopped = False
        _StalledScanner.instances.append(self)

    async def start(self) -> None:
        self.started.set()
        await asyncio.Event().wait()

    async def stop(self) -> None:
        self.stopped = True


class _FailingScanner:
    def __init__(self, detection_callback=None) -> None:
        pass

    async def start(self) -> None:
        raise OSError("adapter off")

    async def stop(self) -> None:
        raise AssertionError("a scanner that never started must not be stopped")


def test_scan_cancelled_during_start_is_still_stopped(monkeypatch: pytest.MonkeyPatch) -> None:
    _StalledScanner.instances.clear()
    monkeypatch.setattr(ble_gatt, "BleakScanner", _StalledScanner)
    transport = BleakTransport()

    async def scenario() -> None:
        scan = asyncio.create_task(transport.scan(lambda advertisement: None))
        await asyncio.sleep(0)
        await asyncio.wait_for(_StalledScanner.instances[0].started.wait(), 1)
        scan.cancel()
        with pytest.raises(asyncio.CancelledError):
            await scan
        await transport.stop_scan()

    asyncio.run(scenario())

    assert _StalledScanner.instances[0].stopped


def test_failed_scan_start_is_a_connect_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ble_gatt, "BleakScanner", _FailingScanner)
    transport = BleakTransport()

    with pytest.raises(TransportConnectError, match="adapter off"):
        asyncio.run(transport.scan(lambda advertisement: None))
    asyncio.run(transport.stop_scan())
