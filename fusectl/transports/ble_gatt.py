"""BLE GATT transport implementation over bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from fusectl.core.errors import (
    TransportConnectError,
    TransportError,
    TransportReadError,
    TransportTimeoutError,
    TransportWriteError,
)
from fusectl.core.identifiers import uuid128
from fusectl.core.model import Advertisement, CharacteristicHandle, PeripheralHandle, ServiceHandle
from fusectl.transports.base import PowerState

LOGGER = logging.getLogger(__name__)


def advertisement_from(device: BLEDevice, data: AdvertisementData) -> Advertisement:
    return Advertisement(
        address=device.address,
        name=device.name,
        local_name=data.local_name,
        tx_power=data.tx_power,
        rssi=data.rssi,
        manufacturer_data={k: bytes(v) for k, v in data.manufacturer_data.items()},
        service_data={uuid128(k): bytes(v) for k, v in data.service_data.items()},
        raw=device,
    )


class BleakTransport:
    """Transport backed by a single bleak scanner and at most one connected client.

    bleak has no adapter power API, so ``watch_power`` reports the adapter as
    powered on once the event loop runs; a powered-off adapter surfaces as a
    ``TransportConnectError`` from ``scan``.
    """

    def __init__(self, *, timeout_s: float = 10.0) -> None:
        self.timeout_s = timeout_s
        self._scanner: BleakScanner | None = None
        self._client: BleakClient | None = None

    def watch_power(self, callback: Callable[[PowerState], None]) -> None:
        asyncio.get_running_loop().call_soon(callback, PowerState.POWERED_ON)

    async def scan(self, on_advertisement: Callable[[Advertisement], None]) -> None:
        def _detected(device: BLEDevice, data: AdvertisementData) -> None:
            on_advertisement(advertisement_from(device, data))

        scanner = BleakScanner(detection_callback=_detected)
        # Held before start() so a cancelled scan can still be stopped.
        self._scanner = scanner
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            if self._scanner is scanner:
                self._scanner = None
            raise TransportConnectError(f"BLE scan failed: {exc}") from exc

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except (BleakError, OSError) as exc:
            raise TransportError(f"Failed to stop BLE scan: {exc}") from exc

    async def connect(self, advertisement: Advertisement, on_disconnect: Callable[[], None]) -> PeripheralHandle:
        target = advertisement.raw if advertisement.raw is not None else advertisement.address
        client = BleakClient(target, disconnected_callback=lambda _: on_disconnect(), timeout=self.timeout_s)
        try:
            await client.connect()
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"BLE connect to {advertisement.address} timed out") from exc
        except (BleakError, OSError) as exc:
            raise TransportConnectError(f"BLE connect failed for {advertisement.address}: {exc}") from exc
        self._client = client
        return PeripheralHandle(address=advertisement.address, raw=client)

    async def discover_services(self, peripheral: PeripheralHandle, uuids: Sequence[str]) -> list[ServiceHandle]:
        client = self._connected()
        found: list[ServiceHandle] = []
        for uuid in uuids:
            service = client.services.get_service(uuid)
            if service is not None:
                found.append(ServiceHandle(uuid=uuid128(service.uuid), raw=service))
        return found

    async def discover_characteristics(self, service: ServiceHandle, uuids: Sequence[str]) -> list[CharacteristicHandle]:
        wanted = {uuid128(u) for u in uuids}
        return [
            CharacteristicHandle(uuid=uuid128(char.uuid), properties=frozenset(char.properties), raw=char)
            for char in service.raw.characteristics
            if uuid128(char.uuid) in wanted
        ]

    async def read(self, characteristic: CharacteristicHandle) -> bytes:
        client = self._connected()
        try:
            return bytes(await client.read_gatt_char(self._target(characteristic)))
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"Timed out reading {characteristic.uuid}") from exc
        except (BleakError, OSError) as exc:
            raise TransportReadError(f"BLE read of {characteristic.uuid} failed: {exc}") from exc

    async def write(self, characteristic: CharacteristicHandle, data: bytes, *, response: bool = True) -> None:
        client = self._connected()
        try:
            await client.write_gatt_char(self._target(characteristic), data, response=response)
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"Timed out writing {characteristic.uuid}") from exc
        except (BleakError, OSError) as exc:
            raise TransportWriteError(f"BLE write to {characteristic.uuid} failed: {exc}") from exc

    async def subscribe(self, characteristic: CharacteristicHandle, on_notify: Callable[[bytes], None]) -> None:
        client = self._connected()

        def _notify_handler(_: BleakGATTCharacteristic, data: bytearray) -> None:
            on_notify(bytes(data))

        try:
            await client.start_notify(self._target(characteristic), _notify_handler)
        except (BleakError, OSError) as exc:
            raise TransportWriteError(f"Failed to subscribe to {characteristic.uuid}: {exc}") from exc

    async def disconnect(self, peripheral: PeripheralHandle) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.disconnect()
        except (BleakError, OSError) as exc:
            raise TransportError(f"BLE disconnect from {peripheral.address} failed: {exc}") from exc

    def _connected(self) -> BleakClient:
        if self._client is None or not self._client.is_connected:
            raise TransportError("BLE client is not connected")
        return self._client

    @staticmethod
    def _target(characteristic: CharacteristicHandle) -> BleakGATTCharacteristic | str:
        return characteristic.raw if characteristic.raw is not None else characteristic.uuid
