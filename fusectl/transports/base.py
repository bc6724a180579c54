"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from enum import Enum
from typing import Protocol

from fusectl.core.model import Advertisement, CharacteristicHandle, PeripheralHandle, ServiceHandle


class PowerState(Enum):
    UNKNOWN = "unknown"
    RESETTING = "resetting"
    UNSUPPORTED = "unsupported"
    UNAUTHORIZED = "unauthorized"
    POWERED_OFF = "off"
    POWERED_ON = "on"


class Transport(Protocol):
    """Radio capability consumed by a DeviceSession.

    Callbacks may be invoked from the event loop or from a backend thread.
    Every failure is raised as a ``fusectl.core.errors.TransportError``.
    """

    def watch_power(self, callback: Callable[[PowerState], None]) -> None:
        """Report the adapter power state now and on every change."""

    async def scan(self, on_advertisement: Callable[[Advertisement], None]) -> None:
        """Start scanning for all advertising peripherals."""

    async def stop_scan(self) -> None:
        """Stop a running scan; a no-op when not scanning."""

    async def connect(self, advertisement: Advertisement, on_disconnect: Callable[[], None]) -> PeripheralHandle:
        """Connect to an advertised peripheral; ``on_disconnect`` fires when the link drops."""

    async def discover_services(self, peripheral: PeripheralHandle, uuids: Sequence[str]) -> list[ServiceHandle]:
        """Return the handles of the requested services the peripheral exposes."""

    async def discover_characteristics(self, service: ServiceHandle, uuids: Sequence[str]) -> list[CharacteristicHandle]:
        """Return the handles of the requested characteristics under ``service``."""

    async def read(self, characteristic: CharacteristicHandle) -> bytes:
        """Read the current value of a characteristic."""

    async def write(self, characteristic: CharacteristicHandle, data: bytes, *, response: bool = True) -> None:
        """Write a value to a characteristic."""

    async def subscribe(self, characteristic: CharacteristicHandle, on_notify: Callable[[bytes], None]) -> None:
        """Deliver every notification/indication of ``characteristic`` to ``on_notify``."""

    async def disconnect(self, peripheral: PeripheralHandle) -> None:
        """Tear down the link to ``peripheral``."""
