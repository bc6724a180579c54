"""Core data models shared by the codec, router, session and CLI."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DeviceIdentity:
    address: str

    def __post_init__(self) -> None:
        if not self.address.strip():
            raise ValueError("device identity must not be empty")

    def __str__(self) -> str:
        return self.address


@dataclass(frozen=True)
class ServiceDescriptor:
    key: str
    name: str
    uuid: str


@dataclass(frozen=True)
class CharacteristicDescriptor:
    key: str
    name: str
    uuid: str
    service: str
    properties: frozenset[str] = frozenset()

    @property
    def readable(self) -> bool:
        return "read" in self.properties

    @property
    def notifiable(self) -> bool:
        return bool(self.properties & {"notify", "indicate"})


@dataclass(frozen=True)
class ServiceRequirement:
    service: ServiceDescriptor
    characteristics: tuple[CharacteristicDescriptor, ...]
    required: bool = False


@dataclass(frozen=True)
class Advertisement:
    address: str
    name: str | None = None
    local_name: str | None = None
    tx_power: int | None = None
    rssi: int | None = None
    manufacturer_data: dict[int, bytes] = field(default_factory=dict)
    service_data: dict[str, bytes] = field(default_factory=dict)
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class PeripheralHandle:
    address: str
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ServiceHandle:
    uuid: str
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class CharacteristicHandle:
    uuid: str
    properties: frozenset[str] = frozenset()
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def notifiable(self) -> bool:
        return bool(self.properties & {"notify", "indicate"})


@dataclass(frozen=True)
class ResolvedCharacteristic:
    descriptor: CharacteristicDescriptor
    handle: CharacteristicHandle
    required: bool = False


@dataclass
class UserInfo:
    """Profile record exchanged with the device. Flag fields hold 0 or 1."""

    gender: int
    unit_type: int
    hr_display_type: int
    display_orientation: int
    wo_display_mode: int
    adl_goal_cal: int
    wo_recording: int
    hr_auto_adj: int
    birthday: dt.date
    body_weight: int
    body_height: int
    resting_hr: int
    max_hr: int


@dataclass(frozen=True)
class Violation:
    field: str
    message: str
    value: Any = None


@dataclass(frozen=True)
class BatteryLevel:
    percent: int


@dataclass(frozen=True)
class TelemetryFrame:
    characteristic: str
    name: str
    data: bytes
    value: Any = None
