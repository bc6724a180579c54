"""Payload decoders for characteristics with a known format."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from fusectl.core.errors import DecodeError
from fusectl.core.model import BatteryLevel


class BodySensorLocation(IntEnum):
    OTHER = 0
    CHEST = 1
    WRIST = 2
    FINGER = 3
    HAND = 4
    EAR_LOBE = 5
    FOOT = 6


@dataclass(frozen=True)
class HeartRateMeasurement:
    bpm: int
    sensor_contact: bool | None = None
    energy_expended: int | None = None
    rr_intervals: tuple[float, ...] = ()


_HR_FORMAT_UINT16 = 0x01
_HR_CONTACT_SUPPORTED = 0x04
_HR_CONTACT_DETECTED = 0x02
_HR_ENERGY_PRESENT = 0x08
_HR_RR_PRESENT = 0x10


def decode_battery_level(data: bytes) -> BatteryLevel:
    if len(data) != 1:
        raise DecodeError(f"Battery level must be 1 byte, got {len(data)}", raw=data)
    percent = data[0]
    if percent > 100:
        raise DecodeError(f"Battery level {percent}% out of range 0..100", raw=data)
    return BatteryLevel(percent=percent)


def decode_body_sensor_location(data: bytes) -> BodySensorLocation:
    if len(data) != 1:
        raise DecodeError(f"Body sensor location must be 1 byte, got {len(data)}", raw=data)
    try:
        return BodySensorLocation(data[0])
    except ValueError:
        raise DecodeError(f"Unknown body sensor location {data[0]}", raw=data) from None


def decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8").rstrip("\x00")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"Not a UTF-8 string: {exc}", raw=data) from exc


def decode_heart_rate_measurement(data: bytes) -> HeartRateMeasurement:
    """Standard Heart Rate Measurement (0x2A37): flags byte, then the rate and optional fields."""
    if not data:
        raise DecodeError("Heart rate measurement is empty", raw=data)
    flags = data[0]
    offset = 1
    try:
        if flags & _HR_FORMAT_UINT16:
            (bpm,) = struct.unpack_from("<H", data, offset)
            offset += 2
        else:
            bpm = data[offset]
            offset += 1

        energy = None
        if flags & _HR_ENERGY_PRESENT:
            (energy,) = struct.unpack_from("<H", data, offset)
            offset += 2
    except (struct.error, IndexError):
        raise DecodeError("Heart rate measurement truncated", raw=data) from None

    rr: tuple[float, ...] = ()
    if flags & _HR_RR_PRESENT:
        remaining = data[offset:]
        if len(remaining) % 2:
            raise DecodeError("Heart rate RR intervals truncated", raw=data)
        # RR intervals are in 1/1024 s units.
        rr = tuple(value / 1024 for (value,) in struct.iter_unpack("<H", remaining))

    contact = None
    if flags & _HR_CONTACT_SUPPORTED:
        contact = bool(flags & _HR_CONTACT_DETECTED)

    return HeartRateMeasurement(bpm=bpm, sensor_contact=contact, energy_expended=energy, rr_intervals=rr)
