"""Stable public API for building tooling on top of fusectl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from typing import Any

from fusectl.core.codec import UserInfoFlag, default_registry, encode_user_info
from fusectl.core.commands import CommandCodec, CommandFrame, CommandRegistry, CommandType, RunCommand
from fusectl.core.errors import (
    ConfigError,
    DecodeError,
    DisconnectedError,
    FusectlError,
    IncompatibleDeviceError,
    SessionStateError,
    TransportConnectError,
    TransportError,
    TransportReadError,
    TransportTimeoutError,
    TransportWriteError,
    UnknownIdentifierError,
    UnsupportedCommandError,
    ValidationError,
)
from fusectl.core.identifiers import BATTERY_PLAN, COMMAND_PLAN, FULL_PLAN, resolve_characteristic, resolve_service
from fusectl.core.machine import SessionState
from fusectl.core.model import (
    Advertisement,
    BatteryLevel,
    DeviceIdentity,
    TelemetryFrame,
    UserInfo,
    Violation,
)
from fusectl.core.router import NotificationRouter
from fusectl.core.session import DeviceSession
from fusectl.core.telemetry import BodySensorLocation, HeartRateMeasurement, decode_heart_rate_measurement
from fusectl.core.validation import UserInfoValidator, Validator
from fusectl.transports.base import PowerState, Transport
from fusectl.transports.ble_gatt import BleakTransport

__all__ = [
    "FusectlError",
    "ConfigError",
    "DecodeError",
    "DisconnectedError",
    "IncompatibleDeviceError",
    "SessionStateError",
    "TransportError",
    "TransportConnectError",
    "TransportReadError",
    "TransportTimeoutError",
    "TransportWriteError",
    "UnknownIdentifierError",
    "UnsupportedCommandError",
    "ValidationError",
    "Advertisement",
    "BatteryLevel",
    "BodySensorLocation",
    "DeviceIdentity",
    "HeartRateMeasurement",
    "TelemetryFrame",
    "UserInfo",
    "UserInfoFlag",
    "Violation",
    "CommandCodec",
    "CommandFrame",
    "CommandRegistry",
    "CommandType",
    "RunCommand",
    "DeviceSession",
    "NotificationRouter",
    "SessionState",
    "UserInfoValidator",
    "Validator",
    "PowerState",
    "Transport",
    "BleakTransport",
    "BATTERY_PLAN",
    "COMMAND_PLAN",
    "FULL_PLAN",
    "decode_heart_rate_measurement",
    "default_registry",
    "encode_user_info",
    "resolve_characteristic",
    "resolve_service",
    "start",
    "stop",
]


async def start(identity: DeviceIdentity | str, transport: Transport, **options: Any) -> DeviceSession:
    """Create a session for ``identity`` and begin waiting for the adapter to power on.

    ``options`` are passed to DeviceSession (plan, router, registry, validator,
    connect_attempts, oneshot).
    """
    if isinstance(identity, str):
        identity = DeviceIdentity(identity)
    session = DeviceSession(identity, transport, **options)
    await session.start()
    return session


async def stop(session: DeviceSession) -> None:
    """Tear the session down from whatever state it is in."""
    await session.stop()
