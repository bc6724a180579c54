"""Routing of notification and read payloads to decoders and observers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from fusectl.core import identifiers
from fusectl.core.errors import DecodeError
from fusectl.core.model import BatteryLevel, TelemetryFrame
from fusectl.core.telemetry import decode_battery_level, decode_body_sensor_location, decode_text

LOGGER = logging.getLogger(__name__)

Decoder = Callable[[bytes], Any]
BatteryHandler = Callable[[BatteryLevel], None]
TelemetryHandler = Callable[[TelemetryFrame], None]
DecodeErrorHandler = Callable[[DecodeError], None]

_DEVICE_INFO_CHARACTERISTICS = (
    identifiers.CHAR_MANUFACTURER,
    identifiers.CHAR_MODEL,
    identifiers.CHAR_SERIAL,
    identifiers.CHAR_HARDWARE_REV,
    identifiers.CHAR_FIRMWARE_REV,
    identifiers.CHAR_SOFTWARE_REV,
)


class NotificationRouter:
    """Decodes payloads per characteristic and fans them out to observers.

    Battery levels go to battery observers. Everything else becomes a
    TelemetryFrame, with ``value`` left as ``None`` when no decoder is
    registered for the characteristic. Decode failures go to the decode-error
    observers and never propagate to the caller of ``dispatch``.
    """

    def __init__(self, *, defaults: bool = True) -> None:
        self._decoders: dict[str, Decoder] = {}
        self._battery_handlers: list[BatteryHandler] = []
        self._telemetry_handlers: list[TelemetryHandler] = []
        self._error_handlers: list[DecodeErrorHandler] = []
        if defaults:
            self.register(identifiers.CHAR_BATTERY.uuid, decode_battery_level)
            self.register(identifiers.CHAR_BODY_SENSOR.uuid, decode_body_sensor_location)
            for characteristic in _DEVICE_INFO_CHARACTERISTICS:
                self.register(characteristic.uuid, decode_text)

    def register(self, characteristic: str, decoder: Decoder) -> None:
        self._decoders[identifiers.uuid128(characteristic)] = decoder

    def unregister(self, characteristic: str) -> None:
        self._decoders.pop(identifiers.uuid128(characteristic), None)

    def decoder_for(self, characteristic: str) -> Decoder | None:
        return self._decoders.get(identifiers.uuid128(characteristic))

    def on_battery_level(self, handler: BatteryHandler) -> None:
        self._battery_handlers.append(handler)

    def on_telemetry(self, handler: TelemetryHandler) -> None:
        self._telemetry_handlers.append(handler)

    def on_decode_error(self, handler: DecodeErrorHandler) -> None:
        self._error_handlers.append(handler)

    def dispatch(self, characteristic: str, data: bytes) -> None:
        uuid = identifiers.uuid128(characteristic)
        LOGGER.debug("Payload from %s: %s", identifiers.describe(uuid), data.hex())
        decoder = self._decoders.get(uuid)

        value = None
        if decoder is not None:
            try:
                value = _decode(decoder, uuid, data)
            except DecodeError as exc:
                if exc.characteristic is None:
                    exc.characteristic = uuid
                self._report_error(uuid, exc)
                return

        if isinstance(value, BatteryLevel):
            self._notify(self._battery_handlers, value)
            return

        frame = TelemetryFrame(characteristic=uuid, name=identifiers.describe(uuid), data=bytes(data), value=value)
        self._notify(self._telemetry_handlers, frame)

    def _report_error(self, uuid: str, error: DecodeError) -> None:
        if not self._error_handlers:
            LOGGER.warning("Dropping payload from %s: %s", identifiers.describe(uuid), error)
            return
        self._notify(self._error_handlers, error)

    def _notify(self, handlers: list[Callable[[Any], None]], value: Any) -> None:
        for handler in handlers:
            try:
                handler(value)
            except Exception:
                LOGGER.exception("Observer %r failed while handling %r", handler, value)


def _decode(decoder: Decoder, uuid: str, data: bytes) -> Any:
    try:
        return decoder(data)
    except DecodeError:
        raise
    except Exception as exc:
        raise DecodeError(
            f"Decoder for {identifiers.describe(uuid)} failed: {exc!r}", characteristic=uuid, raw=bytes(data)
        ) from exc
