"""Command types understood by the device and the frame/codec registry.

Every frame starts with a command-type byte followed by a sub-command byte;
the rest is a command-specific payload. Most command types are known by name
only. They are kept in the registry as explicitly unimplemented entries so
that adding a layout later is a registry change and nothing else.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from fusectl.core.errors import DecodeError, UnsupportedCommandError


class CommandType(IntEnum):
    NONE = 0
    HR_SET = 1
    HR_GET = 2
    BIKE_SET = 3
    BIKE_GET = 4
    APPTYPE_GET = 5
    APPTYPE_SET = 6
    USERINFO_GET = 7
    USERINFO_SET = 8
    NAME_GET = 9
    NAME_SET = 10
    RTC_GET = 11
    RTC_SET = 12
    RUN_CMD = 13
    SEND_GPS_DATA = 14
    DISPLAY_GET = 15
    DISPLAY_SET = 16
    DAILYGOAL_GET = 17
    DAILYGOAL_SET = 18
    DEVICE_STATUS_GET = 19
    TODAY_ADL_RECORD_GET = 20
    RECORD_GET = 21
    RECORD_DELETE = 22
    SESSION_GET = 23
    LINK_CUST_CMD = 24
    LINK_ENTER_DFUMODE = 25
    ALPHA2_ENTER_DFUMODE = 26
    LINK_UPDATE = 27
    ALPHA2_UPDATE = 28
    STRIDE_CALI_GET = 29
    STRIDE_CALI_SET = 30
    FACTORY_DEFAULT = 31
    SWING_ARM_GET = 32
    SWING_ARM_SET = 33
    VELO_DEVICE_STATUS_GET = 34
    VELO_MEM_RECORD_GET = 35
    VELO_MEM_SESSION_GET = 36
    VELO_MEM_RECORD_DEL = 37
    LINK_MOBILE_NOTIFICATION = 38
    LINK_MOBILE_MSG_ALERT = 39
    LINK_MOBILE_EMAIL_ALERT = 40
    LINK_MOBILE_PHONE_ALERT = 41
    SLEEP_RECORD_GET = 42
    SLEEP_RECORD_DELETE = 43
    SLEEP_RECORD_CURHOUR = 44
    DEVICE_OPTION_GET = 45
    DEVICE_OPTION_SET = 46


class RunCommand(IntEnum):
    """Sub-commands of CommandType.RUN_CMD."""

    STREAM_MODE_DISABLE = 0
    STREAM_MODE_ENABLE = 1
    GPS_MODE_DISABLE = 2
    GPS_MODE_ENABLE = 3
    RESET_TODAY_ADL_DATA = 4
    STEP_DATA_NOTIFY_DISABLE = 5
    STEP_DATA_NOTIFY_ENABLE = 6
    AIRPLANE_MODE_ENABLE = 7
    MEM_CLEAR = 8
    USERDATA_BACKUP = 9
    ETS_NOTIFICATION_DISABLE = 10  # exercise time sync data
    ETS_NOTIFICATION_ENABLE = 11
    ETS_STARTTIMER = 12  # exercise timer sync command
    ETS_STOPTIMER = 13
    ETS_TAKELAP = 14
    ETS_RESEND_LAP = 15
    ETS_FINISH = 16
    SLEEP_MODE_DEACTIVATE = 17
    SLEEP_MODE_ACTIVATE = 18
    REST_HR_TAKE_MEASUREMENT = 19
    REST_HR_STOP_MEASUREMENT = 20
    REST_HR_SEND_MEASUREMENT = 21
    ACT_MEM_CLEAR = 22
    ADL_MEM_CLEAR = 23


DFU_COMMANDS = frozenset(
    {
        CommandType.LINK_ENTER_DFUMODE,
        CommandType.ALPHA2_ENTER_DFUMODE,
        CommandType.LINK_UPDATE,
        CommandType.ALPHA2_UPDATE,
    }
)

FRAME_HEADER_SIZE = 2


@dataclass(frozen=True)
class CommandFrame:
    command: int
    subcommand: int
    payload: bytes = b""

    def __post_init__(self) -> None:
        for name in ("command", "subcommand"):
            value = getattr(self, name)
            if not 0 <= value <= 0xFF:
                raise ValueError(f"{name} must fit in one byte, got {value}")

    @property
    def command_type(self) -> CommandType | None:
        try:
            return CommandType(self.command)
        except ValueError:
            return None

    def to_bytes(self) -> bytes:
        return bytes((self.command, self.subcommand)) + self.payload

    @classmethod
    def from_bytes(cls, data: bytes) -> CommandFrame:
        if len(data) < FRAME_HEADER_SIZE:
            raise DecodeError(f"Command frame needs at least {FRAME_HEADER_SIZE} bytes, got {len(data)}", raw=data)
        return cls(command=data[0], subcommand=data[1], payload=bytes(data[FRAME_HEADER_SIZE:]))


Encoder = Callable[..., bytes]
Decoder = Callable[[bytes], Any]


@dataclass(frozen=True)
class CommandCodec:
    command: CommandType
    encode: Encoder | None = None
    decode: Decoder | None = None

    @property
    def implemented(self) -> bool:
        return self.encode is not None or self.decode is not None

    @property
    def is_dfu(self) -> bool:
        return self.command in DFU_COMMANDS


class CommandRegistry:
    """Maps every CommandType to a codec; unknown layouts are explicit placeholders."""

    def __init__(self, codecs: Iterable[CommandCodec] = ()) -> None:
        self._codecs: dict[CommandType, CommandCodec] = {c: CommandCodec(command=c) for c in CommandType}
        for codec in codecs:
            self.register(codec)

    def register(self, codec: CommandCodec) -> None:
        self._codecs[codec.command] = codec

    def codec(self, command: CommandType | int) -> CommandCodec:
        try:
            return self._codecs[CommandType(command)]
        except ValueError:
            raise UnsupportedCommandError(f"Unknown command type {command}") from None

    def encode(self, command: CommandType | int, *args: Any, **kwargs: Any) -> bytes:
        codec = self.codec(command)
        if codec.encode is None:
            raise UnsupportedCommandError(f"Encoding {codec.command.name} frames is not implemented")
        return codec.encode(*args, **kwargs)

    def decode(self, data: bytes) -> Any:
        frame = CommandFrame.from_bytes(data)
        codec = self.codec(frame.command)
        if codec.decode is None:
            raise UnsupportedCommandError(f"Decoding {codec.command.name} frames is not implemented", raw=data)
        return codec.decode(data)

    def __iter__(self) -> Iterator[CommandCodec]:
        return iter(sorted(self._codecs.values(), key=lambda c: c.command))

    def __len__(self) -> int:
        return len(self._codecs)
