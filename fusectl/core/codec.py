"""User profile codec and the default command registry."""

from __future__ import annotations

import logging
from enum import IntFlag

from fusectl.core.commands import CommandCodec, CommandRegistry, CommandType
from fusectl.core.errors import UnsupportedCommandError, ValidationError
from fusectl.core.model import UserInfo
from fusectl.core.validation import UserInfoValidator, Validator

LOGGER = logging.getLogger(__name__)

SUBCMD_USER_SETTINGS_SET = 0x00
USERINFO_FRAME_SIZE = 10


class UserInfoFlag(IntFlag):
    """Bit positions in byte 2 of the user settings frame, as the firmware expects them."""

    GENDER = 1 << 0
    UNIT_TYPE = 1 << 1
    DISPLAY_TYPE_HR = 1 << 2
    DISPLAY_ORIENTATION = 1 << 3
    DISPLAY_MODE_WO = 1 << 4
    GOAL_ADL = 1 << 5
    RECORDING_WO = 1 << 6
    ADJ_HR = 1 << 7


_FLAG_FIELDS: tuple[tuple[str, UserInfoFlag], ...] = (
    ("gender", UserInfoFlag.GENDER),
    ("unit_type", UserInfoFlag.UNIT_TYPE),
    ("hr_display_type", UserInfoFlag.DISPLAY_TYPE_HR),
    ("display_orientation", UserInfoFlag.DISPLAY_ORIENTATION),
    ("wo_display_mode", UserInfoFlag.DISPLAY_MODE_WO),
    ("adl_goal_cal", UserInfoFlag.GOAL_ADL),
    ("wo_recording", UserInfoFlag.RECORDING_WO),
    ("hr_auto_adj", UserInfoFlag.ADJ_HR),
)


def user_info_flags(record: UserInfo) -> UserInfoFlag:
    flags = UserInfoFlag(0)
    for field_name, flag in _FLAG_FIELDS:
        if getattr(record, field_name) == 1:
            flags |= flag
    return flags


def encode_user_info(record: UserInfo, *, validator: Validator | None = None) -> bytes:
    """Validate ``record`` and pack it into the 10-byte "set user settings" frame.

    Layout::

        [0] CommandType.USERINFO_SET
        [1] SUBCMD_USER_SETTINGS_SET
        [2] UserInfoFlag bitmask
        [3] birth day  [4] birth month  [5] birth year, low 8 bits only
        [6] body weight  [7] body height  [8] resting HR  [9] max HR

    The device protocol carries the birth year in a single byte, so only
    ``year & 0xFF`` is sent.

    Raises:
        ValidationError: listing every violated field; nothing is encoded.
    """
    validator = validator or UserInfoValidator()
    violations = validator.validate(record)
    if violations:
        LOGGER.debug("User info rejected: %s", violations)
        raise ValidationError(violations)

    frame = bytes(
        (
            CommandType.USERINFO_SET,
            SUBCMD_USER_SETTINGS_SET,
            user_info_flags(record),
            record.birthday.day,
            record.birthday.month,
            record.birthday.year & 0xFF,
            record.body_weight,
            record.body_height,
            record.resting_hr,
            record.max_hr,
        )
    )
    LOGGER.debug("Encoded user info frame %s", frame.hex())
    return frame


def decode_user_info(data: bytes) -> UserInfo:
    # The device has never been seen sending this frame back, so there is no
    # known layout to parse against.
    raise UnsupportedCommandError("Decoding user info frames is not implemented", raw=data)


def default_registry() -> CommandRegistry:
    return CommandRegistry(
        [
            CommandCodec(
                command=CommandType.USERINFO_SET,
                encode=encode_user_info,
                decode=decode_user_info,
            ),
        ]
    )
