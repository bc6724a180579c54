"""Domain-specific errors for fusectl."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fusectl.core.model import Violation


class FusectlError(Exception):
    """Base error for fusectl."""


class ConfigError(FusectlError):
    """Raised when the configuration file cannot be read or does not conform to schema."""


class UnknownIdentifierError(FusectlError):
    """Raised when a logical service/characteristic name is not a known identifier."""


class ValidationError(FusectlError):
    """Raised when a record fails one or more field checks. No frame is produced."""

    def __init__(self, violations: Sequence[Violation]) -> None:
        self.violations = tuple(violations)
        details = "; ".join(f"{v.field}: {v.message}" for v in self.violations)
        super().__init__(f"Invalid record ({len(self.violations)} violation(s)): {details}")

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(v.field for v in self.violations)


class DecodeError(FusectlError):
    """Raised when a payload is malformed or its format is not supported."""

    def __init__(self, message: str, *, characteristic: str | None = None, raw: bytes | None = None) -> None:
        self.characteristic = characteristic
        self.raw = raw
        if raw is not None:
            message = f"{message} (raw={raw.hex() or '<empty>'})"
        super().__init__(message)


class UnsupportedCommandError(DecodeError):
    """Raised when a command type is known but its frame layout is not implemented."""


class TransportError(FusectlError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when scanning for or connecting to the peripheral fails."""


class TransportReadError(TransportError):
    """Raised when reading a characteristic fails."""


class TransportWriteError(TransportError):
    """Raised when writing or subscribing to a characteristic fails."""


class TransportTimeoutError(TransportError):
    """Raised when a transport operation times out."""


class IncompatibleDeviceError(TransportError):
    """Raised when a required service or characteristic cannot be resolved."""

    def __init__(self, message: str, *, service: str | None = None, characteristic: str | None = None) -> None:
        self.service = service
        self.characteristic = characteristic
        super().__init__(message)


class DisconnectedError(FusectlError):
    """Raised to callers of operations still pending when the session ended."""


class SessionStateError(FusectlError):
    """Raised when an operation is not allowed in the session's current state."""
