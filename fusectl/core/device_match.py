"""Matching of advertised peripherals against the configured device identity."""

from __future__ import annotations

from fusectl.core.model import Advertisement, DeviceIdentity


def _normalize(value: str) -> str:
    return value.casefold()


def matches_identity(advertisement: Advertisement, identity: DeviceIdentity) -> bool:
    return _normalize(advertisement.address) == _normalize(identity.address)

