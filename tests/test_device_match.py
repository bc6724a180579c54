from fusectl.core.device_match import matches_identity
from fusectl.core.model import Advertisement, DeviceIdentity


def test_identity_match_ignores_case() -> None:
    advertisement = Advertisement(address="c8:0f:10:aa:bb:cc")
    assert matches_identity(advertisement, DeviceIdentity("C8:0F:10:AA:BB:CC"))


def test_identity_match_is_exact_apart_from_case() -> None:
    advertisement = Advertisement(address="C8:0F:10:AA:BB:CC")
    assert not matches_identity(advertisement, DeviceIdentity(" c8:0f:10:aa:bb:cc\n"))
    assert not matches_identity(advertisement, DeviceIdentity("C8:0F:10:AA:BB"))


def test_different_address_does_not_match() -> None:
    advertisement = Advertisement(address="11:22:33:44:55:66", name="FUSE")
    assert not matches_identity(advertisement, DeviceIdentity("C8:0F:10:AA:BB:CC"))
