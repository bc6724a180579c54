from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from fusectl.core.config import find_config, load_config
from fusectl.core.errors import ConfigError
from fusectl.core.model import DeviceIdentity


def _write_config(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.chdir(tmp_path)


def test_load_json_config(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "fuse.json", '{"device_id": "C8:0F:10:AA:BB:CC"}')
    cfg = load_config(path)
    assert cfg.device == DeviceIdentity("C8:0F:10:AA:BB:CC")
    assert cfg.connect_attempts == 1
    assert cfg.timeout_s is None
    assert cfg.log_level == "WARNING"
    assert cfg.user_info is None


def test_load_yaml_config_with_user_info(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path / "fuse.yaml",
        """
device_id: c8:0f:10:aa:bb:cc
connect_attempts: 3
timeout_s: 15
log_level: INFO
user_info:
  gender: 1
  unit_type: 0
  hr_display_type: 1
  display_orientation: 0
  wo_display_mode: 0
  adl_goal_cal: 1
  wo_recording: 1
  hr_auto_adj: 0
  birthday: 1985-06-15
  body_weight: 70
  body_height: 175
  resting_hr: 60
  max_hr: 190
""",
    )
    cfg = load_config(path)
    assert cfg.connect_attempts == 3
    assert cfg.timeout_s == 15.0
    assert cfg.log_level == "INFO"
    assert cfg.user_info is not None
    assert cfg.user_info.birthday == dt.date(1985, 6, 15)
    assert cfg.user_info.max_hr == 190


def test_default_lookup_prefers_local_config_json(tmp_path: Path) -> None:
    local = _write_config(tmp_path / "config.json", '{"device_id": "local"}')
    _write_config(tmp_path / "cfg" / "fusectl" / "config.yaml", "device_id: xdg\n")
    found = find_config()
    assert found is not None
    assert found.resolve() == local.resolve()
    assert load_config().device.address == "local"


def test_default_lookup_falls_back_to_xdg(tmp_path: Path) -> None:
    _write_config(tmp_path / "cfg" / "fusectl" / "config.yaml", "device_id: xdg\n")
    assert load_config().device.address == "xdg"


def test_device_option_overrides_and_replaces_missing_file() -> None:
    assert load_config(device="11:22:33:44:55:66").device.address == "11:22:33:44:55:66"


def test_missing_config_without_device_rejected() -> None:
    with pytest.raises(ConfigError, match="No configuration file"):
        load_config()


def test_duplicate_keys_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "dup.yaml", "device_id: a\ndevice_id: b\n")
    with pytest.raises(ConfigError, match="Duplicate key"):
        load_config(path)


def test_unknown_keys_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "extra.yaml", "device_id: a\ncolour: blue\n")
    with pytest.raises(ConfigError, match="Schema validation failed"):
        load_config(path)


def test_invalid_birthday_rejected(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path / "bad.json",
        '{"device_id": "a", "user_info": {"gender": 1, "unit_type": 0, "hr_display_type": 0,'
        ' "display_orientation": 0, "wo_display_mode": 0, "adl_goal_cal": 0, "wo_recording": 0,'
        ' "hr_auto_adj": 0, "birthday": "1985-13-40", "body_weight": 70, "body_height": 175,'
        ' "resting_hr": 60, "max_hr": 190}}',
    )
    with pytest.raises(ConfigError, match="birthday"):
        load_config(path)


def test_unreadable_config_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Error while reading"):
        load_config(tmp_path / "missing.json")


def test_blank_device_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "blank.yaml", "device_id: '  '\n")
    with pytest.raises(ConfigError, match="device_id"):
        load_config(path)
