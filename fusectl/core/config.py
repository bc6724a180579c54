"""Configuration loading for the fusectl CLI."""

from __future__ import annotations

import datetime as dt
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from fusectl.core.errors import ConfigError
from fusectl.core.model import DeviceIdentity, UserInfo
from fusectl.core.validation import load_schema_validator

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "config.json"


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys and keeps dates as strings."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:timestamp"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigError(f"Duplicate key '{key}' in configuration")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class AppConfig:
    device: DeviceIdentity
    connect_attempts: int = 1
    timeout_s: float | None = None
    log_level: str = "WARNING"
    user_info: UserInfo | None = None


def default_config_paths() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return Path.cwd() / DEFAULT_CONFIG_NAME, xdg_config / "fusectl/config.yaml"


def find_config(explicit: Path | None = None) -> Path | None:
    if explicit is not None:
        return explicit
    for candidate in default_config_paths():
        if candidate.is_file():
            return candidate
    return None


def read_config_document(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Error while reading configuration file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid configuration format in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping at root")
    return loaded


def _user_info(doc: dict[str, Any], source: Path | str) -> UserInfo:
    fields = dict(doc)
    try:
        fields["birthday"] = dt.date.fromisoformat(fields["birthday"])
    except ValueError as exc:
        raise ConfigError(f"Invalid user_info.birthday in {source}: {exc}") from exc
    return UserInfo(**fields)


def build_config(doc: dict[str, Any], source: Path | str = "<config>", *, device: str | None = None) -> AppConfig:
    """Validate a configuration document; ``device`` overrides ``device_id`` when given."""
    if device is not None:
        doc = {**doc, "device_id": device}

    validator = load_schema_validator("config.schema.json")
    errors = sorted(validator.iter_errors(doc), key=lambda e: list(e.absolute_path))
    if errors:
        first = errors[0]
        path = ".".join(str(p) for p in first.absolute_path)
        where = f" ({path})" if path else ""
        raise ConfigError(f"Schema validation failed for {source}{where}: {first.message}")

    device_id = doc["device_id"].strip()
    if not device_id:
        raise ConfigError(f"Schema validation failed for {source} (device_id): must not be blank")

    user_info = _user_info(doc["user_info"], source) if "user_info" in doc else None
    return AppConfig(
        device=DeviceIdentity(device_id),
        connect_attempts=doc.get("connect_attempts", 1),
        timeout_s=float(doc["timeout_s"]) if "timeout_s" in doc else None,
        log_level=doc.get("log_level", "WARNING"),
        user_info=user_info,
    )


def load_config(path: Path | None = None, *, device: str | None = None) -> AppConfig:
    """Load the configuration from ``path`` or the default locations.

    With no file at all, ``device`` alone is enough to build a configuration.
    """
    found = find_config(path)
    if found is None:
        if device is None:
            raise ConfigError(
                "No configuration file found and no --device given "
                f"(looked for ./{DEFAULT_CONFIG_NAME} and $XDG_CONFIG_HOME/fusectl/config.yaml)"
            )
        return build_config({}, "<command line>", device=device)

    LOGGER.debug("Loading configuration from %s", found)
    return build_config(read_config_document(found), found, device=device)
