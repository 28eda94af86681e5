"""Settings loading and validation for boardlink."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from boardlink.core.errors import SettingsLoadError, SettingsValidationError

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise SettingsValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Settings:
    user_data_path: Path
    tools_path: Path
    scan_interval_s: float = 0.1
    health_interval_s: float = 0.01
    subprocess_timeout_s: float | None = 600.0
    device_names: dict[str, str] = field(default_factory=dict)

    @property
    def extensions_path(self) -> Path:
        return self.user_data_path.parent / "extensions" / "libraries"


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("boardlink.schemas").joinpath("settings.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _data_root() -> Path:
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_data / "boardlink"


def user_settings_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "boardlink/config.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SettingsLoadError(f"Could not read settings file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise SettingsValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise SettingsValidationError(f"Settings file {path} must contain a mapping at root")
    return loaded


def _validate(doc: dict[str, Any], source: Path | Traversable) -> None:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise SettingsValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _normalize_device_names(names: dict[str, str]) -> dict[str, str]:
    return {key.strip().upper(): value for key, value in names.items()}


def load_device_names() -> dict[str, str]:
    path = resources.files("boardlink.data").joinpath("usb_ids.yaml")
    doc = _read_yaml(path)
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in doc.items()):
        raise SettingsValidationError(f"{path} must map pnpid strings to names")
    return _normalize_device_names(doc)


def load_settings(path: Path | None = None) -> LoadedSettings:
    """Merge packaged defaults with the user's config file, if any."""
    packaged = resources.files("boardlink.data").joinpath("defaults.yaml")
    doc = _read_yaml(packaged)
    _validate(doc, packaged)

    warnings: list[str] = []
    user_path = path or user_settings_path()
    if user_path.exists():
        user_doc = _read_yaml(user_path)
        _validate(user_doc, user_path)
        doc = {**doc, **user_doc}
    elif path is not None:
        raise SettingsLoadError(f"Settings file {path} does not exist")

    device_names = load_device_names()
    for pnpid, name in _normalize_device_names(doc.get("devices", {})).items():
        if pnpid in device_names:
            warning = f"User device name for '{pnpid}' overrides packaged name"
            LOGGER.warning(warning)
            warnings.append(warning)
        device_names[pnpid] = name

    root = _data_root()
    user_data = doc.get("user_data_path")
    tools = doc.get("tools_path")
    settings = Settings(
        user_data_path=Path(user_data).expanduser() if user_data else root / "data",
        tools_path=Path(tools).expanduser() if tools else root / "tools",
        scan_interval_s=float(doc["scan_interval_s"]),
        health_interval_s=float(doc["health_interval_s"]),
        subprocess_timeout_s=(
            float(doc["subprocess_timeout_s"]) if doc.get("subprocess_timeout_s") is not None else None
        ),
        device_names=device_names,
    )
    return LoadedSettings(settings=settings, warnings=tuple(warnings))
