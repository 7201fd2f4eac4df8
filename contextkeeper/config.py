"""
Configuration management for context stores.

The configuration is stored as a TOML file in the storage directory,
beside items.json. One StoreConfig value is loaded per command
invocation and passed to whatever needs it.
"""

import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w


CONFIG_FILENAME = "contextkeeper.toml"
CONFIG_VERSION = 1

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M"

# User-facing key -> StoreConfig attribute
CONFIG_KEYS = {
    "default_project": "default_project",
    "date_format": "date_format",
    "editor": "editor",
    "file_lock": "file_lock",
}

_TRUE_WORDS = {"true", "1", "yes", "on"}
_FALSE_WORDS = {"false", "0", "no", "off"}


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    default_project: str = ""
    date_format: str = DEFAULT_DATE_FORMAT
    editor: str = ""
    # Serialize read-modify-write cycles across ck processes
    file_lock: bool = False

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def get_value(self, key: str) -> Any:
        """Value for a user-facing key. Raises KeyError for unknown keys."""
        if key not in CONFIG_KEYS:
            raise KeyError(key)
        return getattr(self, CONFIG_KEYS[key])

    def set_value(self, key: str, value: str) -> None:
        """
        Set a user-facing key from its string form.

        Raises:
            KeyError: Unknown key
            ValueError: Value cannot be converted
        """
        if key not in CONFIG_KEYS:
            raise KeyError(key)
        attr = CONFIG_KEYS[key]
        if isinstance(getattr(self, attr), bool):
            setattr(self, attr, _parse_bool(value))
        else:
            setattr(self, attr, value)


def _parse_bool(value: str) -> bool:
    word = value.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(f"Expected true or false, got {value!r}")


def _expect(section: dict, key: str, kind: type, default: Any) -> Any:
    value = section.get(key, default)
    if not isinstance(value, kind):
        raise ValueError(f"Config value {key!r} must be {kind.__name__}, got {value!r}")
    return value


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a storage directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    store = data.get("store", {})
    defaults = data.get("defaults", {})

    # Validate version
    version = _expect(store, "version", int, CONFIG_VERSION)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    return StoreConfig(
        path=store_path,
        version=version,
        created=_expect(store, "created", str, ""),
        file_lock=_expect(store, "file_lock", bool, False),
        default_project=_expect(defaults, "project", str, ""),
        date_format=_expect(defaults, "date_format", str, DEFAULT_DATE_FORMAT),
        editor=_expect(defaults, "editor", str, ""),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the storage directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "file_lock": config.file_lock,
        },
        "defaults": {
            "project": config.default_project,
            "date_format": config.date_format,
            "editor": config.editor,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_default(store_path: Path) -> StoreConfig:
    """
    Load existing config, or return defaults without writing them.

    This is the main entry point for commands: reading a store must not
    create files in it.
    """
    if (store_path / CONFIG_FILENAME).exists():
        return load_config(store_path)
    return StoreConfig(path=store_path)


def reset_config(config: StoreConfig) -> StoreConfig:
    """Defaults for the same store, keeping its creation time. Saved."""
    fresh = StoreConfig(path=config.path)
    if config.created:
        fresh.created = config.created
    save_config(fresh)
    return fresh
