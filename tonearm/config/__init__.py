"""
Configuration management for Tonearm.

Settings are read from a TOML file:

    [library]
    directory = "~/Music"
    database = "~/.local/share/tonearm/library.db"

    [import]
    extensions = [".mp3", ".flac"]
    follow_symlinks = false

    [server]
    host = "127.0.0.1"
    port = 8337

Every key is optional. A missing file yields the defaults.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tonearm.core.scanner import DEFAULT_AUDIO_EXTENSIONS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "tonearm" / "config.toml"


class ConfigError(ValueError):
    """Raised when the configuration file cannot be parsed or holds invalid values."""


@dataclass
class LibrarySettings:
    directory: Path = field(default_factory=lambda: Path.home() / "Music")
    database: Path = field(
        default_factory=lambda: Path.home() / ".local" / "share" / "tonearm" / "library.db"
    )


@dataclass
class ImportSettings:
    extensions: frozenset[str] = DEFAULT_AUDIO_EXTENSIONS
    follow_symlinks: bool = False


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8337


@dataclass
class Config:
    """Loaded configuration."""

    library: LibrarySettings = field(default_factory=LibrarySettings)
    import_: ImportSettings = field(default_factory=ImportSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    source: Path | None = None


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _path(section: str, key: str, value: Any) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{section}.{key} must be a non-empty string")
    return Path(value).expanduser()


def _parse_library(data: dict[str, Any]) -> LibrarySettings:
    settings = LibrarySettings()
    if "directory" in data:
        settings.directory = _path("library", "directory", data["directory"])
    if "database" in data:
        settings.database = _path("library", "database", data["database"])
    return settings


def _parse_import(data: dict[str, Any]) -> ImportSettings:
    settings = ImportSettings()
    if "extensions" in data:
        raw = data["extensions"]
        if not isinstance(raw, list) or not all(isinstance(e, str) and e for e in raw):
            raise ConfigError("import.extensions must be a list of non-empty strings")
        settings.extensions = frozenset(
            e.lower() if e.startswith(".") else f".{e.lower()}" for e in raw
        )
    if "follow_symlinks" in data:
        if not isinstance(data["follow_symlinks"], bool):
            raise ConfigError("import.follow_symlinks must be true or false")
        settings.follow_symlinks = data["follow_symlinks"]
    return settings


def _parse_server(data: dict[str, Any]) -> ServerSettings:
    settings = ServerSettings()
    if "host" in data:
        if not isinstance(data["host"], str) or not data["host"]:
            raise ConfigError("server.host must be a non-empty string")
        settings.host = data["host"]
    if "port" in data:
        port = data["port"]
        if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
            raise ConfigError("server.port must be an integer between 1 and 65535")
        settings.port = port
    return settings


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from TOML.

    Args:
        config_path: Path to config.toml. If None, uses the default location.

    Returns:
        Loaded Config instance (defaults if the file does not exist).
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.debug("No config file at %s, using defaults", config_path)
        return Config()

    logger.debug("Loading config from %s", config_path)
    try:
        with config_path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{config_path}: {e}") from e

    return Config(
        library=_parse_library(_section(data, "library")),
        import_=_parse_import(_section(data, "import")),
        server=_parse_server(_section(data, "server")),
        source=config_path,
    )
