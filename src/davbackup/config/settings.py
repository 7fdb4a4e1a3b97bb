"""
Settings for davbackup.

Settings come from three layers, later ones winning:

    1. dataclass defaults below
    2. the YAML config (~/.davbackup/config.yaml, or $DAVBACKUP_CONFIG)
    3. DAVBACKUP_* environment variables

The WebDAV password only ever comes from the environment or the encrypted
credential store; save_config does not write it.
"""

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Config and credential files live here
DEFAULT_CONFIG_DIR = Path.home() / ".davbackup"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

DEFAULT_BACKUP_FILENAME = "FlowBackup.zip"
DEFAULT_REMOTE_FOLDER = "flowlauncher_backup"
DEFAULT_TIMEOUT = 300
HOST_DIRECTORY_NAME = "FlowLauncher"
DEFAULT_PROCESS_NAME = "Flow.Launcher"
DEFAULT_PLUGINS_DIRECTORY = "Plugins"


def default_data_root() -> str:
    """
    Get the default host data root.

    Returns %APPDATA%\\FlowLauncher on Windows and
    $XDG_CONFIG_HOME/FlowLauncher (or ~/.config/FlowLauncher) elsewhere.
    """
    if os.name == "nt":
        base = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
    else:
        base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return str(Path(base) / HOST_DIRECTORY_NAME)


@dataclass
class HostConfig:
    """
    Settings describing the host application whose data is backed up.

    Attributes:
        data_root: Directory whose subdirectories can be backed up.
        executable: Host executable relaunched after a restore. Empty means
            detect it from the process name.
        process_name: Host process terminated before a restore.
        plugin_directory: Installation folder of this plugin. Empty means
            detect it from the package location.
        plugins_directory_name: Top-level directory restored per plugin.
    """

    data_root: str = field(default_factory=default_data_root)
    executable: str = ""
    process_name: str = DEFAULT_PROCESS_NAME
    plugin_directory: str = ""
    plugins_directory_name: str = DEFAULT_PLUGINS_DIRECTORY


@dataclass
class Settings:
    """
    Complete davbackup configuration settings.

    Attributes:
        server_url: WebDAV base URL.
        username: WebDAV account name.
        password: WebDAV password. Never logged and never saved to YAML.
        backup_filename: Remote archive name.
        backup_directories: Selected data root subdirectories, in order.
        remote_folder: Remote folder holding the archive.
        timeout: HTTP timeout in seconds.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        host: Host application settings.
    """

    server_url: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    backup_filename: str = DEFAULT_BACKUP_FILENAME
    backup_directories: list[str] = field(default_factory=list)
    remote_folder: str = DEFAULT_REMOTE_FOLDER
    timeout: int = DEFAULT_TIMEOUT
    log_level: str = "INFO"

    host: HostConfig = field(default_factory=HostConfig)

    def effective_backup_filename(self) -> str:
        """
        Get the archive file name actually used locally and remotely.

        Blank values and ``.``/``..`` fall back to the default, and directory
        components are dropped so the name cannot escape the remote folder.
        """
        name = re.split(r"[\\/]", (self.backup_filename or "").strip())[-1].strip()
        if name in ("", ".", ".."):
            return DEFAULT_BACKUP_FILENAME
        return name


class ConfigurationError(Exception):
    """The config file is unreadable or holds an invalid value."""

    pass


def get_config_path() -> Path:
    """Config file location: $DAVBACKUP_CONFIG, else ~/.davbackup/config.yaml."""
    override = os.environ.get("DAVBACKUP_CONFIG")
    return Path(override) if override else DEFAULT_CONFIG_FILE


def _read_yaml(config_path: Path) -> dict[str, Any]:
    """Parse the config file into a mapping; an empty file is an empty mapping."""
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    return data


def load_config(config_path: Path | None = None) -> Settings:
    """
    Build Settings from defaults, the YAML file and DAVBACKUP_* variables.

    Later sources win. A missing file is not an error; only the defaults
    and the environment apply then.

    Args:
        config_path: File to read. Defaults to get_config_path().

    Raises:
        ConfigurationError: If the file cannot be parsed or a value is invalid.
    """
    path = config_path or get_config_path()
    settings = Settings()

    if path.exists():
        _apply_config_data(settings, _read_yaml(path))
    _apply_environment_overrides(settings)
    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Write settings to YAML. The password is left out.

    Raises:
        ConfigurationError: If the file cannot be written.
    """
    path = config_path or get_config_path()
    document = yaml.safe_dump(
        _settings_to_dict(settings), default_flow_style=False, sort_keys=False
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(document, encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot write {path}: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Copy recognised keys of each YAML section onto settings."""
    general = data.get("davbackup") or {}
    if "log_level" in general:
        settings.log_level = str(general["log_level"]).upper()

    webdav = data.get("webdav") or {}
    if "server_url" in webdav:
        settings.server_url = str(webdav["server_url"] or "")
    if "username" in webdav:
        settings.username = str(webdav["username"] or "")
    if "remote_folder" in webdav:
        settings.remote_folder = str(webdav["remote_folder"] or DEFAULT_REMOTE_FOLDER)
    if "timeout" in webdav:
        settings.timeout = _to_int(webdav["timeout"], "webdav.timeout")

    backup = data.get("backup") or {}
    if "filename" in backup:
        settings.backup_filename = str(backup["filename"] or "")
    if "directories" in backup:
        directories = backup["directories"] or []
        if not isinstance(directories, list):
            raise ConfigurationError("backup.directories must be a list")
        settings.backup_directories = [str(name) for name in directories if name is not None]

    host = data.get("host") or {}
    if host.get("data_root"):
        settings.host.data_root = str(host["data_root"])
    if "executable" in host:
        settings.host.executable = str(host["executable"] or "")
    if "process_name" in host:
        settings.host.process_name = str(host["process_name"] or "")
    if "plugin_directory" in host:
        settings.host.plugin_directory = str(host["plugin_directory"] or "")
    if host.get("plugins_directory_name"):
        settings.host.plugins_directory_name = str(host["plugins_directory_name"])

    return settings


def _to_int(value: Any, name: str) -> int:
    """Convert a config value to int, raising ConfigurationError."""
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _split_list(value: str) -> list[str]:
    """Split a comma separated environment value."""
    return [item.strip() for item in value.split(",") if item.strip()]


# Environment variable -> (dotted attribute, parser)
ENVIRONMENT_OVERRIDES: dict[str, tuple[str, Callable[[str], Any]]] = {
    "DAVBACKUP_SERVER_URL": ("server_url", str),
    "DAVBACKUP_USERNAME": ("username", str),
    "DAVBACKUP_PASSWORD": ("password", str),
    "DAVBACKUP_BACKUP_FILENAME": ("backup_filename", str),
    "DAVBACKUP_DIRECTORIES": ("backup_directories", _split_list),
    "DAVBACKUP_TIMEOUT": ("timeout", lambda raw: _to_int(raw, "DAVBACKUP_TIMEOUT")),
    "DAVBACKUP_LOG_LEVEL": ("log_level", str.upper),
    "DAVBACKUP_DATA_ROOT": ("host.data_root", str),
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Overlay DAVBACKUP_* variables that are set."""
    for variable, (attribute, parse) in ENVIRONMENT_OVERRIDES.items():
        raw = os.environ.get(variable)
        if raw is not None:
            _set_nested_attr(settings, attribute, parse(raw))
    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """setattr() through a dotted path such as ``host.data_root``."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Reject values that would break every operation.

    Connection details are not required here so a half-filled config can
    still be loaded and completed with ``davbackup configure``; each push
    or pull validates them itself.

    Raises:
        ConfigurationError: On an unknown log level or a timeout below 1s.
    """
    if settings.log_level not in LOG_LEVELS:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. Must be one of: {', '.join(LOG_LEVELS)}"
        )
    if settings.timeout < 1:
        raise ConfigurationError("timeout must be at least 1 second")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """YAML document for settings, without the password."""
    return {
        "davbackup": {
            "log_level": settings.log_level,
        },
        "webdav": {
            "server_url": settings.server_url,
            "username": settings.username,
            "remote_folder": settings.remote_folder,
            "timeout": settings.timeout,
        },
        "backup": {
            "filename": settings.backup_filename,
            "directories": list(settings.backup_directories),
        },
        "host": {
            "data_root": settings.host.data_root,
            "executable": settings.host.executable,
            "process_name": settings.host.process_name,
            "plugin_directory": settings.host.plugin_directory,
            "plugins_directory_name": settings.host.plugins_directory_name,
        },
    }
