"""
Host application integration.

The backup engine never talks to the host application directly. Everything
it needs (the data root, the executable to relaunch, status messages,
shutdown) goes through a HostContext. LocalHost is the implementation used
by the command-line interface; a plugin runtime can provide its own.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from davbackup.config.settings import Settings, save_config

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent.parent


class HostContext(Protocol):
    """Services the backup engine consumes from the host application."""

    def data_root(self) -> Path:
        """Directory whose subdirectories can be backed up."""
        ...

    def available_directories(self) -> list[str]:
        """Names of the subdirectories currently present under the data root."""
        ...

    def executable_path(self) -> str:
        """Executable relaunched after a restore."""
        ...

    def process_name(self) -> str:
        """Process name terminated before a restore."""
        ...

    def plugin_folder_name(self) -> str:
        """Installation folder of the running plugin, or an empty string."""
        ...

    def show_message(self, title: str, message: str) -> None:
        """Display a status message to the user."""
        ...

    def log_exception(self, message: str, exc: BaseException) -> None:
        """Record an unexpected exception with its traceback."""
        ...

    def save_settings(self, settings: Settings) -> None:
        """Persist settings changed by normalization."""
        ...

    def shutdown(self) -> None:
        """Terminate the host process."""
        ...


def list_subdirectories(root: Path) -> list[str]:
    """
    List subdirectory names of ``root``.

    Names are distinct case-insensitively and sorted case-insensitively.
    A missing root yields an empty list.
    """
    root = Path(root)
    if not root.is_dir():
        return []

    seen: set[str] = set()
    names: list[str] = []
    for entry in root.iterdir():
        if not entry.is_dir() or not entry.name.strip():
            continue
        key = entry.name.casefold()
        if key not in seen:
            seen.add(key)
            names.append(entry.name)

    return sorted(names, key=str.casefold)


def detect_plugin_folder_name(
    data_root: Path,
    plugins_directory_name: str,
    package_dir: Path = PACKAGE_DIR,
) -> str:
    """
    Find the plugin folder this package is installed in.

    Args:
        data_root: Host data root.
        plugins_directory_name: Name of the plugins directory under the root.
        package_dir: Location of the installed package.

    Returns:
        The first path component below ``<data_root>/<plugins>``, or an
        empty string when the package is installed elsewhere.
    """
    plugins_root = (Path(data_root) / plugins_directory_name).resolve()
    try:
        relative = Path(package_dir).resolve().relative_to(plugins_root)
    except ValueError:
        return ""
    return relative.parts[0] if relative.parts else ""


def detect_executable(process_name: str) -> str:
    """
    Locate the host executable from its process name.

    Looks on PATH first, then in the default Flow Launcher install location
    on Windows. Falls back to the bare program name.
    """
    found = shutil.which(process_name)
    if found:
        return found

    if os.name == "nt":
        local_app_data = os.environ.get("LOCALAPPDATA")
        if local_app_data:
            candidate = Path(local_app_data) / "FlowLauncher" / f"{process_name}.exe"
            if candidate.exists():
                return str(candidate)
        return f"{process_name}.exe"

    return process_name


class LocalHost:
    """
    HostContext backed by settings and the local filesystem.

    Attributes:
        settings: Active settings.
        config_path: Where normalized settings are saved.
    """

    def __init__(
        self,
        settings: Settings,
        config_path: Path | None = None,
        notify: Callable[[str], None] | None = None,
        exit_process: Callable[[int], None] = os._exit,
    ) -> None:
        self.settings = settings
        self.config_path = config_path
        self._notify = notify or print
        self._exit_process = exit_process

    def data_root(self) -> Path:
        return Path(self.settings.host.data_root).expanduser()

    def available_directories(self) -> list[str]:
        return list_subdirectories(self.data_root())

    def executable_path(self) -> str:
        if self.settings.host.executable:
            return self.settings.host.executable
        return detect_executable(self.process_name())

    def process_name(self) -> str:
        return self.settings.host.process_name

    def plugin_folder_name(self) -> str:
        if self.settings.host.plugin_directory:
            return Path(self.settings.host.plugin_directory.rstrip("/\\")).name
        return detect_plugin_folder_name(
            self.data_root(), self.settings.host.plugins_directory_name
        )

    def show_message(self, title: str, message: str) -> None:
        logger.info(f"{title}: {message}")
        self._notify(f"{title}: {message}")

    def log_exception(self, message: str, exc: BaseException) -> None:
        logger.error(message, exc_info=(type(exc), exc, exc.__traceback__))

    def save_settings(self, settings: Settings) -> None:
        save_config(settings, self.config_path)

    def shutdown(self) -> None:
        """Flush logging and exit immediately, skipping interpreter cleanup."""
        logger.info("Exiting for restore")
        logging.shutdown()
        self._exit_process(0)
