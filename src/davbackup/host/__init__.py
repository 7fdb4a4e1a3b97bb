"""
Host application integration for davbackup.

Usage:
    from davbackup.host import LocalHost

    host = LocalHost(settings)
    host.available_directories()
"""

from davbackup.host.context import (
    HostContext,
    LocalHost,
    detect_executable,
    detect_plugin_folder_name,
    list_subdirectories,
)

__all__ = [
    "HostContext",
    "LocalHost",
    "detect_executable",
    "detect_plugin_folder_name",
    "list_subdirectories",
]
