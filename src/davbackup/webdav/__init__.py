"""
WebDAV transport for davbackup.

Usage:
    from davbackup.webdav import WebDAVClient

    client = WebDAVClient(server_url, username, password)
    client.ensure_remote_folder("flowlauncher_backup")
    url = client.upload("flowlauncher_backup", "FlowBackup.zip", archive_path)
"""

from davbackup.webdav.client import (
    WebDAVClient,
    basic_auth_header,
    build_remote_file_url,
    build_remote_folder_url,
    close_session,
    get_session,
)

__all__ = [
    "WebDAVClient",
    "basic_auth_header",
    "build_remote_file_url",
    "build_remote_folder_url",
    "close_session",
    "get_session",
]
