"""
Minimal WebDAV client for backup transfers.

Only the three verbs the backup workflows need are implemented:
    - MKCOL to create the remote backup folder (405 means it already exists)
    - PUT to upload an archive
    - GET to download an archive

Every request carries a Basic authorization header. All clients share one
requests.Session for the lifetime of the process so connections are kept
alive between calls.
"""

from __future__ import annotations

import base64
import logging
import re
import threading
import time
from pathlib import Path
from typing import Any
from urllib.parse import quote, urljoin

import requests

from davbackup.errors import RemoteConnectionError, RemoteProtocolError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300
CHUNK_SIZE = 64 * 1024
ARCHIVE_CONTENT_TYPE = "application/zip"

_session: requests.Session | None = None
_session_lock = threading.Lock()


def get_session() -> requests.Session:
    """
    Get the process-wide HTTP session, creating it on first use.

    Returns:
        Shared requests.Session.
    """
    global _session
    with _session_lock:
        if _session is None:
            _session = requests.Session()
        return _session


def close_session() -> None:
    """Close the shared HTTP session, if one was created."""
    global _session
    with _session_lock:
        if _session is not None:
            _session.close()
            _session = None


def basic_auth_header(username: str, password: str) -> str:
    """
    Build a Basic authorization header value.

    Args:
        username: Account name.
        password: Account password.

    Returns:
        ``"Basic <base64(username:password)>"`` using UTF-8.
    """
    token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


def append_trailing_slash(url: str) -> str:
    """Trim a URL and make sure it ends with a slash."""
    trimmed = url.strip()
    return trimmed if trimmed.endswith("/") else f"{trimmed}/"


def bare_filename(filename: str) -> str:
    """
    Reduce a file name to its last path component.

    Raises:
        ValueError: If nothing usable (or only ``.``/``..``) is left.
    """
    name = re.split(r"[\\/]", filename.strip())[-1].strip()
    if name in ("", ".", ".."):
        raise ValueError(f"Not a file name: {filename!r}")
    return name


def build_remote_folder_url(base_url: str, folder: str) -> str:
    """
    Build the URL of a remote folder.

    Example:
        >>> build_remote_folder_url("https://x.example/dav", "flowlauncher_backup")
        'https://x.example/dav/flowlauncher_backup/'
    """
    encoded_folder = quote(folder.strip("/"), safe="")
    return urljoin(append_trailing_slash(base_url), f"{encoded_folder}/")


def build_remote_file_url(base_url: str, folder: str, filename: str) -> str:
    """
    Build the URL of a file inside a remote folder.

    Example:
        >>> build_remote_file_url("https://x.example/dav", "flowlauncher_backup", "My Backup.zip")
        'https://x.example/dav/flowlauncher_backup/My%20Backup.zip'
    """
    encoded_folder = quote(folder.strip("/"), safe="")
    encoded_name = quote(bare_filename(filename), safe="")
    return urljoin(append_trailing_slash(base_url), f"{encoded_folder}/{encoded_name}")


def _is_success(response: requests.Response) -> bool:
    """Check for a 2xx status."""
    return 200 <= response.status_code < 300


class WebDAVClient:
    """
    Authenticated WebDAV operations against one server.

    Example:
        client = WebDAVClient("https://dav.example/remote.php/dav/files/me", "me", "secret")
        client.ensure_remote_folder("flowlauncher_backup")
        client.upload("flowlauncher_backup", "FlowBackup.zip", Path("FlowBackup.zip"))

    Attributes:
        base_url: Server base URL; a trailing slash is added when resolving.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._authorization = basic_auth_header(username, password)
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Session used for requests; the shared one unless injected."""
        if self._session is None:
            return get_session()
        return self._session

    def ensure_remote_folder(self, folder: str) -> str:
        """
        Create the remote folder if it does not exist yet.

        Args:
            folder: Folder name below the base URL.

        Returns:
            URL of the folder.

        Raises:
            RemoteProtocolError: For any status other than 2xx or 405.
            RemoteConnectionError: If the server cannot be reached.
        """
        url = build_remote_folder_url(self.base_url, folder)
        response = self._request("MKCOL", url)
        try:
            if _is_success(response) or response.status_code == 405:
                return url
            raise RemoteProtocolError(
                f"Cannot create/verify remote folder '{folder}' "
                f"({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        finally:
            response.close()

    def upload(self, folder: str, filename: str, local_path: Path) -> str:
        """
        Upload a local archive.

        Args:
            folder: Remote folder name.
            filename: Remote file name; reduced to its bare name.
            local_path: Archive to upload. Streamed, not read into memory.

        Returns:
            URL of the uploaded file.

        Raises:
            RemoteProtocolError: If the server does not answer 2xx.
            RemoteConnectionError: If the server cannot be reached.
        """
        url = build_remote_file_url(self.base_url, folder, filename)
        with open(local_path, "rb") as f:
            response = self._request(
                "PUT",
                url,
                data=f,
                headers={"Content-Type": ARCHIVE_CONTENT_TYPE},
            )
        try:
            if _is_success(response):
                return url
            raise RemoteProtocolError(
                f"Upload failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        finally:
            response.close()

    def download(self, folder: str, filename: str, destination: Path) -> Path:
        """
        Download a remote archive to a local file.

        Args:
            folder: Remote folder name.
            filename: Remote file name; reduced to its bare name.
            destination: Local file to write. Parent directories are created.

        Returns:
            The destination path.

        Raises:
            RemoteProtocolError: If the server does not answer 2xx.
            RemoteConnectionError: If the server cannot be reached.
        """
        url = build_remote_file_url(self.base_url, folder, filename)
        destination = Path(destination)

        response = self._request("GET", url, stream=True)
        try:
            if not _is_success(response):
                raise RemoteProtocolError(
                    f"Download failed ({response.status_code}): {response.text}",
                    status_code=response.status_code,
                    body=response.text,
                )

            destination.parent.mkdir(parents=True, exist_ok=True)
            written = 0
            with open(destination, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
        except requests.exceptions.RequestException as e:
            raise RemoteConnectionError(f"Download from {url} interrupted: {e}") from e
        finally:
            response.close()

        logger.info(f"Downloaded {written:,} bytes to {destination}")
        return destination

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """
        Send one authenticated request.

        Raises:
            RemoteConnectionError: On connection errors and timeouts.
        """
        headers = {"Authorization": self._authorization}
        headers.update(kwargs.pop("headers", None) or {})

        start_time = time.time()
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.exceptions.ConnectionError as e:
            raise RemoteConnectionError(f"Failed to connect to {url}: {e}") from e
        except requests.exceptions.Timeout as e:
            raise RemoteConnectionError(f"Request to {url} timed out: {e}") from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"WebDAV call: {method} {url} -> {response.status_code} ({duration_ms:.0f}ms)")
        return response
