"""
Backup and restore orchestration for davbackup.

Sequences directory selection, packaging, WebDAV transfers and restore
script generation into the two user-facing workflows:

    - push: zip the selected data directories and upload them
    - pull: download the archive, hand the restore to a detached script
      and shut the host down so its files can be replaced

Each workflow runs once, without retries, and always removes its temporary
directory (for pull, the restore script removes it after a successful
launch).
"""

from __future__ import annotations

import copy
import logging
import os
import shutil
import subprocess
import tempfile
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from davbackup.backup.packager import (
    create_backup_archive,
    is_backup_archive,
    read_archive_directories,
)
from davbackup.backup.restore_script import RestoreScriptGenerator, default_generator
from davbackup.backup.selection import (
    default_backup_directories,
    normalize_backup_directories,
    resolve_effective_directories,
)
from davbackup.config.settings import DEFAULT_BACKUP_FILENAME, Settings
from davbackup.errors import (
    BackupError,
    NotFoundError,
    ProcessLaunchError,
    RemoteProtocolError,
    ValidationError,
)
from davbackup.host.context import HostContext
from davbackup.webdav.client import (
    WebDAVClient,
    append_trailing_slash,
    build_remote_file_url,
)

logger = logging.getLogger(__name__)

MESSAGE_TITLE = "WebDAV Backup"
HOST_DISPLAY_NAME = "Flow Launcher"
TEMP_ROOT_NAME = "davbackup"
EXIT_DELAY = 0.8

# One backup operation at a time per process
_OPERATION_LOCK = threading.Lock()


class OperationState(Enum):
    """Terminal states of a push or pull."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class OperationResult:
    """
    Outcome of a push or pull.

    Attributes:
        operation: "push" or "pull".
        state: Terminal state.
        message: Status message shown to the user.
        remote_url: Archive URL, when known.
        directories: Directories packed (push) or found in the archive (pull).
        status_code: HTTP status of a failed WebDAV call.
        host_exit_requested: True once a pull has handed over to the restore
            script and asked the host to exit.
    """

    operation: str
    state: OperationState
    message: str
    remote_url: str | None = None
    directories: list[str] = field(default_factory=list)
    status_code: int | None = None
    host_exit_requested: bool = False

    @property
    def success(self) -> bool:
        """True if the operation succeeded."""
        return self.state is OperationState.SUCCEEDED


def create_temp_directory() -> Path:
    """Create a uniquely named working directory for one operation."""
    path = Path(tempfile.gettempdir()) / TEMP_ROOT_NAME / uuid.uuid4().hex
    path.mkdir(parents=True)
    return path


def safe_delete_directory(path: Path | None) -> None:
    """Remove a directory tree, ignoring failures."""
    if path is not None:
        shutil.rmtree(path, ignore_errors=True)


def safe_delete_file(path: Path | None) -> None:
    """Remove a file, ignoring failures."""
    if path is None:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.debug(f"Could not delete {path}: {e}")


def launch_detached(command: list[str], cwd: Path) -> subprocess.Popen:
    """
    Start a process that outlives the current one, without a window.

    Args:
        command: Program and arguments.
        cwd: Working directory for the new process.

    Returns:
        The started process.

    Raises:
        OSError: If the process cannot be created.
    """
    options: dict[str, Any] = {}
    if os.name == "nt":
        options["creationflags"] = (
            subprocess.CREATE_NO_WINDOW | subprocess.CREATE_NEW_PROCESS_GROUP
        )
    else:
        options["start_new_session"] = True

    return subprocess.Popen(
        command,
        cwd=str(cwd),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        **options,
    )


def _default_client(settings: Settings) -> WebDAVClient:
    return WebDAVClient(
        settings.server_url,
        settings.username,
        settings.password,
        timeout=settings.timeout,
    )


class BackupOrchestrator:
    """
    Runs push and pull against the configured WebDAV server.

    Example:
        orchestrator = BackupOrchestrator(settings, LocalHost(settings))
        result = orchestrator.execute("push")
        if not result.success:
            print(result.message)

    Attributes:
        settings: Live settings; each operation works on a snapshot.
        host: Host application services.
        exit_delay: Seconds between "restore started" and host shutdown.
    """

    def __init__(
        self,
        settings: Settings,
        host: HostContext,
        client_factory: Callable[[Settings], WebDAVClient] = _default_client,
        generator: RestoreScriptGenerator | None = None,
        launcher: Callable[[list[str], Path], subprocess.Popen | None] = launch_detached,
        exit_delay: float = EXIT_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.host = host
        self.client_factory = client_factory
        self.generator = generator
        self.launcher = launcher
        self.exit_delay = exit_delay
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def execute(self, operation: str) -> OperationResult:
        """
        Run one operation at the operation boundary.

        Unexpected exceptions are logged through the host and reported as a
        generic failure instead of propagating.

        Args:
            operation: "push" or "pull".

        Returns:
            OperationResult of the operation.

        Raises:
            ValueError: If the operation name is unknown.
        """
        workflows = {"push": self.push, "pull": self.pull}
        if operation not in workflows:
            raise ValueError(f"Unknown operation: {operation}")

        if not _OPERATION_LOCK.acquire(blocking=False):
            return self._fail(
                operation, BackupError("Another backup operation is already running.")
            )

        try:
            return workflows[operation]()
        except Exception as e:
            self.host.log_exception("Unhandled backup operation exception.", e)
            return self._report(
                OperationResult(
                    operation=operation,
                    state=OperationState.FAILED,
                    message=f"Operation failed: {e}",
                )
            )
        finally:
            _OPERATION_LOCK.release()

    def run_in_background(self, operation: str) -> threading.Thread:
        """
        Run an operation on a worker thread.

        Returns:
            The started thread.
        """
        thread = threading.Thread(
            target=self.execute,
            args=(operation,),
            name=f"davbackup-{operation}",
        )
        thread.start()
        return thread

    # -------------------------------------------------------------------------
    # Workflows
    # -------------------------------------------------------------------------

    def push(self) -> OperationResult:
        """
        Zip the selected directories and upload the archive.

        Returns:
            OperationResult; failures are reported, not raised.
        """
        settings = self._snapshot()
        temp_dir: Path | None = None

        try:
            self.validate_settings(settings)

            data_root = self.host.data_root()
            if not data_root.is_dir():
                raise NotFoundError(f"Data folder not found: {data_root}")

            directories = self.effective_directories(settings)
            if not directories:
                raise NotFoundError("No backup subfolder selected in settings.")

            filename = settings.effective_backup_filename()
            temp_dir = create_temp_directory()
            archive_path = temp_dir / settings.remote_folder / filename

            packed = create_backup_archive(data_root, archive_path, directories)
            if packed.directory_count == 0:
                raise NotFoundError(f"Selected subfolders were not found under {data_root}.")

            client = self.client_factory(settings)
            client.ensure_remote_folder(settings.remote_folder)
            remote_url = client.upload(settings.remote_folder, filename, archive_path)

            return self._report(
                OperationResult(
                    operation="push",
                    state=OperationState.SUCCEEDED,
                    message=f"Backup uploaded successfully to {remote_url}.",
                    remote_url=remote_url,
                    directories=packed.directories,
                )
            )

        except BackupError as e:
            return self._fail("push", e)

        finally:
            safe_delete_directory(temp_dir)

    def pull(self) -> OperationResult:
        """
        Download the archive and hand the restore over to a detached script.

        On success the host is shut down through HostContext.shutdown()
        after a short delay. This is the normal end of a pull, not an error.

        Returns:
            OperationResult; with a real host the process exits before the
            caller sees it.

        Raises:
            Exception: Unexpected errors while preparing or launching the
                script, after the script and temp directory are removed.
        """
        settings = self._snapshot()
        temp_dir: Path | None = None
        script_path: Path | None = None

        try:
            self.validate_settings(settings)

            filename = settings.effective_backup_filename()
            temp_dir = create_temp_directory()
            archive_path = temp_dir / settings.remote_folder / filename

            client = self.client_factory(settings)
            client.download(settings.remote_folder, filename, archive_path)
            directories = self._verify_archive(archive_path)

            generator = self.generator or default_generator(
                self.host.process_name(), settings.host.plugins_directory_name
            )
            script_path = temp_dir / generator.script_name
            script = generator.generate(
                archive_path,
                self.host.data_root(),
                self.host.executable_path(),
                self.host.plugin_folder_name(),
            )
            with open(script_path, "w", encoding="utf-8", newline="") as f:
                f.write(script)

            self._launch(generator.command(script_path), temp_dir)

        except BackupError as e:
            safe_delete_directory(temp_dir)
            return self._fail("pull", e)

        except Exception:
            safe_delete_file(script_path)
            safe_delete_directory(temp_dir)
            raise

        result = self._report(
            OperationResult(
                operation="pull",
                state=OperationState.SUCCEEDED,
                message=f"Restore started. {HOST_DISPLAY_NAME} will close and restart.",
                remote_url=build_remote_file_url(
                    settings.server_url, settings.remote_folder, filename
                ),
                directories=directories,
                host_exit_requested=True,
            )
        )

        self._sleep(self.exit_delay)
        self.host.shutdown()
        return result

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def validate_settings(self, settings: Settings | None = None) -> None:
        """
        Check that the WebDAV connection settings are usable.

        Raises:
            ValidationError: With a message naming the first problem.
        """
        settings = settings or self.settings

        if not settings.server_url.strip():
            raise ValidationError("Server URL is required.")
        if not settings.username.strip():
            raise ValidationError("Username is required.")
        if not settings.password.strip():
            raise ValidationError("Password is required.")

        parsed = urlparse(append_trailing_slash(settings.server_url))
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Server URL is not valid.")

    def effective_directories(self, settings: Settings | None = None) -> list[str]:
        """Resolve the directories a backup would include right now."""
        settings = settings or self.settings
        return resolve_effective_directories(
            settings.backup_directories, self.host.available_directories()
        )

    def normalize_settings(self) -> bool:
        """
        Normalize stored settings and save them through the host if changed.

        A blank archive name gets the default, and the directory selection
        is reduced to existing directories (or the default selection). The
        selection is left alone while the data root has no subdirectories.

        Returns:
            True if settings were changed and saved.
        """
        changed = False

        if not self.settings.backup_filename.strip():
            self.settings.backup_filename = DEFAULT_BACKUP_FILENAME
            changed = True

        available = self.host.available_directories()
        if available:
            normalized = normalize_backup_directories(
                self.settings.backup_directories, available
            )
            if not normalized:
                normalized = default_backup_directories(available)

            current = [name.casefold() for name in self.settings.backup_directories]
            if [name.casefold() for name in normalized] != current:
                self.settings.backup_directories = normalized
                changed = True

        if changed:
            self.host.save_settings(self.settings)
            logger.info("Settings normalized and saved")

        return changed

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _snapshot(self) -> Settings:
        return copy.deepcopy(self.settings)

    def _verify_archive(self, archive_path: Path) -> list[str]:
        """Make sure a downloaded file is a backup archive before restoring."""
        if not is_backup_archive(archive_path):
            raise NotFoundError("Downloaded file is not a valid backup archive.")

        directories = read_archive_directories(archive_path)
        if not directories:
            raise NotFoundError("Downloaded backup archive contains no folders.")

        logger.info(f"Downloaded backup contains: {', '.join(directories)}")
        return directories

    def _launch(self, command: list[str], cwd: Path) -> None:
        """Start the restore script, raising ProcessLaunchError on failure."""
        try:
            process = self.launcher(command, cwd)
        except OSError as e:
            raise ProcessLaunchError(f"Restore script failed to start: {e}") from e

        if process is None or not process.pid:
            raise ProcessLaunchError("Restore script failed to start.")

        logger.info(f"Restore script started with PID {process.pid}")

    def _fail(self, operation: str, error: BackupError) -> OperationResult:
        logger.warning(f"{operation} failed: {error.message}")
        return self._report(
            OperationResult(
                operation=operation,
                state=OperationState.FAILED,
                message=error.message,
                status_code=(
                    error.status_code if isinstance(error, RemoteProtocolError) else None
                ),
            )
        )

    def _report(self, result: OperationResult) -> OperationResult:
        self.host.show_message(MESSAGE_TITLE, result.message)
        return result
