"""
Error classes for backup and restore operations.

Every failure that is reported to the user is raised as a BackupError
subclass. The operation boundary in BackupOrchestrator turns these into
status messages; anything else is treated as an unhandled exception.
"""

from __future__ import annotations


class BackupError(Exception):
    """Base exception for backup and restore errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(BackupError):
    """
    Raised when settings are missing or invalid.

    Reported before any I/O takes place.
    """

    pass


class NotFoundError(BackupError):
    """
    Raised when the data root, the selected directories, or the backup
    contents cannot be found.
    """

    pass


class RemoteProtocolError(BackupError):
    """
    Raised when the WebDAV server answers with a non-success status.

    Attributes:
        status_code: HTTP status code returned by the server.
        body: Response body text, reported verbatim.
    """

    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RemoteConnectionError(BackupError):
    """
    Raised when the WebDAV server cannot be reached.

    This includes DNS failures, refused connections and timeouts.
    """

    pass


class ProcessLaunchError(BackupError):
    """Raised when the restore script could not be started."""

    pass


class ScriptGenerationError(BackupError, ValueError):
    """Raised when a restore script is requested with malformed inputs."""

    pass
