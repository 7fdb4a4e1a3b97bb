"""
Backup and restore functionality for davbackup.

Usage:
    from davbackup.backup import BackupOrchestrator

    orchestrator = BackupOrchestrator(settings, host)

    # Upload the selected directories
    result = orchestrator.execute("push")

    # Download and restore; the host exits when the restore starts
    result = orchestrator.execute("pull")
"""

from davbackup.backup.manager import (
    BackupOrchestrator,
    OperationResult,
    OperationState,
    launch_detached,
)
from davbackup.backup.packager import (
    PackResult,
    create_backup_archive,
    is_backup_archive,
    read_archive_directories,
)
from davbackup.backup.restore_script import (
    PowerShellRestoreScriptGenerator,
    PythonRestoreScriptGenerator,
    RestoreScriptGenerator,
    default_generator,
)
from davbackup.backup.selection import (
    PREFERRED_DEFAULT_DIRECTORIES,
    default_backup_directories,
    normalize_backup_directories,
    normalize_directory_name,
    resolve_effective_directories,
)

__all__ = [
    "BackupOrchestrator",
    "OperationResult",
    "OperationState",
    "launch_detached",
    "PackResult",
    "create_backup_archive",
    "is_backup_archive",
    "read_archive_directories",
    "RestoreScriptGenerator",
    "PowerShellRestoreScriptGenerator",
    "PythonRestoreScriptGenerator",
    "default_generator",
    "PREFERRED_DEFAULT_DIRECTORIES",
    "default_backup_directories",
    "normalize_backup_directories",
    "normalize_directory_name",
    "resolve_effective_directories",
]
