"""
Zip packaging of the selected data directories.

Each selected directory becomes a top-level folder inside the archive.
Entry paths always use forward slashes. Extraction is intentionally absent
from this module: restores run out-of-process through the generated
restore script.
"""

from __future__ import annotations

import logging
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from davbackup.backup.selection import normalize_directory_name

logger = logging.getLogger(__name__)

COMPRESSION = zipfile.ZIP_DEFLATED
COMPRESS_LEVEL = 9


@dataclass
class PackResult:
    """Result of packing directories into an archive."""

    path: Path
    directories: list[str] = field(default_factory=list)
    file_count: int = 0
    size_bytes: int = 0

    @property
    def directory_count(self) -> int:
        """Number of directories actually written to the archive."""
        return len(self.directories)


def create_backup_archive(
    root_path: Path,
    archive_path: Path,
    directories: Iterable[str],
) -> PackResult:
    """
    Create a zip archive of the given directories under ``root_path``.

    Directories that do not exist are skipped. An existing file at
    ``archive_path`` is replaced.

    Args:
        root_path: Host data root.
        archive_path: Destination zip file.
        directories: Effective directory names.

    Returns:
        PackResult describing what was written. A directory_count of zero
        means none of the requested directories were found.
    """
    root_path = Path(root_path)
    archive_path = Path(archive_path)

    archive_path.parent.mkdir(parents=True, exist_ok=True)
    if archive_path.exists():
        archive_path.unlink()

    result = PackResult(path=archive_path)

    with zipfile.ZipFile(
        archive_path, "w", compression=COMPRESSION, compresslevel=COMPRESS_LEVEL
    ) as archive:
        for raw_name in directories:
            name = normalize_directory_name(raw_name)
            if not name:
                continue

            source_dir = root_path / name
            if not source_dir.is_dir():
                logger.debug(f"Skipping missing directory: {source_dir}")
                continue

            result.file_count += _add_directory(archive, source_dir, name)
            result.directories.append(name)

    result.size_bytes = archive_path.stat().st_size
    logger.info(
        f"Archive created: {archive_path} ({result.directory_count} directories, "
        f"{result.file_count} files, {result.size_bytes:,} bytes)"
    )
    return result


def _add_directory(archive: zipfile.ZipFile, source_dir: Path, root_name: str) -> int:
    """Add every file below ``source_dir`` under ``root_name/``."""
    count = 0
    for file_path in sorted(source_dir.rglob("*")):
        if not file_path.is_file():
            continue
        relative = file_path.relative_to(source_dir).as_posix()
        archive.write(file_path, arcname=f"{root_name}/{relative}")
        count += 1
    return count


def is_backup_archive(path: Path) -> bool:
    """Check whether ``path`` is a readable zip archive."""
    path = Path(path)
    return path.is_file() and zipfile.is_zipfile(path)


def read_archive_directories(archive_path: Path) -> list[str]:
    """
    List the top-level directory names contained in an archive.

    Entries written by other tools may use backslashes, so both separators
    are accepted.

    Args:
        archive_path: Path to a zip archive.

    Returns:
        Top-level directory names in first-seen order.
    """
    names: list[str] = []
    seen: set[str] = set()

    with zipfile.ZipFile(archive_path) as archive:
        for entry in archive.namelist():
            parts = entry.replace("\\", "/").split("/", 1)
            if len(parts) < 2 or not parts[0]:
                continue
            if parts[0] not in seen:
                seen.add(parts[0])
                names.append(parts[0])

    return names
