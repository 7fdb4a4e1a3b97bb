"""
Backup directory selection.

Reconciles the directory names stored in settings with the subdirectories
that actually exist under the host data root. Everything here is pure so
it can be reused by the orchestrator, the CLI and settings normalization.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

# Used when nothing usable is selected
PREFERRED_DEFAULT_DIRECTORIES: tuple[str, ...] = ("Settings", "Plugins", "Themes")

_SEPARATORS = re.compile(r"[\\/]+")


def normalize_directory_name(name: str | None) -> str:
    """
    Reduce a configured directory name to a single safe path segment.

    Separators of either style are collapsed and only the last segment is
    kept, so values like ``"../Settings"`` or ``"C:\\x\\Themes\\"`` cannot
    point outside the data root.

    Args:
        name: Raw directory name from settings.

    Returns:
        The final path segment, or an empty string when nothing usable
        remains (blank input, ``.`` or ``..``).
    """
    if name is None:
        return ""

    normalized = _SEPARATORS.sub("/", name.strip()).strip("/")
    if not normalized:
        return ""

    segment = normalized.rsplit("/", 1)[-1].strip()
    if segment in ("", ".", ".."):
        return ""
    return segment


def _index_available(available: Iterable[str]) -> dict[str, str]:
    """Map casefolded names to the first available spelling."""
    index: dict[str, str] = {}
    for name in available:
        if name and name.casefold() not in index:
            index[name.casefold()] = name
    return index


def normalize_backup_directories(
    configured: Iterable[str | None] | None,
    available: Sequence[str],
) -> list[str]:
    """
    Keep configured names that exist, deduplicated case-insensitively.

    Args:
        configured: Directory names from settings, in user order.
        available: Directory names currently present under the data root.

    Returns:
        Names in the spelling of ``available``, first occurrence wins.
    """
    if configured is None:
        return []

    index = _index_available(available)
    seen: set[str] = set()
    result: list[str] = []

    for raw_name in configured:
        name = normalize_directory_name(raw_name)
        if not name:
            continue

        key = name.casefold()
        if key not in index or key in seen:
            continue

        seen.add(key)
        result.append(index[key])

    return result


def default_backup_directories(available: Sequence[str]) -> list[str]:
    """
    Pick the fallback selection.

    Returns the preferred defaults that exist, or every available directory
    when none of them do.
    """
    index = _index_available(available)
    result = [
        index[name.casefold()]
        for name in PREFERRED_DEFAULT_DIRECTORIES
        if name.casefold() in index
    ]
    if result:
        return result
    return list(index.values())


def resolve_effective_directories(
    configured: Iterable[str | None] | None,
    available: Sequence[str],
) -> list[str]:
    """
    Resolve the directories a backup will actually include.

    Args:
        configured: Directory names from settings.
        available: Directory names currently present under the data root.

    Returns:
        A subset of ``available``. Empty only when ``available`` is empty.
    """
    selected = normalize_backup_directories(configured, available)
    if not selected and available:
        return default_backup_directories(available)
    return selected
