"""
Restore script generation.

A restore cannot run inside the host process: the host keeps its own data
files open, and the restoring plugin lives inside the very directory tree
being replaced. Instead a self-contained script is written next to the
downloaded archive and started as a detached process. The script waits for
the host to exit, swaps the directories, relaunches the host and deletes
itself.

Two dialects are provided:
    - PowerShell, the default on Windows
    - Python (run in isolated mode), the default everywhere else

Both follow the same steps and the same merge rule for the plugins
directory, where the folder of the running plugin is never touched.
"""

from __future__ import annotations

import os
import sys
from abc import ABC, abstractmethod
from pathlib import Path

from davbackup.errors import ScriptGenerationError

DEFAULT_PROCESS_NAME = "Flow.Launcher"
DEFAULT_PLUGINS_DIRECTORY = "Plugins"

# Delays in seconds
STARTUP_DELAY = 1.0
SETTLE_DELAY = 2.0
RELAUNCH_DELAY = 0.7

EXTRACT_DIRECTORY = "extract"


def powershell_literal(value: str) -> str:
    """Quote a value as a single-quoted PowerShell string literal."""
    return "'" + value.replace("'", "''") + "'"


def python_literal(value: str) -> str:
    """Quote a value as a Python string literal."""
    return repr(value)


class RestoreScriptGenerator(ABC):
    """
    Base class for restore script dialects.

    Attributes:
        process_name: Host process name to terminate before restoring.
        plugins_directory: Top-level directory merged per child folder.
        startup_delay: Seconds to wait before touching the host.
        settle_delay: Seconds to wait after terminating the host.
        relaunch_delay: Seconds to wait before relaunching the host.
    """

    script_name: str = "restore-data"

    def __init__(
        self,
        process_name: str = DEFAULT_PROCESS_NAME,
        plugins_directory: str = DEFAULT_PLUGINS_DIRECTORY,
        startup_delay: float = STARTUP_DELAY,
        settle_delay: float = SETTLE_DELAY,
        relaunch_delay: float = RELAUNCH_DELAY,
    ) -> None:
        self.process_name = process_name
        self.plugins_directory = plugins_directory or DEFAULT_PLUGINS_DIRECTORY
        self.startup_delay = startup_delay
        self.settle_delay = settle_delay
        self.relaunch_delay = relaunch_delay

    def generate(
        self,
        archive_path: str | Path,
        target_root: str | Path,
        host_executable: str | Path,
        exclude_folder_name: str = "",
    ) -> str:
        """
        Render the restore script.

        Args:
            archive_path: Downloaded backup archive.
            target_root: Host data root to restore into.
            host_executable: Executable to relaunch once the restore is done.
            exclude_folder_name: Plugin folder to leave untouched, usually
                the folder this package is installed in. Empty excludes
                nothing.

        Returns:
            Script source text.

        Raises:
            ScriptGenerationError: If a required path is empty.
        """
        values = {
            "archive path": str(archive_path or "").strip(),
            "target root": str(target_root or "").strip(),
            "host executable": str(host_executable or "").strip(),
        }
        for label, value in values.items():
            if not value:
                raise ScriptGenerationError(f"Restore script needs a {label}.")

        return self._render(
            values["archive path"],
            values["target root"],
            values["host executable"],
            (exclude_folder_name or "").strip(),
        )

    @abstractmethod
    def _render(
        self,
        archive_path: str,
        target_root: str,
        host_executable: str,
        exclude_folder_name: str,
    ) -> str:
        """Produce the script text for already validated inputs."""
        pass

    @abstractmethod
    def command(self, script_path: Path) -> list[str]:
        """
        Build the command line that runs the script.

        Args:
            script_path: Location the script was written to.

        Returns:
            Argument list suitable for subprocess.
        """
        pass


class PowerShellRestoreScriptGenerator(RestoreScriptGenerator):
    """Restore script for Windows PowerShell."""

    script_name = "restore-data.ps1"

    def command(self, script_path: Path) -> list[str]:
        return [
            "powershell.exe",
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-WindowStyle",
            "Hidden",
            "-File",
            str(script_path),
        ]

    def _render(
        self,
        archive_path: str,
        target_root: str,
        host_executable: str,
        exclude_folder_name: str,
    ) -> str:
        archive = powershell_literal(archive_path)
        root = powershell_literal(target_root)
        executable = powershell_literal(host_executable)

        lines = [
            "$ErrorActionPreference = 'Stop'",
            f"Start-Sleep -Milliseconds {int(self.startup_delay * 1000)}",
            "",
        ]

        if self.process_name:
            lines += [
                "$hostProcess = Get-Process -Name "
                f"{powershell_literal(self.process_name)} -ErrorAction SilentlyContinue",
                "if ($hostProcess) {",
                "    $hostProcess | Stop-Process -Force",
                "}",
                "",
            ]

        lines += [
            f"Start-Sleep -Milliseconds {int(self.settle_delay * 1000)}",
            "",
            f"if (-not (Test-Path -LiteralPath {root})) {{",
            f"    New-Item -ItemType Directory -Path {root} -Force | Out-Null",
            "}",
            "",
            f"$extractRoot = Join-Path (Split-Path -LiteralPath {archive} -Parent) "
            f"'{EXTRACT_DIRECTORY}'",
            "if (Test-Path -LiteralPath $extractRoot) {",
            "    Remove-Item -LiteralPath $extractRoot -Recurse -Force",
            "}",
            "New-Item -ItemType Directory -Path $extractRoot -Force | Out-Null",
            f"Expand-Archive -LiteralPath {archive} -DestinationPath $extractRoot -Force",
            "",
            f"$excludedPlugin = {powershell_literal(exclude_folder_name)}",
            "Get-ChildItem -LiteralPath $extractRoot -Directory | ForEach-Object {",
            "    $folderName = $_.Name",
            "    $source = $_.FullName",
            f"    $target = Join-Path {root} $folderName",
            "",
            f"    if ($folderName -ieq {powershell_literal(self.plugins_directory)}) {{",
            "        if (-not (Test-Path -LiteralPath $target)) {",
            "            New-Item -ItemType Directory -Path $target -Force | Out-Null",
            "        }",
            "        Get-ChildItem -LiteralPath $source -Directory | ForEach-Object {",
            "            if (-not [string]::IsNullOrWhiteSpace($excludedPlugin) "
            "-and $_.Name -ieq $excludedPlugin) {",
            "                return",
            "            }",
            "            $pluginTarget = Join-Path $target $_.Name",
            "            if (Test-Path -LiteralPath $pluginTarget) {",
            "                Remove-Item -LiteralPath $pluginTarget -Recurse -Force",
            "            }",
            "            Copy-Item -LiteralPath $_.FullName -Destination $pluginTarget "
            "-Recurse -Force",
            "        }",
            "        Get-ChildItem -LiteralPath $source -File | ForEach-Object {",
            "            Copy-Item -LiteralPath $_.FullName "
            "-Destination (Join-Path $target $_.Name) -Force",
            "        }",
            "        return",
            "    }",
            "",
            "    if (Test-Path -LiteralPath $target) {",
            "        Remove-Item -LiteralPath $target -Recurse -Force",
            "    }",
            "    Copy-Item -LiteralPath $source -Destination $target -Recurse -Force",
            "}",
            "",
            f"Start-Sleep -Milliseconds {int(self.relaunch_delay * 1000)}",
            f"Start-Process -FilePath {executable}",
            "",
            "if (Test-Path -LiteralPath $extractRoot) {",
            "    Remove-Item -LiteralPath $extractRoot -Recurse -Force "
            "-ErrorAction SilentlyContinue",
            "}",
            f"Remove-Item -LiteralPath {archive} -Force -ErrorAction SilentlyContinue",
            "Remove-Item -LiteralPath $PSCommandPath -Force -ErrorAction SilentlyContinue",
        ]

        return "\r\n".join(lines) + "\r\n"


_PYTHON_BODY = '''
def process_pattern(name):
    # pkill matches an extended regex; bracket regex metacharacters
    return "".join(
        "[" + char + "]" if char in ".^$*+?()[{|" else char for char in name
    )


def stop_host():
    if not HOST_PROCESS_NAME:
        return
    if os.name == "nt":
        image = HOST_PROCESS_NAME
        if not image.lower().endswith(".exe"):
            image += ".exe"
        command = ["taskkill", "/F", "/IM", image]
    else:
        command = ["pkill", "-x", process_pattern(HOST_PROCESS_NAME)]
    try:
        subprocess.run(
            command,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError:
        pass


def remove_path(path):
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def replace_tree(source, target):
    remove_path(target)
    shutil.copytree(source, target)


def merge_plugins(source, target):
    target.mkdir(parents=True, exist_ok=True)
    excluded = EXCLUDED_PLUGIN.strip().casefold()
    for child in sorted(source.iterdir()):
        if child.is_dir():
            if excluded and child.name.casefold() == excluded:
                continue
            replace_tree(child, target / child.name)
        elif child.is_file():
            shutil.copy2(child, target / child.name)


def relaunch_host():
    options = {}
    if os.name == "nt":
        options["creationflags"] = (
            subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        )
    else:
        options["start_new_session"] = True
    subprocess.Popen(
        [HOST_EXECUTABLE],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        **options,
    )


def cleanup(extract_root):
    shutil.rmtree(extract_root, ignore_errors=True)
    for path in (ARCHIVE, Path(__file__)):
        try:
            path.unlink()
        except OSError:
            pass


def main():
    time.sleep(STARTUP_DELAY)
    stop_host()
    time.sleep(SETTLE_DELAY)

    TARGET_ROOT.mkdir(parents=True, exist_ok=True)

    extract_root = ARCHIVE.parent / EXTRACT_DIRECTORY
    if extract_root.exists():
        shutil.rmtree(extract_root)
    extract_root.mkdir(parents=True)
    with zipfile.ZipFile(ARCHIVE) as archive:
        archive.extractall(extract_root)

    for source in sorted(extract_root.iterdir()):
        if not source.is_dir():
            continue
        target = TARGET_ROOT / source.name
        if source.name.casefold() == PLUGINS_DIRECTORY.casefold():
            merge_plugins(source, target)
        else:
            replace_tree(source, target)

    time.sleep(RELAUNCH_DELAY)
    try:
        relaunch_host()
    finally:
        cleanup(extract_root)


if __name__ == "__main__":
    main()
'''


class PythonRestoreScriptGenerator(RestoreScriptGenerator):
    """
    Restore script for a Python interpreter.

    The script only uses the standard library and is started with ``-I`` so
    user site-packages and PYTHON* environment variables cannot interfere.
    """

    script_name = "restore-data.py"

    def __init__(
        self,
        process_name: str = DEFAULT_PROCESS_NAME,
        plugins_directory: str = DEFAULT_PLUGINS_DIRECTORY,
        startup_delay: float = STARTUP_DELAY,
        settle_delay: float = SETTLE_DELAY,
        relaunch_delay: float = RELAUNCH_DELAY,
        interpreter: str | None = None,
    ) -> None:
        super().__init__(
            process_name, plugins_directory, startup_delay, settle_delay, relaunch_delay
        )
        self.interpreter = interpreter or sys.executable or "python3"

    def command(self, script_path: Path) -> list[str]:
        return [self.interpreter, "-I", str(script_path)]

    def _render(
        self,
        archive_path: str,
        target_root: str,
        host_executable: str,
        exclude_folder_name: str,
    ) -> str:
        header = [
            "# Restores backed up data directories, relaunches the host",
            "# and deletes itself.",
            "import os",
            "import shutil",
            "import subprocess",
            "import time",
            "import zipfile",
            "from pathlib import Path",
            "",
            f"ARCHIVE = Path({python_literal(archive_path)})",
            f"TARGET_ROOT = Path({python_literal(target_root)})",
            f"HOST_EXECUTABLE = {python_literal(host_executable)}",
            f"HOST_PROCESS_NAME = {python_literal(self.process_name or '')}",
            f"PLUGINS_DIRECTORY = {python_literal(self.plugins_directory)}",
            f"EXCLUDED_PLUGIN = {python_literal(exclude_folder_name)}",
            f"EXTRACT_DIRECTORY = {python_literal(EXTRACT_DIRECTORY)}",
            f"STARTUP_DELAY = {float(self.startup_delay)!r}",
            f"SETTLE_DELAY = {float(self.settle_delay)!r}",
            f"RELAUNCH_DELAY = {float(self.relaunch_delay)!r}",
            "",
        ]
        return "\n".join(header) + _PYTHON_BODY


def default_generator(
    process_name: str = DEFAULT_PROCESS_NAME,
    plugins_directory: str = DEFAULT_PLUGINS_DIRECTORY,
) -> RestoreScriptGenerator:
    """Pick the restore script dialect for the running operating system."""
    if os.name == "nt":
        return PowerShellRestoreScriptGenerator(process_name, plugins_directory)
    return PythonRestoreScriptGenerator(process_name, plugins_directory)
