"""
Command-line interface for davbackup.

Provides commands to set up the configuration, inspect the directory
selection, and run the push and pull workflows.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, NoReturn

from davbackup import __version__
from davbackup.config.credentials import (
    CREDENTIAL_KEYS,
    MIN_PASSPHRASE_LENGTH,
    PASSWORD_KEY,
    WEBDAV_SERVICE,
    CredentialError,
    CredentialStore,
    load_password,
)
from davbackup.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
    save_config,
)

# Set up logging
logger = logging.getLogger(__name__)

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for davbackup CLI."""
    parser = argparse.ArgumentParser(
        prog="davbackup",
        description="Back up and restore launcher data directories over WebDAV",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"davbackup {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.davbackup/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show configuration and backup selection",
        description="Display settings, data root, selected directories and remote URL.",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Create the configuration and credential store",
        description="Write a default config, normalize the directory selection "
        "and set up encrypted password storage.",
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )
    init_parser.add_argument(
        "--no-credentials",
        action="store_true",
        dest="no_credentials",
        help="Do not create the encrypted credential store",
    )
    init_parser.set_defaults(func=cmd_init)

    # configure command
    configure_parser = subparsers.add_parser(
        "configure",
        help="Change WebDAV and backup settings",
        description="Update settings; the password is prompted for and stored encrypted.",
    )
    configure_parser.add_argument("--server-url", dest="server_url", metavar="URL")
    configure_parser.add_argument("--username", metavar="NAME")
    configure_parser.add_argument(
        "--password",
        action="store_true",
        help="Prompt for the WebDAV password and store it encrypted",
    )
    configure_parser.add_argument(
        "--filename",
        metavar="NAME",
        help="Remote archive file name (default: FlowBackup.zip)",
    )
    configure_parser.add_argument(
        "--directories",
        metavar="NAMES",
        help="Comma separated data directories to back up",
    )
    configure_parser.add_argument("--data-root", dest="data_root", metavar="PATH")
    configure_parser.add_argument("--remote-folder", dest="remote_folder", metavar="NAME")
    configure_parser.set_defaults(func=cmd_configure)

    # directories command
    directories_parser = subparsers.add_parser(
        "directories",
        help="List data directories available for backup",
        description="List the data root subdirectories and mark the selected ones.",
    )
    directories_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    directories_parser.set_defaults(func=cmd_directories)

    # push command
    push_parser = subparsers.add_parser(
        "push",
        help="Upload a backup to the WebDAV server",
        description="Zip the selected data directories and upload the archive.",
    )
    push_parser.set_defaults(func=cmd_push)

    # pull command
    pull_parser = subparsers.add_parser(
        "pull",
        help="Download and restore the backup",
        description="Download the archive, stop the host application, restore "
        "the data directories and restart it.",
    )
    pull_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )
    pull_parser.set_defaults(func=cmd_pull)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _config_path(args: argparse.Namespace) -> Path:
    return Path(args.config) if args.config else get_config_path()


def _load_settings(args: argparse.Namespace) -> Settings:
    return load_config(_config_path(args))


def _credential_store(args: argparse.Namespace) -> CredentialStore:
    """Credential files live next to the config file."""
    return CredentialStore(_config_path(args).parent)


def _read_passphrase(prompt: str = "Credential store passphrase: ") -> str:
    return os.environ.get("DAVBACKUP_PASSPHRASE") or getpass.getpass(prompt)


def _unlock_password(args: argparse.Namespace, settings: Settings) -> None:
    """Load the WebDAV password from the credential store if needed."""
    store = _credential_store(args)
    if settings.password or not store.is_initialized():
        return
    if not load_password(settings, store, _read_passphrase()):
        logger.warning(f"No WebDAV password stored in {store.config_dir}")


def _make_orchestrator(args: argparse.Namespace, settings: Settings) -> Any:
    from davbackup.backup import BackupOrchestrator
    from davbackup.host import LocalHost

    host = LocalHost(settings, config_path=_config_path(args), notify=output)
    return BackupOrchestrator(settings, host)


def _describe(args: argparse.Namespace, settings: Settings) -> dict[str, Any]:
    """Collect settings and selection details for display."""
    from davbackup.backup import resolve_effective_directories
    from davbackup.host import LocalHost
    from davbackup.webdav import build_remote_file_url

    host = LocalHost(settings, config_path=_config_path(args))
    available = host.available_directories()
    store = _credential_store(args)

    if settings.password:
        password_state = "set (environment)"
    elif store.is_initialized():
        password_state = "encrypted store"
    else:
        password_state = "not set"

    remote_url = None
    if settings.server_url.strip():
        remote_url = build_remote_file_url(
            settings.server_url,
            settings.remote_folder,
            settings.effective_backup_filename(),
        )

    return {
        "version": __version__,
        "config_path": str(_config_path(args)),
        "server_url": settings.server_url,
        "username": settings.username,
        "password": password_state,
        "backup_filename": settings.effective_backup_filename(),
        "remote_url": remote_url,
        "data_root": str(host.data_root()),
        "data_root_exists": host.data_root().is_dir(),
        "available_directories": available,
        "selected_directories": list(settings.backup_directories),
        "effective_directories": resolve_effective_directories(
            settings.backup_directories, available
        ),
        "plugin_folder": host.plugin_folder_name(),
    }


def cmd_info(args: argparse.Namespace) -> int:
    """Show configuration and backup selection."""
    settings = _load_settings(args)
    details = _describe(args, settings)

    if args.json:
        output(json.dumps(details, indent=2), force=True)
        return 0

    output("davbackup Information")
    output("=" * 50)
    output()
    output(f"  Version: {details['version']}")
    output(f"  Config file: {details['config_path']}")
    output()
    output("WebDAV:")
    output(f"  Server URL: {details['server_url'] or '(not set)'}")
    output(f"  Username: {details['username'] or '(not set)'}")
    output(f"  Password: {details['password']}")
    output(f"  Remote file: {details['remote_url'] or '(server URL not set)'}")
    output()
    output("Data:")
    exists = "" if details["data_root_exists"] else " (missing)"
    output(f"  Data root: {details['data_root']}{exists}")
    output(f"  Plugin folder: {details['plugin_folder'] or '(not detected)'}")
    output(f"  Backed up: {', '.join(details['effective_directories']) or '(nothing)'}")
    return 0


def cmd_init(args: argparse.Namespace) -> int:
    """Create the configuration file and credential store."""
    config_path = _config_path(args)

    if config_path.exists() and not args.force:
        output(f"Config file already exists: {config_path}")
        settings = load_config(config_path)
    else:
        settings = Settings()
        save_config(settings, config_path)
        output(f"Created config file: {config_path}")

    orchestrator = _make_orchestrator(args, settings)
    if orchestrator.normalize_settings():
        output(f"Backup selection: {', '.join(settings.backup_directories)}")

    if args.no_credentials:
        return 0

    store = _credential_store(args)
    if store.is_initialized():
        output("Credential store already initialized.")
        return 0

    output()
    output("The WebDAV password is stored encrypted with a passphrase.")
    output(f"Choose a passphrase of at least {MIN_PASSPHRASE_LENGTH} characters.")
    passphrase = getpass.getpass("New passphrase: ")
    if passphrase != getpass.getpass("Repeat passphrase: "):
        output_error("Passphrases do not match.")
        return 1

    try:
        store.initialize(passphrase)
    except ValueError as e:
        output_error(str(e))
        return 1

    output("Credential store initialized.")
    output("Next: davbackup configure --server-url URL --username NAME --password")
    return 0


def cmd_configure(args: argparse.Namespace) -> int:
    """Change WebDAV and backup settings."""
    config_path = _config_path(args)
    settings = load_config(config_path)
    changed: list[str] = []

    if args.server_url is not None:
        settings.server_url = args.server_url.strip()
        changed.append("server URL")
    if args.username is not None:
        settings.username = args.username
        changed.append("username")
    if args.filename is not None:
        settings.backup_filename = args.filename.strip()
        changed.append("backup filename")
    if args.directories is not None:
        settings.backup_directories = [
            name.strip() for name in args.directories.split(",") if name.strip()
        ]
        changed.append("backup directories")
    if args.data_root is not None:
        settings.host.data_root = args.data_root
        changed.append("data root")
    if args.remote_folder is not None:
        settings.remote_folder = args.remote_folder.strip("/ ")
        changed.append("remote folder")

    if args.password:
        store = _credential_store(args)
        if not store.is_initialized():
            output_error("Credential store not initialized. Run 'davbackup init' first.")
            return 1
        store.unlock(_read_passphrase())
        password = getpass.getpass(f"{CREDENTIAL_KEYS[WEBDAV_SERVICE][PASSWORD_KEY]}: ")
        if not password:
            output_error("Password cannot be empty.")
            return 1
        store.set_credential(WEBDAV_SERVICE, PASSWORD_KEY, password)
        store.lock()
        output("Password stored.")

    if not changed:
        if not args.password:
            output("Nothing to change. See 'davbackup configure --help'.")
        return 0

    if not settings.backup_filename:
        settings.backup_filename = settings.effective_backup_filename()

    save_config(settings, config_path)
    output(f"Updated {', '.join(changed)}.")
    return 0


def cmd_directories(args: argparse.Namespace) -> int:
    """List data directories and mark the selected ones."""
    settings = _load_settings(args)
    details = _describe(args, settings)

    available = details["available_directories"]
    selected = {name.casefold() for name in details["selected_directories"]}
    effective = {name.casefold() for name in details["effective_directories"]}

    if args.json:
        rows = [
            {
                "name": name,
                "selected": name.casefold() in selected,
                "backed_up": name.casefold() in effective,
            }
            for name in available
        ]
        output(json.dumps(rows, indent=2), force=True)
        return 0

    if not available:
        output(f"No subfolders found in {details['data_root']}.")
        return 0

    output(f"Subfolders of {details['data_root']}:")
    for name in available:
        mark = "x" if name.casefold() in selected else " "
        note = "  (backed up)" if name.casefold() in effective else ""
        output(f"  [{mark}] {name}{note}")

    if not selected & effective:
        output()
        output("Nothing selected; the default selection is used.")
    return 0


def cmd_push(args: argparse.Namespace) -> int:
    """Upload a backup to the WebDAV server."""
    settings = _load_settings(args)
    _unlock_password(args, settings)

    result = _make_orchestrator(args, settings).execute("push")
    return 0 if result.success else 1


def cmd_pull(args: argparse.Namespace) -> int:
    """Download the backup and restore it."""
    settings = _load_settings(args)

    if not args.force:
        output("WARNING: The selected data folders will be replaced by the backup.")
        output("The host application will be closed and restarted.")
        output()
        response = input("Proceed with restore? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Restore cancelled.")
            return 0

    _unlock_password(args, settings)

    result = _make_orchestrator(args, settings).execute("pull")
    return 0 if result.success else 1


def main() -> NoReturn:
    """Main entry point for davbackup CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except CredentialError as e:
        output_error(f"Credential error: {e}")
        sys.exit(2)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
