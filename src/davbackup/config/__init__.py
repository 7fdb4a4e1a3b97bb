"""
Configuration management for davbackup.

This module handles loading, validating, and saving configuration settings,
as well as encrypted storage of the WebDAV password.
"""

from davbackup.config.credentials import (
    CREDENTIAL_KEYS,
    PASSWORD_KEY,
    WEBDAV_SERVICE,
    CredentialError,
    CredentialNotFoundError,
    CredentialStore,
    CredentialStoreLockedError,
    CredentialStoreNotInitializedError,
    InvalidPassphraseError,
    load_password,
)
from davbackup.config.settings import (
    DEFAULT_BACKUP_FILENAME,
    DEFAULT_REMOTE_FOLDER,
    ConfigurationError,
    HostConfig,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    # Settings
    "Settings",
    "HostConfig",
    "load_config",
    "save_config",
    "ConfigurationError",
    "DEFAULT_BACKUP_FILENAME",
    "DEFAULT_REMOTE_FOLDER",
    # Credentials
    "CredentialStore",
    "CredentialError",
    "CredentialStoreNotInitializedError",
    "CredentialStoreLockedError",
    "InvalidPassphraseError",
    "CredentialNotFoundError",
    "load_password",
    "CREDENTIAL_KEYS",
    "WEBDAV_SERVICE",
    "PASSWORD_KEY",
]
