"""
Encrypted storage for the WebDAV password.

config.yaml never holds the password. It is kept in a small encrypted file
next to the config instead:

    <config dir>/salt            random 32-byte salt
    <config dir>/credentials.enc Fernet token wrapping a JSON document
                                 {"<service>": {"<key>": "<value>"}}

The Fernet key is derived from a user passphrase with PBKDF2-SHA256. An
unlocked store keeps the derived key in memory for a limited time only.
"""

import base64
import json
import os
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from davbackup.config.settings import DEFAULT_CONFIG_DIR, Settings

PBKDF2_ITERATIONS = 600_000
SALT_LENGTH = 32
SESSION_TIMEOUT_SECONDS = 3600
MIN_PASSPHRASE_LENGTH = 12

SALT_FILE = "salt"
CREDENTIALS_FILE = "credentials.enc"

WEBDAV_SERVICE = "webdav"
PASSWORD_KEY = "password"

# Known entries and the prompt text for each
CREDENTIAL_KEYS: dict[str, dict[str, str]] = {
    WEBDAV_SERVICE: {
        PASSWORD_KEY: "WebDAV account password (or app password)",
    },
}

Secrets = dict[str, dict[str, str]]


class CredentialError(Exception):
    """Base exception for credential store errors."""

    pass


class CredentialStoreNotInitializedError(CredentialError):
    """No salt or credentials file exists yet."""

    pass


class CredentialStoreLockedError(CredentialError):
    """The store must be unlocked before credentials can be read or written."""

    pass


class InvalidPassphraseError(CredentialError):
    """The passphrase does not decrypt the credentials file."""

    pass


class CredentialNotFoundError(CredentialError):
    """No value is stored for the requested service and key."""

    pass


@dataclass
class CredentialSession:
    """Derived key held in memory while the store is unlocked."""

    fernet: Fernet | None
    created_at: float = field(default_factory=time.time)
    timeout_seconds: int = SESSION_TIMEOUT_SECONDS

    def is_expired(self) -> bool:
        return time.time() - self.created_at > self.timeout_seconds

    def clear(self) -> None:
        self.fernet = None


def _derive_fernet(passphrase: str, salt: bytes) -> Fernet:
    """Turn a passphrase and salt into a Fernet instance."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8"))))


def _check_passphrase_length(passphrase: str) -> None:
    if len(passphrase) < MIN_PASSPHRASE_LENGTH:
        raise ValueError(
            f"Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters."
        )


def _write_private(path: Path, data: bytes) -> None:
    """Atomically replace ``path`` with ``data``, readable by the owner only."""
    staging = path.with_name(path.name + ".tmp")
    try:
        staging.write_bytes(data)
        try:
            os.chmod(staging, 0o600)
        except OSError:
            # chmod is not meaningful on every filesystem
            pass
        staging.replace(path)
    except OSError:
        staging.unlink(missing_ok=True)
        raise


class CredentialStore:
    """
    Passphrase-protected store of service credentials.

    Usage:
        store = CredentialStore(config_dir)
        if not store.is_initialized():
            store.initialize(passphrase)
        else:
            store.unlock(passphrase)
        store.set_credential("webdav", "password", "s3cret")
        store.lock()
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.salt_path = self.config_dir / SALT_FILE
        self.credentials_path = self.config_dir / CREDENTIALS_FILE
        self._session: CredentialSession | None = None

    def is_initialized(self) -> bool:
        return self.salt_path.exists() and self.credentials_path.exists()

    def initialize(self, passphrase: str) -> None:
        """
        Create an empty store protected by ``passphrase`` and unlock it.

        Raises:
            CredentialError: If a store already exists in config_dir.
            ValueError: If the passphrase is too short.
        """
        if self.is_initialized():
            raise CredentialError(
                f"Credential store already initialized in {self.config_dir}. "
                f"Delete {SALT_FILE} and {CREDENTIALS_FILE} there to start over."
            )
        _check_passphrase_length(passphrase)

        self.config_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.config_dir, 0o700)
        except OSError:
            pass

        self._rekey(passphrase, {})

    def unlock(self, passphrase: str, timeout_seconds: int | None = None) -> None:
        """
        Derive the key from ``passphrase`` and keep it for the session.

        Raises:
            CredentialStoreNotInitializedError: If there is no store yet.
            InvalidPassphraseError: If the passphrase is wrong.
        """
        if not self.is_initialized():
            raise CredentialStoreNotInitializedError(
                "Credential store not initialized. Run 'davbackup init' first."
            )

        fernet = _derive_fernet(passphrase, self.salt_path.read_bytes())
        try:
            fernet.decrypt(self.credentials_path.read_bytes())
        except InvalidToken as e:
            raise InvalidPassphraseError("Invalid passphrase. Cannot decrypt credentials.") from e

        self._session = CredentialSession(
            fernet=fernet,
            timeout_seconds=timeout_seconds or SESSION_TIMEOUT_SECONDS,
        )

    def lock(self) -> None:
        if self._session is not None:
            self._session.clear()
            self._session = None

    def is_unlocked(self) -> bool:
        """True while a session exists and has not timed out."""
        if self._session is not None and self._session.is_expired():
            self.lock()
        return self._session is not None

    def get_credential(self, service: str, key: str) -> str:
        """
        Return the value stored for ``service``/``key``.

        Raises:
            CredentialStoreLockedError: If the store is locked.
            CredentialNotFoundError: If nothing is stored.
        """
        secrets_by_service = self._read()
        try:
            return secrets_by_service[service][key]
        except KeyError:
            raise CredentialNotFoundError(
                f"Credential '{key}' not found for service: {service}"
            ) from None

    def set_credential(self, service: str, key: str, value: str) -> None:
        secrets_by_service = self._read()
        secrets_by_service.setdefault(service, {})[key] = value
        self._write(secrets_by_service)

    def delete_credential(self, service: str, key: str) -> None:
        """
        Remove a stored value; a service left empty is dropped.

        Raises:
            CredentialNotFoundError: If nothing is stored.
        """
        secrets_by_service = self._read()
        entries = secrets_by_service.get(service, {})
        if key not in entries:
            raise CredentialNotFoundError(
                f"Credential '{key}' not found for service: {service}"
            )
        del entries[key]
        if not entries:
            secrets_by_service.pop(service, None)
        self._write(secrets_by_service)

    def has_credential(self, service: str, key: str) -> bool:
        return key in self._read().get(service, {})

    def change_passphrase(self, old_passphrase: str, new_passphrase: str) -> None:
        """
        Re-encrypt every credential under a new passphrase and a fresh salt.

        Raises:
            InvalidPassphraseError: If ``old_passphrase`` is wrong.
            ValueError: If ``new_passphrase`` is too short.
        """
        _check_passphrase_length(new_passphrase)
        self.unlock(old_passphrase)
        current = self._read()
        self.lock()
        self._rekey(new_passphrase, current)

    def _rekey(self, passphrase: str, contents: Secrets) -> None:
        """Write a new salt, encrypt ``contents`` under it and unlock."""
        salt = secrets.token_bytes(SALT_LENGTH)
        fernet = _derive_fernet(passphrase, salt)
        _write_private(self.salt_path, salt)
        _write_private(self.credentials_path, fernet.encrypt(json.dumps(contents).encode()))
        self._session = CredentialSession(fernet=fernet)

    def _fernet(self) -> Fernet:
        if not self.is_unlocked():
            raise CredentialStoreLockedError(
                "Credential store is locked. Call unlock() with passphrase first."
            )
        assert self._session is not None and self._session.fernet is not None
        return self._session.fernet

    def _read(self) -> Secrets:
        token = self.credentials_path.read_bytes()
        data: Secrets = json.loads(self._fernet().decrypt(token))
        return data

    def _write(self, contents: Secrets) -> None:
        _write_private(
            self.credentials_path, self._fernet().encrypt(json.dumps(contents).encode())
        )


def load_password(
    settings: Settings,
    credential_store: CredentialStore,
    passphrase: str | None = None,
) -> bool:
    """
    Fill settings.password from the credential store.

    A password already on the settings (DAVBACKUP_PASSWORD) wins and the
    store is not opened. A locked store is only unlocked when a passphrase
    is given.

    Returns:
        True if settings.password is set afterwards.

    Raises:
        InvalidPassphraseError: If the passphrase is wrong.
    """
    if settings.password:
        return True
    if not credential_store.is_initialized():
        return False

    if not credential_store.is_unlocked():
        if passphrase is None:
            return False
        credential_store.unlock(passphrase)

    try:
        settings.password = credential_store.get_credential(WEBDAV_SERVICE, PASSWORD_KEY)
    except CredentialNotFoundError:
        return False
    return bool(settings.password)
