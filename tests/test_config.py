"""Tests for configuration modules (credentials and settings)."""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

from davbackup.config.credentials import (
    MIN_PASSPHRASE_LENGTH,
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
    DEFAULT_CONFIG_FILE,
    DEFAULT_REMOTE_FOLDER,
    ConfigurationError,
    HostConfig,
    Settings,
    _apply_environment_overrides,
    _settings_to_dict,
    _validate_config,
    default_data_root,
    get_config_path,
    load_config,
    save_config,
)

PASSPHRASE = "correct horse battery"


def clean_environment() -> dict:
    """Copy of os.environ without DAVBACKUP_* variables."""
    return {k: v for k, v in os.environ.items() if not k.startswith("DAVBACKUP_")}


class TestSettingsDefaults(unittest.TestCase):
    """Tests for Settings and HostConfig defaults."""

    def test_defaults(self) -> None:
        """Test default values."""
        settings = Settings()

        self.assertEqual(settings.server_url, "")
        self.assertEqual(settings.backup_filename, DEFAULT_BACKUP_FILENAME)
        self.assertEqual(settings.backup_directories, [])
        self.assertEqual(settings.remote_folder, DEFAULT_REMOTE_FOLDER)
        self.assertEqual(settings.timeout, 300)
        self.assertEqual(settings.host.process_name, "Flow.Launcher")
        self.assertEqual(settings.host.plugins_directory_name, "Plugins")

    def test_password_not_in_repr(self) -> None:
        """Test the password never shows up in repr."""
        settings = Settings(password="hunter2-secret")
        self.assertNotIn("hunter2-secret", repr(settings))

    def test_effective_backup_filename(self) -> None:
        """Test blank and path-like names are normalized."""
        cases = {
            "": DEFAULT_BACKUP_FILENAME,
            "   ": DEFAULT_BACKUP_FILENAME,
            "Mine.zip": "Mine.zip",
            "a/b\\Mine.zip": "Mine.zip",
            "folder/": DEFAULT_BACKUP_FILENAME,
        }
        for value, expected in cases.items():
            with self.subTest(value=value):
                self.assertEqual(
                    Settings(backup_filename=value).effective_backup_filename(), expected
                )

    def test_effective_backup_filename_dot_segments(self) -> None:
        """Test names that resolve to a directory fall back to the default."""
        for value in (".", "..", "sub/..", "x\\.", " .. "):
            with self.subTest(value=value):
                self.assertEqual(
                    Settings(backup_filename=value).effective_backup_filename(),
                    DEFAULT_BACKUP_FILENAME,
                )

    def test_default_data_root_xdg(self) -> None:
        """Test the data root follows XDG_CONFIG_HOME off Windows."""
        if os.name == "nt":
            self.skipTest("POSIX only")
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": "/xdg"}):
            self.assertEqual(default_data_root(), str(Path("/xdg") / "FlowLauncher"))

    def test_default_data_root_appdata(self) -> None:
        """Test the data root follows APPDATA on Windows."""
        if os.name != "nt":
            self.skipTest("Windows only")
        with patch.dict(os.environ, {"APPDATA": "C:\\Users\\u\\AppData\\Roaming"}):
            self.assertTrue(default_data_root().endswith("FlowLauncher"))


class TestLoadSaveConfig(unittest.TestCase):
    """Tests for load_config and save_config."""

    def setUp(self) -> None:
        """Create temp directory and isolate the environment."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = Path(self.temp_dir.name) / "config.yaml"
        self.env = patch.dict(os.environ, clean_environment(), clear=True)
        self.env.start()

    def tearDown(self) -> None:
        """Restore environment and clean up."""
        self.env.stop()
        self.temp_dir.cleanup()

    def test_missing_file_gives_defaults(self) -> None:
        """Test loading a missing file returns defaults."""
        settings = load_config(self.config_path)
        self.assertEqual(settings.backup_filename, DEFAULT_BACKUP_FILENAME)

    def test_round_trip(self) -> None:
        """Test saved settings load back unchanged."""
        settings = Settings(
            server_url="https://dav.example/remote.php/dav/files/me",
            username="me",
            backup_filename="Mine.zip",
            backup_directories=["Settings", "Themes"],
            remote_folder="flow",
            timeout=60,
            log_level="DEBUG",
            host=HostConfig(data_root="/data/FlowLauncher", executable="/opt/flow"),
        )
        save_config(settings, self.config_path)

        loaded = load_config(self.config_path)

        self.assertEqual(loaded.server_url, settings.server_url)
        self.assertEqual(loaded.username, "me")
        self.assertEqual(loaded.backup_filename, "Mine.zip")
        self.assertEqual(loaded.backup_directories, ["Settings", "Themes"])
        self.assertEqual(loaded.remote_folder, "flow")
        self.assertEqual(loaded.timeout, 60)
        self.assertEqual(loaded.log_level, "DEBUG")
        self.assertEqual(loaded.host.data_root, "/data/FlowLauncher")
        self.assertEqual(loaded.host.executable, "/opt/flow")

    def test_password_never_saved(self) -> None:
        """Test the password is left out of the YAML file."""
        save_config(Settings(password="hunter2-secret"), self.config_path)

        text = self.config_path.read_text()
        self.assertNotIn("hunter2-secret", text)
        self.assertNotIn("password", yaml.safe_load(text)["webdav"])

    def test_blank_filename_kept(self) -> None:
        """Test an explicitly blank filename loads as blank."""
        self.config_path.write_text("backup:\n  filename: ''\n")

        settings = load_config(self.config_path)

        self.assertEqual(settings.backup_filename, "")
        self.assertEqual(settings.effective_backup_filename(), DEFAULT_BACKUP_FILENAME)

    def test_invalid_yaml(self) -> None:
        """Test malformed YAML raises ConfigurationError."""
        self.config_path.write_text("webdav: [unclosed\n")
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_non_mapping(self) -> None:
        """Test a YAML list is rejected."""
        self.config_path.write_text("- a\n- b\n")
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_directories_must_be_list(self) -> None:
        """Test backup.directories must be a list."""
        self.config_path.write_text("backup:\n  directories: Settings\n")
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_invalid_timeout(self) -> None:
        """Test a non-integer timeout is rejected."""
        self.config_path.write_text("webdav:\n  timeout: soon\n")
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_empty_file(self) -> None:
        """Test an empty file gives defaults."""
        self.config_path.write_text("")
        self.assertEqual(load_config(self.config_path).remote_folder, DEFAULT_REMOTE_FOLDER)

    def test_environment_wins_over_file(self) -> None:
        """Test DAVBACKUP_* variables override file values."""
        self.config_path.write_text("webdav:\n  username: file-user\n")
        os.environ["DAVBACKUP_USERNAME"] = "env-user"
        os.environ["DAVBACKUP_PASSWORD"] = "env-pass"

        settings = load_config(self.config_path)

        self.assertEqual(settings.username, "env-user")
        self.assertEqual(settings.password, "env-pass")

    def test_save_creates_parent(self) -> None:
        """Test save_config creates missing directories."""
        nested = Path(self.temp_dir.name) / "a" / "b" / "config.yaml"
        save_config(Settings(), nested)
        self.assertTrue(nested.exists())


class TestConfigPath(unittest.TestCase):
    """Tests for get_config_path."""

    def test_default(self) -> None:
        """Test default config path when no environment variable."""
        with patch.dict(os.environ, clean_environment(), clear=True):
            self.assertEqual(get_config_path(), DEFAULT_CONFIG_FILE)

    def test_from_environment(self) -> None:
        """Test config path from environment variable."""
        with patch.dict(os.environ, {"DAVBACKUP_CONFIG": "/custom/config.yaml"}):
            self.assertEqual(get_config_path(), Path("/custom/config.yaml"))


class TestEnvironmentOverrides(unittest.TestCase):
    """Tests for _apply_environment_overrides."""

    def test_overrides(self) -> None:
        """Test each supported variable."""
        env = {
            "DAVBACKUP_SERVER_URL": "https://env.example/dav",
            "DAVBACKUP_BACKUP_FILENAME": "Env.zip",
            "DAVBACKUP_DIRECTORIES": "Settings, Themes,,",
            "DAVBACKUP_TIMEOUT": "45",
            "DAVBACKUP_LOG_LEVEL": "warning",
            "DAVBACKUP_DATA_ROOT": "/env/root",
        }
        with patch.dict(os.environ, env):
            settings = _apply_environment_overrides(Settings())

        self.assertEqual(settings.server_url, "https://env.example/dav")
        self.assertEqual(settings.backup_filename, "Env.zip")
        self.assertEqual(settings.backup_directories, ["Settings", "Themes"])
        self.assertEqual(settings.timeout, 45)
        self.assertEqual(settings.log_level, "WARNING")
        self.assertEqual(settings.host.data_root, "/env/root")

    def test_bad_timeout(self) -> None:
        """Test a non-numeric timeout raises ConfigurationError."""
        with patch.dict(os.environ, {"DAVBACKUP_TIMEOUT": "never"}):
            with self.assertRaises(ConfigurationError):
                _apply_environment_overrides(Settings())


class TestValidateConfig(unittest.TestCase):
    """Tests for _validate_config."""

    def test_valid(self) -> None:
        """Test defaults validate."""
        _validate_config(Settings())

    def test_invalid_log_level(self) -> None:
        """Test unknown log levels are rejected."""
        with self.assertRaises(ConfigurationError):
            _validate_config(Settings(log_level="LOUD"))

    def test_timeout_minimum(self) -> None:
        """Test timeouts below one second are rejected."""
        with self.assertRaises(ConfigurationError):
            _validate_config(Settings(timeout=0))

    def test_incomplete_connection_allowed(self) -> None:
        """Test missing server details do not fail config validation."""
        _validate_config(Settings(server_url="", username=""))

    def test_settings_to_dict_sections(self) -> None:
        """Test the YAML layout."""
        data = _settings_to_dict(Settings())
        self.assertEqual(list(data), ["davbackup", "webdav", "backup", "host"])


class TestCredentialStore(unittest.TestCase):
    """Tests for CredentialStore."""

    def setUp(self) -> None:
        """Create temp directory for credential files."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_dir = Path(self.temp_dir.name)
        self.store = CredentialStore(self.config_dir)

    def tearDown(self) -> None:
        """Clean up."""
        self.store.lock()
        self.temp_dir.cleanup()

    def test_initialize(self) -> None:
        """Test initialization creates files and unlocks."""
        self.assertFalse(self.store.is_initialized())

        self.store.initialize(PASSPHRASE)

        self.assertTrue(self.store.is_initialized())
        self.assertTrue(self.store.is_unlocked())
        self.assertTrue((self.config_dir / "salt").exists())
        self.assertTrue((self.config_dir / "credentials.enc").exists())

    def test_initialize_twice(self) -> None:
        """Test a second initialization is refused."""
        self.store.initialize(PASSPHRASE)
        with self.assertRaises(CredentialError):
            self.store.initialize(PASSPHRASE)

    def test_short_passphrase(self) -> None:
        """Test passphrases below the minimum length are rejected."""
        with self.assertRaises(ValueError):
            self.store.initialize("x" * (MIN_PASSPHRASE_LENGTH - 1))
        self.assertFalse(self.store.is_initialized())

    def test_set_get_delete(self) -> None:
        """Test storing, reading and deleting the password."""
        self.store.initialize(PASSPHRASE)

        self.store.set_credential(WEBDAV_SERVICE, PASSWORD_KEY, "s3cret")
        self.assertTrue(self.store.has_credential(WEBDAV_SERVICE, PASSWORD_KEY))
        self.assertEqual(self.store.get_credential(WEBDAV_SERVICE, PASSWORD_KEY), "s3cret")

        self.store.delete_credential(WEBDAV_SERVICE, PASSWORD_KEY)
        self.assertFalse(self.store.has_credential(WEBDAV_SERVICE, PASSWORD_KEY))
        with self.assertRaises(CredentialNotFoundError):
            self.store.get_credential(WEBDAV_SERVICE, PASSWORD_KEY)

    def test_encrypted_on_disk(self) -> None:
        """Test the password is not stored in plaintext."""
        self.store.initialize(PASSPHRASE)
        self.store.set_credential(WEBDAV_SERVICE, PASSWORD_KEY, "plaintext-marker")

        raw = (self.config_dir / "credentials.enc").read_bytes()
        self.assertNotIn(b"plaintext-marker", raw)

    def test_locked_access(self) -> None:
        """Test a locked store refuses access."""
        self.store.initialize(PASSPHRASE)
        self.store.lock()

        with self.assertRaises(CredentialStoreLockedError):
            self.store.get_credential(WEBDAV_SERVICE, PASSWORD_KEY)

    def test_unlock_wrong_passphrase(self) -> None:
        """Test unlocking with the wrong passphrase fails."""
        self.store.initialize(PASSPHRASE)
        self.store.lock()

        with self.assertRaises(InvalidPassphraseError):
            CredentialStore(self.config_dir).unlock("wrong passphrase!!")

    def test_unlock_not_initialized(self) -> None:
        """Test unlocking a missing store fails."""
        with self.assertRaises(CredentialStoreNotInitializedError):
            self.store.unlock(PASSPHRASE)

    def test_persisted_across_instances(self) -> None:
        """Test a new store instance reads stored credentials."""
        self.store.initialize(PASSPHRASE)
        self.store.set_credential(WEBDAV_SERVICE, PASSWORD_KEY, "s3cret")

        other = CredentialStore(self.config_dir)
        other.unlock(PASSPHRASE)
        self.assertEqual(other.get_credential(WEBDAV_SERVICE, PASSWORD_KEY), "s3cret")
        other.lock()

    def test_change_passphrase(self) -> None:
        """Test credentials survive a passphrase change."""
        self.store.initialize(PASSPHRASE)
        self.store.set_credential(WEBDAV_SERVICE, PASSWORD_KEY, "s3cret")

        self.store.change_passphrase(PASSPHRASE, "another long passphrase")
        self.store.lock()

        with self.assertRaises(InvalidPassphraseError):
            self.store.unlock(PASSPHRASE)
        self.store.unlock("another long passphrase")
        self.assertEqual(self.store.get_credential(WEBDAV_SERVICE, PASSWORD_KEY), "s3cret")


class TestLoadPassword(unittest.TestCase):
    """Tests for load_password."""

    def setUp(self) -> None:
        """Create an initialized store holding a password."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = CredentialStore(Path(self.temp_dir.name))
        self.store.initialize(PASSPHRASE)
        self.store.set_credential(WEBDAV_SERVICE, PASSWORD_KEY, "from-store")
        self.store.lock()

    def tearDown(self) -> None:
        """Clean up."""
        self.temp_dir.cleanup()

    def test_existing_password_wins(self) -> None:
        """Test a password already on the settings is kept."""
        settings = Settings(password="from-env")

        self.assertTrue(load_password(settings, self.store, PASSPHRASE))
        self.assertEqual(settings.password, "from-env")
        self.assertFalse(self.store.is_unlocked())

    def test_loads_from_store(self) -> None:
        """Test the password is read with the passphrase."""
        settings = Settings()

        self.assertTrue(load_password(settings, self.store, PASSPHRASE))
        self.assertEqual(settings.password, "from-store")

    def test_locked_without_passphrase(self) -> None:
        """Test nothing happens without a passphrase."""
        settings = Settings()

        self.assertFalse(load_password(settings, self.store))
        self.assertEqual(settings.password, "")

    def test_uninitialized_store(self) -> None:
        """Test an uninitialized store yields no password."""
        with tempfile.TemporaryDirectory() as other_dir:
            settings = Settings()
            self.assertFalse(load_password(settings, CredentialStore(Path(other_dir)), PASSPHRASE))

    def test_missing_credential(self) -> None:
        """Test a store without a password yields none."""
        self.store.unlock(PASSPHRASE)
        self.store.delete_credential(WEBDAV_SERVICE, PASSWORD_KEY)

        settings = Settings()
        self.assertFalse(load_password(settings, self.store))


if __name__ == "__main__":
    unittest.main()
