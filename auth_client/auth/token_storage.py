"""
Secure Token Storage for the bearer auth client.

This module provides the default secure store (system keyring, with an
encrypted file as fallback) and the adapter that gives the auth
orchestrator token and credential operations on top of any secure store.
"""

import os
import json
import logging
from typing import Optional, Dict, Any
from pathlib import Path

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from auth_shared.exceptions import SecureStorageError, StorageBackendError
from auth_shared.interfaces import ISecureStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
CREDENTIALS_KEY = "credentials"


class KeyringSecureStore(ISecureStore):
    """
    Secure key-value store backed by the system keyring.

    Falls back to a Fernet-encrypted file when no usable keyring backend is
    available. The file and its key are created with 0600 permissions.
    """

    def __init__(
        self,
        service_name: str = "bearer-auth-client",
        storage_dir: Optional[str] = None,
        use_keyring: Optional[bool] = None
    ):
        self.service_name = service_name
        self.keyring_available = (
            self._check_keyring_availability() if use_keyring is None else use_keyring
        )
        self.storage_dir = Path(storage_dir) if storage_dir else self._get_storage_dir()
        self.storage_path = self.storage_dir / 'auth_store.enc'
        self.key_path = self.storage_dir / 'auth_store.key'

        self._encryption_key: Optional[bytes] = None

        logger.info(f"Secure store initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            test_key = f"{self.service_name}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_dir(self) -> Path:
        """Directory for the encrypted fallback file."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            return Path(xdg_config) / self.service_name
        return Path.home() / '.config' / self.service_name

    def _get_encryption_key(self) -> bytes:
        """Get or create the encryption key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        self.storage_dir.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        self.key_path.write_bytes(key)
        os.chmod(self.key_path, 0o600)

        self._encryption_key = key
        return key

    def _read_file(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}
        fernet = Fernet(self._get_encryption_key())
        decrypted = fernet.decrypt(self.storage_path.read_bytes())
        return json.loads(decrypted.decode())

    def _write_file(self, values: Dict[str, str]) -> None:
        if not values:
            if self.storage_path.exists():
                self.storage_path.unlink()
            return

        self.storage_dir.mkdir(parents=True, exist_ok=True)
        fernet = Fernet(self._get_encryption_key())
        self.storage_path.write_bytes(fernet.encrypt(json.dumps(values).encode()))
        os.chmod(self.storage_path, 0o600)

    def set(self, key: str, value: str) -> None:
        try:
            if self.keyring_available:
                keyring.set_password(self.service_name, key, value)
            else:
                values = self._read_file()
                values[key] = value
                self._write_file(values)
        except (KeyringError, InvalidToken, OSError, ValueError) as e:
            raise StorageBackendError(f"Failed to store '{key}': {e}") from e

    def get(self, key: str) -> Optional[str]:
        try:
            if self.keyring_available:
                return keyring.get_password(self.service_name, key)
            return self._read_file().get(key)
        except (KeyringError, InvalidToken, OSError, ValueError) as e:
            raise StorageBackendError(f"Failed to read '{key}': {e}") from e

    def delete(self, key: str) -> None:
        try:
            if self.keyring_available:
                try:
                    keyring.delete_password(self.service_name, key)
                except PasswordDeleteError:
                    pass
            else:
                values = self._read_file()
                if values.pop(key, None) is not None:
                    self._write_file(values)
        except (KeyringError, InvalidToken, OSError, ValueError) as e:
            raise StorageBackendError(f"Failed to delete '{key}': {e}") from e


class TokenStoreAdapter:
    """
    Token and credential operations on top of a secure store.

    A missing token is a normal outcome (None); any failure of the
    underlying store is reported as SecureStorageError.
    """

    def __init__(self, secure_store: ISecureStore, logger: Optional[logging.Logger] = None):
        self.secure_store = secure_store
        self._logger = logger or logging.getLogger(__name__)

    def _set(self, key: str, value: str) -> None:
        try:
            self.secure_store.set(key, value)
        except Exception as e:
            self._logger.error(f"Secure store failed to save '{key}': {e}")
            raise SecureStorageError(f"Failed to save {key}", key=key, cause=e)

    def _get(self, key: str) -> Optional[str]:
        try:
            return self.secure_store.get(key)
        except Exception as e:
            self._logger.error(f"Secure store failed to read '{key}': {e}")
            raise SecureStorageError(f"Failed to read {key}", key=key, cause=e)

    def _delete(self, key: str) -> None:
        try:
            self.secure_store.delete(key)
        except Exception as e:
            self._logger.error(f"Secure store failed to delete '{key}': {e}")
            raise SecureStorageError(f"Failed to delete {key}", key=key, cause=e)

    def save_token(self, token: str) -> None:
        self._set(TOKEN_KEY, token)

    def get_token(self) -> Optional[str]:
        token = self._get(TOKEN_KEY)
        return token or None

    def has_token(self) -> bool:
        return self.get_token() is not None

    def delete_token(self) -> None:
        self._delete(TOKEN_KEY)

    def save_credentials(self, credentials: Dict[str, Any]) -> None:
        try:
            value = json.dumps(credentials)
        except (TypeError, ValueError) as e:
            raise SecureStorageError("Credentials are not serializable", key=CREDENTIALS_KEY, cause=e)
        self._set(CREDENTIALS_KEY, value)

    def get_credentials(self) -> Optional[Dict[str, str]]:
        """
        Return the stored credentials.

        A corrupt entry is deleted and reported as absent.
        """
        value = self._get(CREDENTIALS_KEY)
        if not value:
            return None

        try:
            credentials = json.loads(value)
        except ValueError:
            credentials = None

        if not isinstance(credentials, dict):
            self._logger.warning("Stored credentials are corrupt, removing them")
            self._delete(CREDENTIALS_KEY)
            return None

        return credentials

    def delete_credentials(self) -> None:
        self._delete(CREDENTIALS_KEY)
