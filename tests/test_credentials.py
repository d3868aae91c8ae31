"""Test credential storage"""

import json
from unittest.mock import patch

import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from sound_share.auth.credentials import (
    ACCESS_TOKEN_KEY,
    EXPIRATION_TIME_KEY,
    REFRESH_TOKEN_KEY,
    Credential,
    FileCredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
    clear_credential,
    load_credential,
    save_credential,
)
from sound_share.core.exceptions import CredentialStoreError


class FailingStore(MemoryCredentialStore):
    """Fails when writing one particular key"""

    def __init__(self, failing_key: str) -> None:
        super().__init__()
        self.failing_key = failing_key

    def set(self, key: str, value: str) -> None:
        if key == self.failing_key:
            raise CredentialStoreError(f"cannot write {key}")
        super().set(key, value)


class TestCredential:
    """Test Credential expiry rules"""

    def test_not_expired(self):
        """A token expiring in the future is valid"""
        assert not Credential("a", "r", 2000).is_expired(now_ms=1000)

    def test_expired(self):
        """A token whose expiry passed is expired"""
        assert Credential("a", "r", 1000).is_expired(now_ms=1001)

    def test_missing_or_zero_expiry_is_expired(self):
        """Unknown expiry must trigger a refresh"""
        assert Credential("a", "r", None).is_expired(now_ms=0)
        assert Credential("a", "r", 0).is_expired(now_ms=0)

    def test_margin(self):
        """The margin makes tokens expire early"""
        assert Credential("a", "r", 2000).is_expired(now_ms=1500, margin_ms=600)


class TestCredentialSet:
    """Test load/save/clear of the three keys"""

    def test_save_and_load(self):
        """All three fields are written and read back"""
        store = MemoryCredentialStore()
        save_credential(store, Credential("access", "refresh", 123456))

        assert store.get(ACCESS_TOKEN_KEY) == "access"
        assert store.get(REFRESH_TOKEN_KEY) == "refresh"
        assert store.get(EXPIRATION_TIME_KEY) == "123456"
        assert load_credential(store) == Credential("access", "refresh", 123456)

    def test_load_without_access_token(self):
        """No access token means no credential"""
        store = MemoryCredentialStore({REFRESH_TOKEN_KEY: "refresh"})
        assert load_credential(store) is None

    def test_unreadable_expiry_loads_as_none(self):
        """A corrupted expiry reads as unknown"""
        store = MemoryCredentialStore({ACCESS_TOKEN_KEY: "a", EXPIRATION_TIME_KEY: "soon"})
        credential = load_credential(store)

        assert credential.expires_at_ms is None
        assert credential.refresh_token is None

    def test_partial_write_is_rolled_back(self):
        """A failed write leaves no key behind"""
        store = FailingStore(failing_key=ACCESS_TOKEN_KEY)

        with pytest.raises(CredentialStoreError):
            save_credential(store, Credential("access", "refresh", 1))

        assert store.get(EXPIRATION_TIME_KEY) is None
        assert store.get(REFRESH_TOKEN_KEY) is None
        assert store.get(ACCESS_TOKEN_KEY) is None

    def test_refuses_incomplete_credential(self):
        """A credential without refresh token is never stored"""
        store = MemoryCredentialStore()
        with pytest.raises(CredentialStoreError):
            save_credential(store, Credential("access", None, 1))
        assert load_credential(store) is None

    def test_clear_is_idempotent(self):
        """Clearing twice is fine"""
        store = MemoryCredentialStore()
        save_credential(store, Credential("access", "refresh", 1))

        clear_credential(store)
        clear_credential(store)

        assert load_credential(store) is None


class TestFileCredentialStore:
    """Test the JSON file backend"""

    def test_round_trip(self, temp_dir):
        """Values survive a new store instance"""
        path = temp_dir / "creds" / "credentials.json"
        FileCredentialStore(path).set(ACCESS_TOKEN_KEY, "token")

        assert FileCredentialStore(path).get(ACCESS_TOKEN_KEY) == "token"
        assert json.loads(path.read_text())[ACCESS_TOKEN_KEY] == "token"

    def test_delete(self, temp_dir):
        """Deleting removes the key; deleting again is a no-op"""
        store = FileCredentialStore(temp_dir / "credentials.json")
        store.set(ACCESS_TOKEN_KEY, "token")
        store.delete(ACCESS_TOKEN_KEY)
        store.delete(ACCESS_TOKEN_KEY)

        assert store.get(ACCESS_TOKEN_KEY) is None

    def test_corrupted_file_reads_empty(self, temp_dir):
        """A corrupted file forces a fresh login instead of crashing"""
        path = temp_dir / "credentials.json"
        path.write_text("{not json")

        assert FileCredentialStore(path).get(ACCESS_TOKEN_KEY) is None


class TestKeyringCredentialStore:
    """Test the keyring backend with the keyring library mocked"""

    @patch("sound_share.auth.credentials.keyring")
    def test_get_set(self, mock_keyring):
        """Keys map to password entries under one service"""
        mock_keyring.get_password.return_value = "token"
        store = KeyringCredentialStore("sound-share-test")

        store.set(ACCESS_TOKEN_KEY, "token")
        assert store.get(ACCESS_TOKEN_KEY) == "token"

        mock_keyring.set_password.assert_called_once_with("sound-share-test", ACCESS_TOKEN_KEY, "token")
        mock_keyring.get_password.assert_called_once_with("sound-share-test", ACCESS_TOKEN_KEY)

    @patch("sound_share.auth.credentials.keyring")
    def test_delete_missing_is_ignored(self, mock_keyring):
        """Deleting an entry that doesn't exist is not an error"""
        mock_keyring.delete_password.side_effect = PasswordDeleteError("missing")

        KeyringCredentialStore().delete(ACCESS_TOKEN_KEY)

    @patch("sound_share.auth.credentials.keyring")
    def test_backend_failure(self, mock_keyring):
        """Keyring failures become CredentialStoreError"""
        mock_keyring.get_password.side_effect = KeyringError("no backend")

        with pytest.raises(CredentialStoreError):
            KeyringCredentialStore().get(ACCESS_TOKEN_KEY)
