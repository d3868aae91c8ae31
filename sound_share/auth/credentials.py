"""
Secure credential storage for sound-share.

The credential store persists exactly three scalar secrets under fixed
keys, with per-key set/get/delete and no enumeration:

    spotifyAccessToken      bearer token for catalog calls
    spotifyRefreshToken     long-lived token used to mint new bearer tokens
    spotifyExpirationTime   access token expiry, epoch milliseconds as a string

Backends:
    KeyringCredentialStore  OS secret service via the keyring library
    FileCredentialStore     JSON file with owner-only permissions (600)
    MemoryCredentialStore   dict, for tests and throwaway sessions

The store has no business logic. Reading and writing the three keys as a
unit (including rollback of partial writes) is done by load_credential(),
save_credential() and clear_credential(), which only the token lifecycle
manager calls.
"""

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from sound_share.core.exceptions import CredentialStoreError
from sound_share.core.logger import get_logger


logger = get_logger(__name__)


ACCESS_TOKEN_KEY = "spotifyAccessToken"
REFRESH_TOKEN_KEY = "spotifyRefreshToken"
EXPIRATION_TIME_KEY = "spotifyExpirationTime"

CREDENTIAL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRATION_TIME_KEY)


@runtime_checkable
class SecureCredentialStore(Protocol):
    """Per-key secret storage. Deleting a missing key is not an error."""

    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...


class MemoryCredentialStore:
    """Credential store that lives only as long as the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class KeyringCredentialStore:
    """
    Credential store backed by the operating system keyring.

    Each key is stored as a separate password entry under one service
    name, so the backend's own per-entry atomicity applies.

    Attributes:
        service_name: Keyring service the entries are filed under.
    """

    def __init__(self, service_name: str = "sound-share") -> None:
        self.service_name = service_name

    def get(self, key: str) -> str | None:
        try:
            value = keyring.get_password(self.service_name, key)
        except KeyringError as e:
            raise CredentialStoreError(
                f"Failed to read '{key}' from keyring: {e}",
                details={"service": self.service_name, "key": key, "original_error": str(e)}
            ) from e
        # Some backends cannot delete and store an empty string instead
        return value or None

    def set(self, key: str, value: str) -> None:
        try:
            keyring.set_password(self.service_name, key, value)
        except KeyringError as e:
            raise CredentialStoreError(
                f"Failed to write '{key}' to keyring: {e}",
                details={"service": self.service_name, "key": key, "original_error": str(e)}
            ) from e

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            # Entry did not exist
            pass
        except KeyringError as e:
            raise CredentialStoreError(
                f"Failed to delete '{key}' from keyring: {e}",
                details={"service": self.service_name, "key": key, "original_error": str(e)}
            ) from e


class FileCredentialStore:
    """
    Credential store backed by a JSON file with owner-only permissions.

    Every set/delete rewrites the file through a temporary file and
    os.replace(), so a crash never leaves a half-written file behind.
    A corrupted file reads as empty (forcing a fresh login) rather than
    crashing the application.

    Attributes:
        path: Location of the JSON file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError:
            logger.warning(f"Credential file is corrupted, ignoring it: {self.path}")
            return {}
        except OSError as e:
            raise CredentialStoreError(
                f"Failed to read credential file: {e}",
                details={"file_path": str(self.path), "original_error": str(e)}
            ) from e
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=".credentials-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                # 0o600 = owner read/write only
                try:
                    os.chmod(tmp_name, 0o600)
                except OSError:
                    # Windows doesn't support chmod
                    pass
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise CredentialStoreError(
                f"Failed to write credential file: {e}",
                details={"file_path": str(self.path), "original_error": str(e)}
            ) from e

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key not in data:
                return
            del data[key]
            self._write_all(data)


@dataclass(frozen=True)
class Credential:
    """
    The full credential set.

    Attributes:
        access_token: Bearer token.
        refresh_token: Token for the refresh grant.
        expires_at_ms: Epoch milliseconds after which access_token is stale.
                       None when the stored value is missing or unreadable,
                       which callers must treat as expired.
    """
    access_token: str
    refresh_token: str | None
    expires_at_ms: int | None

    def is_expired(self, now_ms: int, margin_ms: int = 0) -> bool:
        """Missing or non-positive expiry counts as expired."""
        if self.expires_at_ms is None or self.expires_at_ms <= 0:
            return True
        return now_ms > self.expires_at_ms - margin_ms


def _parse_expiry(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        logger.warning(f"Stored expiry is not a number: {raw!r}")
        return None


def load_credential(store: SecureCredentialStore) -> Credential | None:
    """
    Read the credential set. Returns None when no access token is stored.
    """
    access_token = store.get(ACCESS_TOKEN_KEY)
    if not access_token:
        return None
    return Credential(
        access_token=access_token,
        refresh_token=store.get(REFRESH_TOKEN_KEY) or None,
        expires_at_ms=_parse_expiry(store.get(EXPIRATION_TIME_KEY)),
    )


def save_credential(store: SecureCredentialStore, credential: Credential) -> None:
    """
    Persist all three fields, or none of them.

    The expiry is written first and the access token last, so a reader
    never sees a fresh access token next to a stale expiry. If any write
    fails every key is deleted again before the error propagates.

    Raises:
        CredentialStoreError: If a write failed (store is left empty).
    """
    if credential.expires_at_ms is None or credential.refresh_token is None:
        raise CredentialStoreError(
            "Refusing to store a credential without expiry or refresh token",
            details={"has_refresh_token": credential.refresh_token is not None}
        )

    try:
        store.set(EXPIRATION_TIME_KEY, str(credential.expires_at_ms))
        store.set(REFRESH_TOKEN_KEY, credential.refresh_token)
        store.set(ACCESS_TOKEN_KEY, credential.access_token)
    except CredentialStoreError:
        logger.error("Credential write failed, rolling back partial credential")
        clear_credential(store, strict=False)
        raise


def clear_credential(store: SecureCredentialStore, strict: bool = True) -> None:
    """
    Delete all three fields. Idempotent.

    The access token goes first so a concurrent reader stops seeing a
    credential as soon as possible.

    Args:
        strict: Re-raise the first store failure after attempting every key.
    """
    first_error: CredentialStoreError | None = None
    for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRATION_TIME_KEY):
        try:
            store.delete(key)
        except CredentialStoreError as e:
            logger.error(f"Failed to delete credential key {key}: {e.message}")
            if first_error is None:
                first_error = e
    if strict and first_error is not None:
        raise first_error
