"""OS keychain backend built on the ``keyring`` library.

Each key becomes one keychain item whose service name is
``git:<protocol>://<host>[/<path>]`` (the same naming Git Credential
Manager uses) filed under a fixed account.  The item's password is a JSON
document carrying the username, the token and its optional expiry.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
from collections.abc import Iterator
from pathlib import Path
from typing import Optional

import keyring
from keyring.errors import KeyringError, NoKeyringError

from credvault.atomic_io import LOCK_TIMEOUT_SECONDS, file_lock
from credvault.backends.base import HelperBackend, commit_point
from credvault.constants import KEYCHAIN_ACCOUNT, get_locks_dir
from credvault.errors import BackendUnavailableError, CorruptStoreError
from credvault.models import CredentialKey, CredentialRecord
from credvault.utils import log_debug


def keychain_available() -> bool:
    """Check whether keyring resolved a usable (non-fail) backend."""
    try:
        backend = keyring.get_keyring()
        return float(getattr(backend, "priority", 0)) > 0
    except Exception as exc:
        log_debug(f"Keyring backend check failed: {type(exc).__name__}")
        return False


@contextlib.contextmanager
def _keyring_errors(action: str, key: CredentialKey) -> Iterator[None]:
    """Translate keyring failures into ``BackendUnavailableError``.

    Platform backends (secretstorage, dbus, win32) raise their own exception
    types as well as ``KeyringError``; all of them mean the store is out of
    reach.  Only the exception type is reported for foreign errors since
    their text is not under our control.
    """
    try:
        yield
    except NoKeyringError as exc:
        raise BackendUnavailableError(
            "No system keyring backend available. Install one (e.g. secretstorage) "
            "or use --backend file."
        ) from exc
    except KeyringError as exc:
        raise BackendUnavailableError(f"Keychain {action} failed for {key.describe()}: {exc}") from exc
    except Exception as exc:
        raise BackendUnavailableError(
            f"Keychain {action} failed for {key.describe()}: {type(exc).__name__}"
        ) from exc


class OSKeychainBackend(HelperBackend):
    """Credential store delegating to the platform keychain."""

    name = "keychain"

    def __init__(
        self,
        *,
        account: str = KEYCHAIN_ACCOUNT,
        locks_dir: Optional[Path] = None,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self.account = account
        self.locks_dir = locks_dir if locks_dir is not None else get_locks_dir()
        self.lock_timeout = lock_timeout

    def _lock_path(self, key: CredentialKey) -> Path:
        digest = hashlib.sha256(key.service_name().encode("utf-8")).hexdigest()[:32]
        return self.locks_dir / digest

    def get(self, key: CredentialKey) -> Optional[CredentialRecord]:
        with _keyring_errors("read", key):
            raw = keyring.get_password(key.service_name(), self.account)
        if raw is None:
            return None
        return self._decode(key, raw)

    def store(self, record: CredentialRecord) -> None:
        key = record.key
        payload = {
            "username": record.username,
            "password": record.secret,
            "password_expiry_utc": record.password_expiry_utc,
        }
        value = json.dumps({k: v for k, v in payload.items() if v is not None})
        with file_lock(self._lock_path(key), timeout=self.lock_timeout):
            commit_point()
            with _keyring_errors("write", key):
                keyring.set_password(key.service_name(), self.account, value)

    def erase(self, key: CredentialKey, match: Optional[CredentialRecord] = None) -> bool:
        with file_lock(self._lock_path(key), timeout=self.lock_timeout):
            with _keyring_errors("read", key):
                existing = keyring.get_password(key.service_name(), self.account)
            if existing is None:
                return False
            if match is not None and (match.username or match.secret is not None):
                # Raises CorruptStoreError when the identity cannot be checked
                if not self._decode(key, existing).erasable_by(match):
                    log_debug(f"Keychain item for {key.describe()} belongs to another identity; kept")
                    return False
            commit_point()
            with _keyring_errors("delete", key):
                keyring.delete_password(key.service_name(), self.account)
        return True

    @staticmethod
    def _decode(key: CredentialKey, raw: str) -> CredentialRecord:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict) or not data.get("password"):
                raise ValueError("missing password")
            return CredentialRecord(
                protocol=key.protocol,
                host=key.host,
                path=key.path or None,
                username=data.get("username"),
                password=data["password"],
                password_expiry_utc=data.get("password_expiry_utc"),
            )
        except (ValueError, TypeError) as exc:
            # pydantic's ValidationError is a ValueError subclass
            raise CorruptStoreError(f"Keychain item for {key.describe()} is unreadable") from exc
