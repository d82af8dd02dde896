"""Encrypted file backend for platforms without a usable keychain.

The store is a small JSON envelope around a Fernet token::

    {"version": 1, "kdf": "pbkdf2-sha256", "salt": "<b64>",
     "iterations": 480000, "data": "<fernet token>"}

With a passphrase (``CREDVAULT_PASSPHRASE``) the Fernet key is derived with
PBKDF2-HMAC-SHA256 and the salt travels in the envelope.  Without one, a
random key is generated into a 0600 key file next to the store
(``<store>.key``, ``"kdf": "keyfile"``).  The decrypted payload is
``{"credentials": [<record payload>, ...]}``.

Writers take an exclusive lock and replace the file atomically; readers
take no lock.
"""

from __future__ import annotations

import base64
import json
import os
import time
from pathlib import Path
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from credvault.atomic_io import LOCK_TIMEOUT_SECONDS, atomic_write_unlocked, file_lock
from credvault.backends.base import HelperBackend, commit_point
from credvault.constants import PBKDF2_ITERATIONS, get_store_file
from credvault.errors import BackendUnavailableError, CorruptStoreError
from credvault.models import CredentialKey, CredentialRecord
from credvault.utils import log_debug, log_warn

STORE_VERSION = 1
KDF_PBKDF2 = "pbkdf2-sha256"
KDF_KEYFILE = "keyfile"


def derive_key(passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Derive a urlsafe-base64 Fernet key from *passphrase* and *salt*."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class EncryptedFileBackend(HelperBackend):
    """Credential store kept in a single encrypted file."""

    name = "file"

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        passphrase: Optional[str] = None,
        key_file: Optional[Path] = None,
        iterations: int = PBKDF2_ITERATIONS,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self.path = Path(path) if path is not None else get_store_file()
        self.key_file = Path(key_file) if key_file is not None else self.path.with_name(self.path.name + ".key")
        self.passphrase = passphrase or None
        self.iterations = iterations
        self.lock_timeout = lock_timeout
        self._derived: dict[tuple[bytes, int], bytes] = {}
        self._salt: Optional[bytes] = None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get(self, key: CredentialKey) -> Optional[CredentialRecord]:
        return self._load().get(key)

    def store(self, record: CredentialRecord) -> None:
        with file_lock(self.path, timeout=self.lock_timeout):
            try:
                entries = self._load()
            except CorruptStoreError as exc:
                moved = self._quarantine()
                log_warn(f"{exc}; moved it to {moved} and started a new store")
                entries = {}
            entries[record.key] = record
            self._save(entries)

    def erase(self, key: CredentialKey, match: Optional[CredentialRecord] = None) -> bool:
        with file_lock(self.path, timeout=self.lock_timeout):
            try:
                entries = self._load()
            except CorruptStoreError as exc:
                log_warn(f"{exc}; nothing erased")
                return False
            stored = entries.get(key)
            if stored is None:
                return False
            if match is not None and not stored.erasable_by(match):
                log_debug(f"Stored credential for {key.describe()} belongs to another identity; kept")
                return False
            del entries[key]
            self._save(entries)
        return True

    # ------------------------------------------------------------------
    # Envelope handling
    # ------------------------------------------------------------------

    def _load(self) -> dict[CredentialKey, CredentialRecord]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot read credential store {self.path}: {exc.strerror}") from exc

        try:
            envelope = json.loads(raw)
            if not isinstance(envelope, dict) or envelope.get("version") != STORE_VERSION:
                raise ValueError("unsupported envelope")
            token = envelope["data"].encode("ascii")
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise CorruptStoreError(f"Credential store {self.path} is corrupt") from exc

        key = self._key_for(envelope)
        try:
            payload = json.loads(Fernet(key).decrypt(token))
            return self._entries_from_payload(payload)
        except InvalidToken as exc:
            raise CorruptStoreError(
                f"Credential store {self.path} cannot be decrypted (corrupt file or wrong key)"
            ) from exc
        except (ValueError, KeyError, TypeError) as exc:
            raise CorruptStoreError(f"Credential store {self.path} is corrupt") from exc

    def _save(self, entries: dict[CredentialKey, CredentialRecord]) -> None:
        commit_point()
        envelope: dict[str, Any] = {"version": STORE_VERSION}
        if self.passphrase:
            # Reuse the salt of the envelope just read so a store costs one derivation.
            salt = self._salt if self._salt is not None else os.urandom(16)
            envelope.update(
                kdf=KDF_PBKDF2,
                salt=base64.b64encode(salt).decode("ascii"),
                iterations=self.iterations,
            )
            key = self._derive(salt, self.iterations)
        else:
            envelope["kdf"] = KDF_KEYFILE
            key = self._read_or_create_key_file()

        payload = {"credentials": [record.to_payload() for record in entries.values()]}
        token = Fernet(key).encrypt(json.dumps(payload).encode("utf-8"))
        envelope["data"] = token.decode("ascii")
        try:
            atomic_write_unlocked(self.path, json.dumps(envelope).encode("utf-8") + b"\n")
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot write credential store {self.path}: {exc.strerror}") from exc
        log_debug(f"Wrote {len(entries)} credential(s) to {self.path}")

    def _key_for(self, envelope: dict[str, Any]) -> bytes:
        kdf = envelope.get("kdf")
        if kdf == KDF_PBKDF2:
            if not self.passphrase:
                raise BackendUnavailableError(
                    f"Credential store {self.path} is passphrase-protected; set CREDVAULT_PASSPHRASE"
                )
            try:
                salt = base64.b64decode(envelope["salt"])
                iterations = int(envelope["iterations"])
            except (KeyError, TypeError, ValueError) as exc:
                raise CorruptStoreError(f"Credential store {self.path} is corrupt") from exc
            if iterations == self.iterations:
                self._salt = salt
            return self._derive(salt, iterations)
        if kdf == KDF_KEYFILE:
            try:
                return self.key_file.read_bytes().strip()
            except FileNotFoundError as exc:
                raise CorruptStoreError(
                    f"Key file {self.key_file} for credential store {self.path} is missing"
                ) from exc
            except OSError as exc:
                raise BackendUnavailableError(f"Cannot read key file {self.key_file}: {exc.strerror}") from exc
        raise CorruptStoreError(f"Credential store {self.path} uses unknown kdf")

    def _derive(self, salt: bytes, iterations: int) -> bytes:
        cache_key = (salt, iterations)
        if cache_key not in self._derived:
            self._derived[cache_key] = derive_key(self.passphrase or "", salt, iterations)
        return self._derived[cache_key]

    def _read_or_create_key_file(self) -> bytes:
        try:
            key = self.key_file.read_bytes().strip()
            if key:
                return key
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot read key file {self.key_file}: {exc.strerror}") from exc
        key = Fernet.generate_key()
        try:
            atomic_write_unlocked(self.key_file, key + b"\n")
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot write key file {self.key_file}: {exc.strerror}") from exc
        log_debug(f"Generated new store key at {self.key_file}")
        return key

    def _quarantine(self) -> Path:
        commit_point()
        target = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time())}")
        try:
            os.replace(self.path, target)
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot move aside corrupt store {self.path}: {exc.strerror}") from exc
        return target

    @staticmethod
    def _entries_from_payload(payload: Any) -> dict[CredentialKey, CredentialRecord]:
        entries: dict[CredentialKey, CredentialRecord] = {}
        for item in payload["credentials"]:
            record = CredentialRecord.from_payload(item)
            if not record.secret:
                raise ValueError("stored credential without a secret")
            entries[record.key] = record
        return entries
