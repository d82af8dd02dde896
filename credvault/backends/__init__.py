"""Credential store backends and the factory that selects one."""

from __future__ import annotations

from credvault.backends.base import HelperBackend
from credvault.backends.cache import TimedCacheBackend
from credvault.backends.cache_client import CacheDaemonBackend
from credvault.backends.encrypted_file import EncryptedFileBackend
from credvault.backends.keychain import OSKeychainBackend, keychain_available
from credvault.config import HelperConfig
from credvault.utils import log_debug

__all__ = [
    "HelperBackend",
    "TimedCacheBackend",
    "CacheDaemonBackend",
    "EncryptedFileBackend",
    "OSKeychainBackend",
    "create_backend",
]


def create_backend(config: HelperConfig) -> HelperBackend:
    """Build the backend named by *config*.

    ``auto`` picks the OS keychain when keyring found a real backend and
    falls back to the encrypted file otherwise.
    """
    name = config.backend
    if name == "auto":
        name = "keychain" if keychain_available() else "file"
        log_debug(f"Backend 'auto' resolved to '{name}'")

    if name == "keychain":
        return OSKeychainBackend(lock_timeout=config.timeout)
    if name == "file":
        return EncryptedFileBackend(
            config.store_file,
            passphrase=config.passphrase.get_secret_value() if config.passphrase else None,
            lock_timeout=config.timeout,
        )
    if name == "cache":
        return CacheDaemonBackend(
            config.socket_path,
            timeout=config.timeout,
            cache_timeout=config.cache_timeout,
        )
    raise ValueError(f"Unknown backend: {name}")
