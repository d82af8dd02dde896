"""Configuration defaults for credvault.

Every default can be overridden through a ``CREDVAULT_*`` environment
variable; the getters below resolve them at call time so tests can use
``monkeypatch.setenv``.
"""

from __future__ import annotations

import os
from pathlib import Path


def _env_int(key: str, default: int) -> int:
    """Read an integer from an environment variable, returning default on parse failure."""
    try:
        return int(os.environ.get(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_float(key: str, default: float) -> float:
    """Read a float from an environment variable, returning default on parse failure."""
    try:
        return float(os.environ.get(key, str(default)))
    except (ValueError, TypeError):
        return default


# ============================================================================
# Directory & Path Constants
# ============================================================================


def get_credvault_home() -> Path:
    """Get the base directory for credvault state.

    Respects CREDVAULT_HOME environment variable override.
    Defaults to ~/.config/credvault if not set.

    Returns:
        Path to the credvault home directory
    """
    home_str = os.environ.get("CREDVAULT_HOME")
    if home_str:
        return Path(home_str)
    return Path.home() / ".config" / "credvault"


def get_config_file() -> Path:
    """Get the optional JSON config file ($CREDVAULT_HOME/config.json)."""
    return get_credvault_home() / "config.json"


def get_store_file() -> Path:
    """Get the encrypted credential store path.

    Respects CREDVAULT_STORE_FILE, otherwise $CREDVAULT_HOME/credentials.enc.
    """
    path_str = os.environ.get("CREDVAULT_STORE_FILE")
    if path_str:
        return Path(path_str)
    return get_credvault_home() / "credentials.enc"


def get_locks_dir() -> Path:
    """Get the directory holding per-key lock files for the keychain backend."""
    return get_credvault_home() / "locks"


def get_socket_path() -> Path:
    """Get the cache daemon socket path.

    Respects CREDVAULT_SOCKET, otherwise $CREDVAULT_HOME/cache/socket.
    """
    path_str = os.environ.get("CREDVAULT_SOCKET")
    if path_str:
        return Path(path_str)
    return get_credvault_home() / "cache" / "socket"


# ============================================================================
# Protocol Constants
# ============================================================================

KEYCHAIN_ACCOUNT: str = "credvault"
"""Account name under which every keychain entry is filed."""

FALLBACK_USERNAME: str = "PersonalAccessToken"
"""Username reported for tokens resolved from the environment."""

FALLBACK_HOST_PREFIX: str = "GITHUB_PAT_"
"""Prefix of host-specific fallback token variables."""

FALLBACK_GITHUB_VARS: tuple[str, ...] = ("GITHUB_PAT", "GITHUB_TOKEN")
"""Generic fallback token variables, consulted for github.com only."""

GITHUB_HOST: str = "github.com"

# ============================================================================
# Timeout Constants (seconds)
# ============================================================================

DEFAULT_BACKEND_TIMEOUT: float = 5.0
"""Upper bound on a single backend call."""

DEFAULT_CACHE_TIMEOUT: int = 10_000_000
"""Lifetime of a cached credential (about 116 days)."""

CACHE_SWEEP_INTERVAL: float = 60.0
"""Seconds between expiry sweeps in the cache daemon."""

DAEMON_SPAWN_WAIT: float = 2.0
"""How long a client waits for a freshly spawned daemon's socket."""

PBKDF2_ITERATIONS: int = 480_000
"""PBKDF2-HMAC-SHA256 iterations for passphrase-derived store keys."""


# ============================================================================
# Environment Getters
# ============================================================================


def get_backend_name() -> str:
    """Get the configured backend name (CREDVAULT_BACKEND, default ``auto``)."""
    return os.environ.get("CREDVAULT_BACKEND", "auto").strip().lower() or "auto"


def get_backend_timeout() -> float:
    """Get the backend call bound (CREDVAULT_TIMEOUT)."""
    return _env_float("CREDVAULT_TIMEOUT", DEFAULT_BACKEND_TIMEOUT)


def get_cache_timeout() -> int:
    """Get the cache entry lifetime (CREDVAULT_CACHE_TIMEOUT)."""
    return _env_int("CREDVAULT_CACHE_TIMEOUT", DEFAULT_CACHE_TIMEOUT)


def get_passphrase() -> str:
    """Get the store passphrase (CREDVAULT_PASSPHRASE), or empty string."""
    return os.environ.get("CREDVAULT_PASSPHRASE", "")


def get_debug() -> bool:
    """Check if debug mode is enabled (CREDVAULT_DEBUG=1)."""
    return os.environ.get("CREDVAULT_DEBUG", "0") in ("1", "true", "True")
