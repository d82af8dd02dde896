"""Exception hierarchy for credvault.

Callers can catch the broad ``CredentialHelperError`` or a specific
failure mode.  Messages must never contain a secret value.

This module is a base-layer module: it must NOT import from any
other ``credvault`` submodule.
"""

from __future__ import annotations


class CredentialHelperError(Exception):
    """Base exception for all credvault errors."""


class MalformedInputError(CredentialHelperError):
    """The key=value stream is malformed or lacks required keys."""


class BackendUnavailableError(CredentialHelperError):
    """The credential store cannot be reached (locked, missing, denied)."""


class CorruptStoreError(CredentialHelperError):
    """Persisted credential data exists but cannot be decoded."""


class BackendTimeoutError(CredentialHelperError):
    """A backend call did not finish within the configured bound."""


class ConfigError(CredentialHelperError):
    """Helper settings (config file, environment, options) are invalid."""
