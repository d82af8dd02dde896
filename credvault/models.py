from __future__ import annotations

import time
from typing import Any, NamedTuple, Optional
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, SecretStr, field_validator, model_validator


class CredentialKey(NamedTuple):
    """Lookup key of a stored credential: ``(protocol, host, path)``.

    A missing path and an empty path are the same key.  Protocol and host
    are compared case-insensitively.
    """

    protocol: str
    host: str
    path: str = ""

    @classmethod
    def of(cls, protocol: str, host: str, path: Optional[str] = None) -> "CredentialKey":
        return cls(protocol.lower(), host.lower(), path or "")

    def service_name(self) -> str:
        """Keychain service name, e.g. ``git:https://github.com``."""
        base = f"git:{self.protocol}://{self.host}"
        if self.path:
            return f"{base}/{self.path}"
        return base

    def describe(self) -> str:
        """Human-readable form for diagnostics (never includes secrets)."""
        return self.service_name()[len("git:"):]


class CredentialRecord(BaseModel):
    """A credential as exchanged with Git over the key=value stream.

    The secret is held in ``password`` as a ``SecretStr`` so that ``repr()``
    and ``str()`` of a record never reveal it.
    """

    model_config = ConfigDict(extra="ignore")

    protocol: Optional[str] = None
    """URL scheme, e.g. ``https``."""

    host: Optional[str] = None
    """Remote host, optionally with ``:port``."""

    path: Optional[str] = None
    """Repository path; only sent when ``credential.useHttpPath`` is set."""

    username: Optional[str] = None
    """Account name; for PATs often a placeholder."""

    password: Optional[SecretStr] = None
    """The token."""

    url: Optional[str] = None
    """Composite URL; decomposed into the fields above when they are absent."""

    password_expiry_utc: Optional[int] = None
    """Unix timestamp after which the token is no longer valid."""

    @field_validator("protocol", "host", "path", "username", "url")
    @classmethod
    def _reject_control_chars(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and ("\n" in value or "\0" in value):
            raise ValueError("value must not contain newline or NUL")
        return value

    @field_validator("password")
    @classmethod
    def _reject_control_chars_in_secret(cls, value: Optional[SecretStr]) -> Optional[SecretStr]:
        if value is not None:
            raw = value.get_secret_value()
            if "\n" in raw or "\0" in raw:
                raise ValueError("value must not contain newline or NUL")
        return value

    @model_validator(mode="after")
    def _expand_url(self) -> "CredentialRecord":
        if not self.url:
            return self
        parts = urlsplit(self.url)
        if self.protocol is None and parts.scheme:
            self.protocol = parts.scheme
        if self.host is None and parts.hostname:
            host = parts.hostname
            if parts.port is not None:
                host = f"{host}:{parts.port}"
            self.host = host
        if self.path is None and parts.path.strip("/"):
            self.path = unquote(parts.path.lstrip("/"))
        if self.username is None and parts.username:
            self.username = unquote(parts.username)
        return self

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def key(self) -> CredentialKey:
        """Lookup key; requires protocol and host to be set."""
        if not self.protocol or not self.host:
            raise ValueError("protocol and host are required to form a key")
        return CredentialKey.of(self.protocol, self.host, self.path)

    @property
    def secret(self) -> Optional[str]:
        if self.password is None:
            return None
        return self.password.get_secret_value()

    def is_expired(self, now: Optional[float] = None) -> bool:
        """True when ``password_expiry_utc`` is set and lies in the past."""
        if self.password_expiry_utc is None:
            return False
        current = time.time() if now is None else now
        return self.password_expiry_utc <= current

    def matches(self, request: "CredentialRecord") -> bool:
        """Check that this stored record satisfies the identity in *request*.

        Only the username is compared; the key has already been matched.
        """
        if request.username and self.username and request.username != self.username:
            return False
        return True

    def erasable_by(self, request: "CredentialRecord") -> bool:
        """Check whether an erase *request* may remove this stored record.

        The request must name the same identity (see ``matches``) and, when
        it carries a password, the very token stored here.  Rejecting a
        stale token therefore never removes a newer one, nor another
        user's record under the same key.
        """
        if not self.matches(request):
            return False
        return request.secret is None or request.secret == self.secret

    # ------------------------------------------------------------------
    # Storage payloads
    # ------------------------------------------------------------------

    def to_payload(self) -> dict[str, Any]:
        """Plain dict for encrypted or keychain storage (includes the secret)."""
        data: dict[str, Any] = {
            "protocol": self.protocol,
            "host": self.host,
            "path": self.path,
            "username": self.username,
            "password": self.secret,
            "password_expiry_utc": self.password_expiry_utc,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CredentialRecord":
        return cls.model_validate(payload)
