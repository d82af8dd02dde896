"""The get / store / erase contract Git expects from a credential helper.

Git runs ``git credential-<helper> <operation>`` and writes a credential
stream to the helper's stdin.  For ``get`` the helper answers on stdout
with the full record, or with nothing when it knows no credential.
``store`` and ``erase`` answer with nothing.

Backend calls run on a daemon thread and the handler stops waiting after
``timeout`` seconds.  A call abandoned before its commit point writes
nothing, so a reported timeout never hides a later write.
"""

from __future__ import annotations

import os
import re
import threading
from collections.abc import Mapping
from typing import Any, Callable, Optional, TextIO

from credvault.backends.base import CommitGate, HelperBackend, bind_gate
from credvault.codec import OPERATIONS, format_record, read_record
from credvault.constants import (
    DEFAULT_BACKEND_TIMEOUT,
    FALLBACK_GITHUB_VARS,
    FALLBACK_HOST_PREFIX,
    FALLBACK_USERNAME,
    GITHUB_HOST,
)
from credvault.errors import BackendTimeoutError, CorruptStoreError
from credvault.models import CredentialRecord
from credvault.utils import log_debug, log_warn


def fallback_env_names(host: str) -> list[str]:
    """Environment variables that may hold a token for *host*, in order.

    ``github.example.com:8443`` maps to ``GITHUB_PAT_GITHUB_EXAMPLE_COM``;
    ``github.com`` additionally falls back to GITHUB_PAT and GITHUB_TOKEN.
    """
    hostname = host.split(":", 1)[0].lower()
    names = [FALLBACK_HOST_PREFIX + re.sub(r"[^A-Z0-9]", "_", hostname.upper())]
    if hostname == GITHUB_HOST:
        names.extend(FALLBACK_GITHUB_VARS)
    return names


class CredentialHelper:
    """Implements the helper operations on top of one backend."""

    def __init__(
        self,
        backend: HelperBackend,
        *,
        timeout: float = DEFAULT_BACKEND_TIMEOUT,
        fallback_env: bool = True,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.backend = backend
        self.timeout = timeout
        self.fallback_env = fallback_env
        self.environ = environ if environ is not None else os.environ

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get(self, request: CredentialRecord) -> Optional[CredentialRecord]:
        """Resolve *request* to a full record, or ``None`` if nothing is known.

        A backend record takes precedence over the environment fallback.
        """
        key = request.key
        record = self._lookup(request)
        if record is not None:
            log_debug(f"get {key.describe()}: found in {self.backend.name} backend")
            return record

        record = self._fallback(request)
        if record is not None:
            log_debug(f"get {key.describe()}: resolved from environment")
        else:
            log_debug(f"get {key.describe()}: no credential known")
        return record

    def store(self, record: CredentialRecord) -> None:
        """Persist *record*, replacing any record under the same key."""
        key = record.key
        if record.is_expired():
            log_debug(f"store {key.describe()}: token already expired, not stored")
            return
        if self.fallback_env and record.secret == self._fallback_secret(record.host or ""):
            log_debug(f"store {key.describe()}: token comes from the environment, not stored")
            return
        self._bounded("store", self.backend.store, record)
        log_debug(f"store {key.describe()}: saved to {self.backend.name} backend")

    def erase(self, request: CredentialRecord) -> None:
        """Remove the record under the request's key; absent keys are fine.

        A stored record is removed only when the request's username (if
        any) and password (if any) both agree with it.  The backend makes
        that check and the removal under one lock.
        """
        key = request.key
        try:
            removed = self._bounded("erase", self.backend.erase, key, request)
        except CorruptStoreError as exc:
            log_warn(f"{exc}; nothing erased")
            return
        log_debug(f"erase {key.describe()}: {'removed' if removed else 'nothing removed'}")

    def run(self, operation: str, stdin: TextIO, stdout: TextIO) -> None:
        """Serve one operation: read the request and write any response.

        Unknown operations are ignored, as Git requires of helpers.
        """
        if operation not in OPERATIONS:
            log_debug(f"Ignoring unknown operation '{operation}'")
            return
        request = read_record(stdin, operation)
        if operation == "get":
            stdout.write(format_record(self.get(request)))
            stdout.flush()
        elif operation == "store":
            self.store(request)
        else:
            self.erase(request)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lookup(self, request: CredentialRecord) -> Optional[CredentialRecord]:
        try:
            record = self._bounded("get", self.backend.get, request.key)
        except CorruptStoreError as exc:
            log_warn(f"{exc}; treating as no stored credential")
            return None
        if record is None or not record.matches(request):
            return None
        if record.is_expired():
            log_debug(f"get {request.key.describe()}: stored token has expired")
            return None
        return record

    def _fallback_secret(self, host: str) -> Optional[str]:
        for name in fallback_env_names(host):
            value = self.environ.get(name, "").strip()
            if value:
                return value
        return None

    def _fallback(self, request: CredentialRecord) -> Optional[CredentialRecord]:
        if not self.fallback_env:
            return None
        secret = self._fallback_secret(request.host or "")
        if secret is None:
            return None
        return CredentialRecord(
            protocol=request.protocol,
            host=request.host,
            path=request.path,
            username=request.username or FALLBACK_USERNAME,
            password=secret,
        )

    def _bounded(self, action: str, func: Callable[..., Any], *args: Any) -> Any:
        """Run a backend call, giving up after ``self.timeout`` seconds.

        The worker runs under a ``CommitGate``.  At the deadline the call is
        abandoned if it has not reached its commit point yet, and then it
        can no longer write anything.  A call already committing gets one
        more ``timeout`` to finish; after that its outcome is unknown.
        """
        outcome: dict[str, Any] = {}
        gate = CommitGate()

        def target() -> None:
            try:
                with bind_gate(gate):
                    outcome["value"] = func(*args)
            except BaseException as exc:
                outcome["error"] = exc

        worker = threading.Thread(target=target, name=f"credvault-{action}", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            if gate.abandon():
                raise BackendTimeoutError(
                    f"{self.backend.name} backend did not finish '{action}' within {self.timeout}s"
                )
            log_debug(f"{action}: past the deadline while committing; waiting for it to finish")
            worker.join(self.timeout)
            if worker.is_alive():
                raise BackendTimeoutError(
                    f"{self.backend.name} backend did not finish committing '{action}' "
                    f"within {2 * self.timeout}s; outcome unknown"
                )
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("value")
