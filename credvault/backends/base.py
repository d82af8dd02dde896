"""Backend interface shared by every credential store.

Also holds the commit gate.  A caller that bounds a backend call (see
``CredentialHelper``) binds a ``CommitGate`` to the worker thread; backends
call ``commit_point()`` immediately before they publish a change.  Once the
caller has abandoned the call, ``commit_point()`` raises and nothing is
written.
"""

from __future__ import annotations

import contextlib
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Optional

from credvault.errors import BackendTimeoutError
from credvault.models import CredentialKey, CredentialRecord

_RUNNING = "running"
_COMMITTING = "committing"
_ABANDONED = "abandoned"

_bound = threading.local()


class CommitGate:
    """Decides, once, whether a bounded call commits or is abandoned."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = _RUNNING

    def begin_commit(self) -> None:
        """Called by the worker before publishing.

        Raises:
            BackendTimeoutError: If the caller already gave up on the call.
        """
        with self._lock:
            if self._state == _ABANDONED:
                raise BackendTimeoutError("backend call abandoned before commit")
            self._state = _COMMITTING

    def abandon(self) -> bool:
        """Called by the caller at its deadline.

        Returns:
            True if the call was abandoned before any commit began; False if
            the worker is already publishing and must be allowed to finish.
        """
        with self._lock:
            if self._state == _RUNNING:
                self._state = _ABANDONED
                return True
            return self._state == _ABANDONED


@contextlib.contextmanager
def bind_gate(gate: CommitGate) -> Iterator[None]:
    """Make *gate* the current thread's commit gate for the duration."""
    previous = getattr(_bound, "gate", None)
    _bound.gate = gate
    try:
        yield
    finally:
        _bound.gate = previous


def commit_point() -> None:
    """Mark the point of no return in a backend write (no-op when unbound)."""
    gate = getattr(_bound, "gate", None)
    if gate is not None:
        gate.begin_commit()


class HelperBackend(ABC):
    """Persistence behind the helper, keyed by ``(protocol, host, path)``.

    Implementations raise ``BackendUnavailableError`` when the underlying
    store cannot be reached and ``CorruptStoreError`` when stored data
    cannot be decoded.  Writes call ``commit_point()`` right before they
    become visible.
    """

    name: str = "base"

    @abstractmethod
    def get(self, key: CredentialKey) -> Optional[CredentialRecord]:
        """Return the record stored under *key*, or ``None``."""

    @abstractmethod
    def store(self, record: CredentialRecord) -> None:
        """Persist *record*, replacing any record with the same key."""

    @abstractmethod
    def erase(self, key: CredentialKey, match: Optional[CredentialRecord] = None) -> bool:
        """Remove the record under *key*.

        With *match*, the record is removed only if
        ``stored.erasable_by(match)``; the check and the removal happen
        under the same lock.

        Returns:
            True if a record was removed, False otherwise.
        """
