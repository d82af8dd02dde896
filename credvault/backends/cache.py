"""In-memory credential cache with per-entry expiry.

A single helper invocation is a short-lived process, so this cache is only
useful inside a long-lived owner: the cache daemon (see
``credvault.cache_daemon``) or tests.  The expiry map is guarded by a
lock because the daemon serves clients on threads.

Lifecycle of one entry::

    absent --store--> present(expires_at)
    present --erase | sweep past expiry | get past expiry--> absent
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from credvault.backends.base import HelperBackend, commit_point
from credvault.constants import DEFAULT_CACHE_TIMEOUT
from credvault.models import CredentialKey, CredentialRecord


class TimedCacheBackend(HelperBackend):
    """Credential map whose entries expire ``timeout`` seconds after store."""

    name = "cache"

    def __init__(
        self,
        timeout: float = DEFAULT_CACHE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout <= 0:
            raise ValueError("cache timeout must be positive")
        self.timeout = timeout
        self._clock = clock
        self._entries: dict[CredentialKey, tuple[CredentialRecord, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: CredentialKey) -> Optional[CredentialRecord]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            record, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return record

    def store(self, record: CredentialRecord) -> None:
        with self._lock:
            commit_point()
            self._entries[record.key] = (record, self._clock() + self.timeout)

    def erase(self, key: CredentialKey, match: Optional[CredentialRecord] = None) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if match is not None and not entry[0].erasable_by(match):
                return False
            commit_point()
            del self._entries[key]
            return True

    def sweep(self) -> int:
        """Evict every expired entry.

        Returns:
            Number of entries evicted.
        """
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
