"""Atomic I/O primitives for credential files.

Provides file locking (via ``fcntl.flock()``) and atomic write-via-rename
so that concurrent helper invocations and mid-write crashes never leave a
half-written store on disk.  Readers do not lock: a rename swaps the whole
file, so any reader sees either the old or the new snapshot.

WARNING: ``fcntl.flock()`` provides only advisory locking and does not
work reliably on NFS or other networked filesystems.  Keep the store on
local disk.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
import tempfile
import time
from collections.abc import Iterator
from pathlib import Path

from credvault.errors import BackendTimeoutError

LOCK_TIMEOUT_SECONDS = 5.0
LOCK_POLL_INTERVAL = 0.05


@contextlib.contextmanager
def file_lock(
    path: Path,
    *,
    timeout: float = LOCK_TIMEOUT_SECONDS,
) -> Iterator[None]:
    """Acquire an exclusive file lock for *path* using a sidecar ``.lock`` file.

    Uses non-blocking attempts with a retry loop so that a stuck lock
    never blocks indefinitely.

    Args:
        path: The file being protected.
        timeout: Seconds to keep retrying before giving up.

    Raises:
        BackendTimeoutError: If the lock cannot be acquired within the timeout.
    """
    lock_path = path.with_suffix(path.suffix + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR, 0o600)
    acquired = False
    try:
        lock_op = fcntl.LOCK_EX | fcntl.LOCK_NB
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, lock_op)
                acquired = True
                break
            except OSError:
                if time.monotonic() >= deadline:
                    raise BackendTimeoutError(
                        f"Timed out after {timeout}s waiting for lock on {path}. "
                        f"If no other helper is running, remove {lock_path} and retry."
                    )
                time.sleep(LOCK_POLL_INTERVAL)
        yield
    finally:
        if acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def atomic_write_unlocked(path: Path, content: bytes) -> None:
    """Write *content* atomically with 600 permissions (caller holds lock).

    Uses write-to-temp + os.replace() to avoid corrupted files on crash.
    The caller MUST already hold an exclusive lock on *path* via file_lock().
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
