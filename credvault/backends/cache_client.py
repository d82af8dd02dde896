"""Client backend for the credvault cache daemon.

Every call opens one Unix-socket connection, writes the action line and the
credential stream, half-closes, and reads the reply to EOF.  All socket
operations share the helper's timeout.  When no daemon is listening,
``get`` and ``erase`` have nothing to act on; ``store`` starts a daemon in
its own session and retries until the daemon answers.
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional

from credvault.backends.base import HelperBackend, commit_point
from credvault.codec import format_record, parse_record
from credvault.constants import (
    DAEMON_SPAWN_WAIT,
    DEFAULT_BACKEND_TIMEOUT,
    DEFAULT_CACHE_TIMEOUT,
    get_socket_path,
)
from credvault.errors import BackendTimeoutError, BackendUnavailableError
from credvault.models import CredentialKey, CredentialRecord
from credvault.utils import log_debug


def _key_request(key: CredentialKey) -> CredentialRecord:
    return CredentialRecord(protocol=key.protocol, host=key.host, path=key.path or None)


class CacheDaemonBackend(HelperBackend):
    """Credential cache held by a long-lived daemon process."""

    name = "cache"

    def __init__(
        self,
        socket_path: Optional[Path] = None,
        *,
        timeout: float = DEFAULT_BACKEND_TIMEOUT,
        cache_timeout: int = DEFAULT_CACHE_TIMEOUT,
        spawn: bool = True,
    ) -> None:
        self.socket_path = Path(socket_path) if socket_path is not None else get_socket_path()
        self.timeout = timeout
        self.cache_timeout = cache_timeout
        self.spawn = spawn

    def get(self, key: CredentialKey) -> Optional[CredentialRecord]:
        reply = self._request("get", format_record(_key_request(key)))
        if not reply:
            return None
        return parse_record(reply, "get")

    def store(self, record: CredentialRecord) -> None:
        payload = format_record(record)
        commit_point()
        if self._request("store", payload) is not None:
            return
        if not self.spawn:
            raise BackendUnavailableError(f"No cache daemon listening on {self.socket_path}")
        self._spawn_daemon()
        deadline = time.monotonic() + min(self.timeout, DAEMON_SPAWN_WAIT)
        while self._request("store", payload) is None:
            if time.monotonic() >= deadline:
                raise BackendUnavailableError(f"Cache daemon did not start on {self.socket_path}")
            time.sleep(0.05)

    def erase(self, key: CredentialKey, match: Optional[CredentialRecord] = None) -> bool:
        request = _key_request(key)
        if match is not None:
            # The daemon checks the identity under its own lock
            request = request.model_copy(update={"username": match.username, "password": match.password})
        commit_point()
        return self._request("erase", format_record(request)) is not None

    def stop_daemon(self) -> bool:
        """Ask a running daemon to exit. Returns False if none was running."""
        return self._request("exit", "") is not None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, action: str, payload: str) -> Optional[str]:
        """Send one request; ``None`` means no daemon is listening."""
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            try:
                sock.connect(str(self.socket_path))
            except (FileNotFoundError, ConnectionRefusedError):
                log_debug(f"No cache daemon at {self.socket_path}")
                return None
            sock.sendall(f"{action}\n{payload}".encode("utf-8"))
            sock.shutdown(socket.SHUT_WR)
            chunks: list[bytes] = []
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
        except socket.timeout as exc:
            raise BackendTimeoutError(
                f"Cache daemon did not answer '{action}' within {self.timeout}s"
            ) from exc
        except OSError as exc:
            raise BackendUnavailableError(f"Cache daemon at {self.socket_path} failed: {exc}") from exc
        finally:
            sock.close()

        reply = b"".join(chunks).decode("utf-8", errors="replace")
        if reply.startswith("error="):
            message = reply.splitlines()[0][len("error="):]
            raise BackendUnavailableError(f"Cache daemon rejected '{action}': {message}")
        return reply

    def _spawn_daemon(self) -> None:
        log_debug(f"Starting cache daemon on {self.socket_path}")
        try:
            proc = subprocess.Popen(
                [
                    sys.executable, "-m", "credvault.cli",
                    "--socket", str(self.socket_path),
                    "--cache-timeout", str(self.cache_timeout),
                    "cache-daemon",
                ],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
            # Detached: the daemon outlives this helper process.
            proc.returncode = 0
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot start cache daemon: {exc}") from exc
