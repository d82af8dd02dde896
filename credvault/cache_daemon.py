"""Cache daemon: keeps a TimedCacheBackend alive between helper invocations.

Each helper invocation is its own process, so an in-memory cache needs an
owner that outlives it.  The daemon listens on a Unix socket (mode 0600)
and answers one request per connection.  A request is the action on the
first line followed by a credential stream in the usual format::

    store
    protocol=https
    host=github.com
    username=PersonalAccessToken
    password=ghp_abc123
    <blank line>

``get`` answers with the record (or nothing); ``store`` and ``erase``
answer with nothing.  A request that fails validation is answered with a
single ``error=<message>`` line.  ``exit`` stops the daemon.  The daemon
also stops on its own once a sweep finds the cache empty.
"""

from __future__ import annotations

import os
import socket
import socketserver
import threading
from pathlib import Path
from typing import Optional

from credvault.backends.cache import TimedCacheBackend
from credvault.codec import build_record, format_record, parse_lines
from credvault.constants import CACHE_SWEEP_INTERVAL, DEFAULT_CACHE_TIMEOUT
from credvault.errors import CredentialHelperError, MalformedInputError
from credvault.utils import get_logger

logger = get_logger("cache_daemon")

DAEMON_ACTIONS: tuple[str, ...] = ("get", "store", "erase", "exit")


class DaemonRunningError(CredentialHelperError):
    """Another daemon already serves the socket."""


def _is_listening(path: Path) -> bool:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(1.0)
    try:
        sock.connect(str(path))
    except OSError:
        return False
    finally:
        sock.close()
    return True


class _CacheRequestHandler(socketserver.StreamRequestHandler):
    """Serve a single action against the daemon's cache."""

    server: "CacheDaemon"

    def handle(self) -> None:
        action = self.rfile.readline().decode("utf-8", errors="replace").strip()
        if not action:
            # Liveness check from a starting daemon
            return
        if action == "exit":
            logger.info("Exit requested; shutting down cache daemon")
            self.server.request_stop()
            return
        if action not in DAEMON_ACTIONS:
            self._reply_error(f"unknown action '{action}'")
            return

        lines = (raw.decode("utf-8", errors="replace") for raw in iter(self.rfile.readline, b""))
        try:
            request = build_record(parse_lines(lines), action)
        except MalformedInputError as exc:
            self._reply_error(str(exc))
            return

        cache = self.server.cache
        if action == "get":
            self.wfile.write(format_record(cache.get(request.key)).encode("utf-8"))
        elif action == "store":
            cache.store(request)
        else:
            cache.erase(request.key, request)

    def _reply_error(self, message: str) -> None:
        logger.warning(message)
        self.wfile.write(f"error={message}\n\n".encode("utf-8"))


class CacheDaemon(socketserver.ThreadingUnixStreamServer):
    """Threaded Unix-socket server owning one TimedCacheBackend."""

    daemon_threads = True

    def __init__(
        self,
        socket_path: Path,
        *,
        cache_timeout: float = DEFAULT_CACHE_TIMEOUT,
        sweep_interval: float = CACHE_SWEEP_INTERVAL,
        exit_when_empty: bool = True,
        cache: Optional[TimedCacheBackend] = None,
    ) -> None:
        self.socket_path = Path(socket_path)
        self.cache = cache if cache is not None else TimedCacheBackend(timeout=cache_timeout)
        self.sweep_interval = sweep_interval
        self.exit_when_empty = exit_when_empty
        self._stopping = threading.Event()

        if not self.socket_path.parent.exists():
            self.socket_path.parent.mkdir(mode=0o700, parents=True)
        if self.socket_path.exists():
            if _is_listening(self.socket_path):
                raise DaemonRunningError(f"A cache daemon is already listening on {self.socket_path}")
            # Stale socket left by a daemon that did not exit cleanly
            self.socket_path.unlink()
        super().__init__(str(self.socket_path), _CacheRequestHandler)
        os.chmod(self.socket_path, 0o600)

    def request_stop(self) -> None:
        """Ask ``serve_forever`` to return; safe to call from handler threads."""
        if not self._stopping.is_set():
            self._stopping.set()
            threading.Thread(target=self.shutdown, daemon=True).start()

    def _sweep_loop(self) -> None:
        while not self._stopping.wait(self.sweep_interval):
            evicted = self.cache.sweep()
            if evicted:
                logger.debug(f"Evicted {evicted} expired credential(s)")
            if self.exit_when_empty and len(self.cache) == 0:
                logger.info("Cache is empty; shutting down cache daemon")
                self.request_stop()

    def run(self) -> None:
        """Serve until stopped, then remove the socket."""
        sweeper = threading.Thread(target=self._sweep_loop, name="credvault-sweeper", daemon=True)
        sweeper.start()
        logger.info(f"Cache daemon listening on {self.socket_path}")
        try:
            self.serve_forever()
        except KeyboardInterrupt:
            logger.info("Cache daemon interrupted")
        finally:
            self._stopping.set()
            self.server_close()
            try:
                self.socket_path.unlink()
            except FileNotFoundError:
                pass


def run_cache_daemon(socket_path: Path, cache_timeout: float) -> None:
    """Entry point used by ``credvault cache-daemon``."""
    try:
        daemon = CacheDaemon(socket_path, cache_timeout=cache_timeout)
    except OSError as exc:
        raise CredentialHelperError(f"Cannot listen on {socket_path}: {exc.strerror}") from exc
    daemon.run()
