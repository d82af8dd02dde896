"""Unit tests for the cache daemon and its client backend.

The daemon runs on a background thread inside the test process; the client
talks to it over a real Unix socket in a short temporary directory.
"""

import os
import socket
import threading
from pathlib import Path

import pytest

from credvault.backends.cache import TimedCacheBackend
from credvault.backends.cache_client import CacheDaemonBackend
from credvault.cache_daemon import CacheDaemon, DaemonRunningError, run_cache_daemon
from credvault.errors import BackendTimeoutError, BackendUnavailableError, CredentialHelperError
from credvault.models import CredentialKey, CredentialRecord

KEY = CredentialKey("https", "github.com", "")


def _record(password="ghp_abc123"):
    return CredentialRecord(protocol="https", host="github.com", username="PersonalAccessToken", password=password)


def _start(server):
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def socket_path(short_tmp):
    return Path(short_tmp) / "cache" / "sock"


@pytest.fixture
def daemon(socket_path, fake_clock):
    server = CacheDaemon(
        socket_path,
        sweep_interval=3600,
        cache=TimedCacheBackend(timeout=900, clock=fake_clock),
    )
    thread = _start(server)
    yield server
    server.request_stop()
    thread.join(5)


@pytest.fixture
def client(socket_path):
    return CacheDaemonBackend(socket_path, timeout=2.0, spawn=False)


# ============================================================================
# Client <-> daemon
# ============================================================================


class TestRoundTrip:
    def test_store_then_get(self, daemon, client):
        client.store(_record())
        got = client.get(KEY)
        assert got.secret == "ghp_abc123"
        assert got.username == "PersonalAccessToken"

    def test_get_unknown(self, daemon, client):
        assert client.get(KEY) is None

    def test_erase(self, daemon, client):
        client.store(_record())
        assert client.erase(KEY) is True
        assert client.get(KEY) is None
        assert len(daemon.cache) == 0

    def test_store_overwrites(self, daemon, client):
        client.store(_record("old"))
        client.store(_record("new"))
        assert client.get(KEY).secret == "new"

    def test_entries_expire(self, daemon, client, fake_clock):
        client.store(_record())
        fake_clock.advance(900)
        assert client.get(KEY) is None

    def test_socket_is_private(self, daemon, socket_path):
        assert os.stat(socket_path).st_mode & 0o777 == 0o600
        assert os.stat(socket_path.parent).st_mode & 0o777 == 0o700


class TestDaemonProtocol:
    def test_malformed_request_rejected(self, daemon, client):
        with pytest.raises(BackendUnavailableError, match="rejected 'store'"):
            client._request("store", "protocol=https\n\n")
        assert len(daemon.cache) == 0

    def test_unknown_action_rejected(self, daemon, client):
        with pytest.raises(BackendUnavailableError, match="unknown action"):
            client._request("frobnicate", "")

    def test_erase_with_different_password_keeps_entry(self, daemon, client):
        client.store(_record())
        client._request("erase", "protocol=https\nhost=github.com\npassword=other\n\n")
        assert client.get(KEY).secret == "ghp_abc123"


class TestEraseWithMatch:
    """The daemon checks identity and removes the entry in one step."""

    def test_other_username_keeps_entry(self, daemon, client):
        client.store(_record("ghp_bob_new").model_copy(update={"username": "bob"}))
        stale = CredentialRecord(protocol="https", host="github.com", username="alice", password="ghp_alice_stale")
        client.erase(KEY, stale)
        assert client.get(KEY).secret == "ghp_bob_new"

    def test_stale_password_keeps_entry(self, daemon, client):
        client.store(_record("ghp_new"))
        client.erase(KEY, _record("ghp_old"))
        assert client.get(KEY).secret == "ghp_new"

    def test_matching_identity_erases(self, daemon, client):
        client.store(_record())
        assert client.erase(KEY, _record()) is True
        assert len(daemon.cache) == 0

    def test_erase_racing_rotation_never_removes_new_token(self, daemon, client):
        client.store(_record("ghp_new"))
        stale = _record("ghp_old")
        stop = threading.Event()

        def rotate():
            while not stop.is_set():
                daemon.cache.store(_record("ghp_new"))

        writer = threading.Thread(target=rotate)
        writer.start()
        try:
            for _ in range(200):
                client.erase(KEY, stale)
        finally:
            stop.set()
            writer.join()
        assert client.get(KEY).secret == "ghp_new"


# ============================================================================
# Lifecycle
# ============================================================================


class TestLifecycle:
    def test_exit_action_stops_daemon(self, socket_path, client):
        server = CacheDaemon(socket_path, sweep_interval=3600)
        thread = _start(server)
        assert client.stop_daemon() is True
        thread.join(5)
        assert not thread.is_alive()
        assert not socket_path.exists()

    def test_exits_when_cache_empty(self, socket_path):
        server = CacheDaemon(socket_path, sweep_interval=0.05)
        thread = _start(server)
        thread.join(5)
        assert not thread.is_alive()
        assert not socket_path.exists()

    def test_stays_up_while_cache_has_entries(self, socket_path, client):
        server = CacheDaemon(socket_path, sweep_interval=0.05)
        server.cache.store(_record())
        thread = _start(server)
        try:
            thread.join(0.3)
            assert thread.is_alive()
        finally:
            client.stop_daemon()
            thread.join(5)

    def test_replaces_stale_socket(self, socket_path, client):
        socket_path.parent.mkdir(parents=True)
        socket_path.write_text("")
        server = CacheDaemon(socket_path, sweep_interval=3600)
        thread = _start(server)
        try:
            client.store(_record())
            assert client.get(KEY).secret == "ghp_abc123"
        finally:
            client.stop_daemon()
            thread.join(5)

    def test_refuses_to_replace_live_daemon(self, daemon, socket_path, client):
        with pytest.raises(DaemonRunningError):
            CacheDaemon(socket_path, sweep_interval=3600)
        client.store(_record())
        assert client.get(KEY).secret == "ghp_abc123"

    def test_cannot_listen(self, short_tmp):
        blocker = Path(short_tmp) / "file"
        blocker.write_text("")
        with pytest.raises(CredentialHelperError, match="Cannot listen"):
            run_cache_daemon(blocker / "sock", cache_timeout=60)


# ============================================================================
# Client without a daemon
# ============================================================================


class TestNoDaemon:
    def test_get_returns_none(self, client):
        assert client.get(KEY) is None

    def test_erase_returns_false(self, client):
        assert client.erase(KEY) is False

    def test_stop_returns_false(self, client):
        assert client.stop_daemon() is False

    def test_store_without_spawn_is_unavailable(self, client):
        with pytest.raises(BackendUnavailableError, match="No cache daemon"):
            client.store(_record())

    def test_unresponsive_daemon_times_out(self, socket_path):
        socket_path.parent.mkdir(parents=True)
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        listener.bind(str(socket_path))
        listener.listen(1)
        try:
            client = CacheDaemonBackend(socket_path, timeout=0.2, spawn=False)
            with pytest.raises(BackendTimeoutError, match="did not answer"):
                client.get(KEY)
        finally:
            listener.close()
