"""
Top-level pytest conftest.py -- shared fixtures for credvault tests.

Provides:
    isolated_env  - autouse; points CREDVAULT_HOME at tmp_path and clears
                    every CREDVAULT_* / GITHUB_PAT* variable
    short_tmp     - short temporary directory for Unix sockets
    fake_keyring  - in-memory stand-in patched over the keyring module
    fake_clock    - manually advanced monotonic clock
"""

import os
import shutil
import tempfile
from types import SimpleNamespace

import pytest
from keyring.errors import PasswordDeleteError

_ENV_VARS = (
    "CREDVAULT_HOME",
    "CREDVAULT_BACKEND",
    "CREDVAULT_TIMEOUT",
    "CREDVAULT_CACHE_TIMEOUT",
    "CREDVAULT_STORE_FILE",
    "CREDVAULT_SOCKET",
    "CREDVAULT_PASSPHRASE",
    "CREDVAULT_DEBUG",
    "CREDVAULT_FALLBACK_ENV",
    "GITHUB_PAT",
    "GITHUB_TOKEN",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep every test away from the user's real config and tokens."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("GITHUB_PAT_"):
            monkeypatch.delenv(var, raising=False)
    home = tmp_path / "credvault-home"
    monkeypatch.setenv("CREDVAULT_HOME", str(home))
    return home


@pytest.fixture
def short_tmp():
    """Temporary directory with a short path (AF_UNIX paths are length-limited)."""
    path = tempfile.mkdtemp(prefix="cv-", dir="/tmp")
    yield path
    shutil.rmtree(path, ignore_errors=True)


class FakeKeyring:
    """Dict-backed replacement for the ``keyring`` module functions."""

    def __init__(self, priority=5):
        self.items = {}
        self.priority = priority

    def get_password(self, service, account):
        return self.items.get((service, account))

    def set_password(self, service, account, value):
        self.items[(service, account)] = value

    def delete_password(self, service, account):
        if (service, account) not in self.items:
            raise PasswordDeleteError("Password not found")
        del self.items[(service, account)]

    def get_keyring(self):
        return SimpleNamespace(priority=self.priority)


@pytest.fixture
def fake_keyring(monkeypatch):
    fake = FakeKeyring()
    monkeypatch.setattr("credvault.backends.keychain.keyring", fake)
    return fake


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()
