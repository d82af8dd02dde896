"""Unit tests for the commit gate in credvault.backends.base."""

import threading

import pytest

from credvault.backends.base import CommitGate, bind_gate, commit_point
from credvault.errors import BackendTimeoutError


class TestCommitGate:
    def test_abandon_before_commit(self):
        gate = CommitGate()
        assert gate.abandon() is True
        with pytest.raises(BackendTimeoutError):
            gate.begin_commit()

    def test_abandon_after_commit_refused(self):
        gate = CommitGate()
        gate.begin_commit()
        assert gate.abandon() is False

    def test_begin_commit_is_repeatable(self):
        gate = CommitGate()
        gate.begin_commit()
        gate.begin_commit()
        assert gate.abandon() is False


class TestCommitPoint:
    def test_unbound_is_noop(self):
        commit_point()

    def test_bound_gate_consulted(self):
        gate = CommitGate()
        gate.abandon()
        with bind_gate(gate):
            with pytest.raises(BackendTimeoutError):
                commit_point()
        commit_point()

    def test_gate_is_per_thread(self):
        gate = CommitGate()
        gate.abandon()
        errors = []

        def other():
            try:
                commit_point()
            except BackendTimeoutError as exc:
                errors.append(exc)

        with bind_gate(gate):
            thread = threading.Thread(target=other)
            thread.start()
            thread.join(5)
        assert errors == []
