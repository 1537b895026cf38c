"""Tests for the fault controller and its single teardown pass."""

import pytest

from cudevo.engine.faults import FaultController
from cudevo.errors import (
    CompileError,
    ConfigurationError,
    DispatchError,
    ResourceError,
)


def test_cleanup_runs_newest_first_and_once():
    calls = []
    faults = FaultController()
    faults.push("first", lambda: calls.append("first"))
    faults.push("second", lambda: calls.append("second"))
    faults.cleanup()
    faults.cleanup()
    assert calls == ["second", "first"]
    assert faults.cleaned_up
    assert not faults.failed


def test_push_after_cleanup_rejected():
    faults = FaultController()
    faults.cleanup()
    with pytest.raises(RuntimeError):
        faults.push("late", lambda: None)


def test_failing_release_does_not_stop_the_rest():
    calls = []

    def explode():
        raise RuntimeError("release failed")

    faults = FaultController()
    faults.push("first", lambda: calls.append("first"))
    faults.push("exploding", explode)
    faults.push("third", lambda: calls.append("third"))
    faults.cleanup()

    assert calls == ["third", "first"]
    assert len(faults.secondary_errors) == 1
    assert isinstance(faults.primary_error, ResourceError)
    assert faults.failed


def test_first_error_stays_primary():
    faults = FaultController()
    first = ConfigurationError("bad input")
    faults.record(first)
    faults.record(DispatchError("later"))
    assert faults.primary_error is first


def test_context_suppresses_taxonomy_errors_and_cleans_up():
    calls = []
    with FaultController() as faults:
        faults.push("session", lambda: calls.append("session"))
        raise DispatchError("launch failed")
    assert calls == ["session"]
    assert isinstance(faults.primary_error, DispatchError)
    with pytest.raises(DispatchError):
        faults.raise_for_failure()


def test_release_failure_keeps_primary_error():
    def explode():
        raise RuntimeError("release failed")

    with FaultController() as faults:
        faults.push("queue", explode)
        raise ConfigurationError("missing source")
    assert isinstance(faults.primary_error, ConfigurationError)
    assert len(faults.secondary_errors) == 1


def test_context_propagates_other_errors_after_cleanup():
    calls = []
    with pytest.raises(KeyError):
        with FaultController() as faults:
            faults.push("session", lambda: calls.append("session"))
            raise KeyError("bug")
    assert calls == ["session"]
    assert faults.failed


def test_compile_error_logs_build_log(caplog):
    faults = FaultController()
    with caplog.at_level("ERROR", logger="cudevo.engine.faults"):
        faults.record(CompileError("build failed", build_log="line 3: oops"))
    assert "line 3: oops" in caplog.text


def test_raise_for_failure_without_failure_is_silent():
    faults = FaultController()
    faults.cleanup()
    faults.raise_for_failure()
