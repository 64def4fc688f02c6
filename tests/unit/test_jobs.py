"""Tests for BackgroundTasks and the JobRegistry."""

from __future__ import annotations

import threading

import pytest

from koso.errors import JobCancelled
from koso.jobs import CANCELLED, DELTA, DONE, ERROR, BackgroundTasks, JobRegistry

TIMEOUT = 5


# ------------------------------------------------------------------
# BackgroundTasks
# ------------------------------------------------------------------


def test_task_result_on_success():
    with BackgroundTasks() as tasks:
        handle = tasks.submit("add", lambda a, b: a + b, 2, b=3)
        result = handle.result(TIMEOUT)

    assert result.ok
    assert result.value == 5
    assert result.name == "add"
    assert handle.done()


def test_failed_task_is_captured_not_raised():
    def explode():
        raise RuntimeError("provider down")

    with BackgroundTasks() as tasks:
        result = tasks.submit("explode", explode).result(TIMEOUT)

    assert not result.ok
    assert result.error == "provider down"
    assert result.value is None


# ------------------------------------------------------------------
# JobRegistry
# ------------------------------------------------------------------


@pytest.fixture
def registry():
    registry = JobRegistry()
    yield registry
    registry.shutdown()


def test_job_streams_deltas_then_done(registry):
    gate = threading.Event()
    events = []

    def target(cancel, emit):
        gate.wait(TIMEOUT)
        emit("Hel")
        emit("lo")
        return "Hello"

    handle = registry.start("report:spec-1", target)
    assert registry.subscribe("report:spec-1", events.append) is True
    gate.set()
    final = handle.wait(TIMEOUT)

    assert [(e.kind, e.data) for e in events] == [(DELTA, "Hel"), (DELTA, "lo"), (DONE, "Hello")]
    assert final.kind == DONE
    assert handle.finished
    assert registry.running() == []
    assert registry.get("report:spec-1") is None


def test_start_returns_running_job(registry):
    gate = threading.Event()
    calls = []

    def target(cancel, emit):
        calls.append(1)
        gate.wait(TIMEOUT)
        return None

    first = registry.start("job", target)
    second = registry.start("job", target)
    gate.set()
    first.wait(TIMEOUT)

    assert first is second
    assert calls == [1]


def test_cancel_ends_job_with_cancelled_event(registry):
    started = threading.Event()

    def target(cancel, emit):
        started.set()
        if not cancel.wait(TIMEOUT):
            return "not cancelled"
        raise JobCancelled("stop")

    handle = registry.start("job", target)
    started.wait(TIMEOUT)

    assert registry.cancel("job") is True
    assert handle.wait(TIMEOUT).kind == CANCELLED
    assert registry.cancel("job") is False


def test_failing_job_ends_with_error_event(registry):
    def target(cancel, emit):
        raise ValueError("bad spec")

    final = registry.start("job", target).wait(TIMEOUT)

    assert (final.kind, final.data) == (ERROR, "bad spec")
    assert registry.running() == []


def test_job_id_is_reusable_after_completion(registry):
    first = registry.start("job", lambda cancel, emit: 1)
    first.wait(TIMEOUT)
    second = registry.start("job", lambda cancel, emit: 2)

    assert second is not first
    assert second.wait(TIMEOUT).data == 2


def test_subscribe_to_unknown_job(registry):
    assert registry.subscribe("missing", lambda event: None) is False


def test_unsubscribed_callback_gets_nothing(registry):
    gate = threading.Event()
    events = []

    def target(cancel, emit):
        gate.wait(TIMEOUT)
        emit("x")

    handle = registry.start("job", target)
    registry.subscribe("job", events.append)
    registry.unsubscribe("job", events.append)
    gate.set()
    handle.wait(TIMEOUT)

    assert events == []


def test_raising_subscriber_does_not_break_the_job(registry):
    gate = threading.Event()
    events = []

    def broken(event):
        raise RuntimeError("render failed")

    def target(cancel, emit):
        gate.wait(TIMEOUT)
        emit("x")
        return "ok"

    handle = registry.start("job", target)
    registry.subscribe("job", broken)
    registry.subscribe("job", events.append)
    gate.set()

    assert handle.wait(TIMEOUT).kind == DONE
    assert [e.kind for e in events] == [DELTA, DONE]


def test_subscriber_given_at_start_sees_every_event(registry):
    events = []

    def target(cancel, emit):
        emit("first")
        return "done"

    handle = registry.start("job", target, subscriber=events.append)
    handle.wait(TIMEOUT)

    assert [(e.kind, e.data) for e in events] == [(DELTA, "first"), (DONE, "done")]
