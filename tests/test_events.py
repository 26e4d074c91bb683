import pytest

from marker_tracker.events import (
    ControllerReady,
    EventBus,
    EventKind,
    ListenerError,
    MarkerCountReported,
)


def test_listeners_run_in_registration_order():
    bus = EventBus()
    calls = []
    bus.on(EventKind.MARKER_COUNT, lambda e: calls.append(("a", e.count)))
    bus.on("marker_count", lambda e: calls.append(("b", e.count)))

    bus.emit(MarkerCountReported(3))

    assert calls == [("a", 3), ("b", 3)]


def test_emit_only_reaches_matching_kind():
    bus = EventBus()
    calls = []
    bus.on(EventKind.CONTROLLER_READY, calls.append)
    bus.emit(MarkerCountReported(1))
    assert calls == []


def test_removal_during_emit_does_not_skip_remaining_listeners():
    bus = EventBus()
    calls = []

    def first(event):
        calls.append("first")
        bus.off(EventKind.MARKER_COUNT, first)

    bus.on(EventKind.MARKER_COUNT, first)
    bus.on(EventKind.MARKER_COUNT, lambda e: calls.append("second"))

    bus.emit(MarkerCountReported(0))
    bus.emit(MarkerCountReported(0))

    assert calls == ["first", "second", "second"]


def test_listener_added_during_emit_waits_for_next_emit():
    bus = EventBus()
    calls = []

    def adder(event):
        calls.append("adder")
        bus.on(EventKind.MARKER_COUNT, lambda e: calls.append("late"))

    bus.on(EventKind.MARKER_COUNT, adder)
    bus.emit(MarkerCountReported(0))
    assert calls == ["adder"]


def test_failing_listener_does_not_suppress_others():
    bus = EventBus()
    calls = []

    def broken(event):
        raise RuntimeError("boom")

    bus.on(EventKind.CONTROLLER_READY, broken)
    bus.on(EventKind.CONTROLLER_READY, lambda e: calls.append("ok"))

    with pytest.raises(ListenerError) as excinfo:
        bus.emit(ControllerReady())

    assert calls == ["ok"]
    assert len(excinfo.value.failures) == 1
    assert isinstance(excinfo.value.failures[0][1], RuntimeError)
    assert "controller_ready" in str(excinfo.value)


def test_off_removes_first_equal_entry_only():
    bus = EventBus()
    calls = []
    listener = calls.append
    bus.on(EventKind.MARKER_COUNT, listener)
    bus.on(EventKind.MARKER_COUNT, listener)

    assert bus.off(EventKind.MARKER_COUNT, listener) is True
    assert bus.listener_count(EventKind.MARKER_COUNT) == 1
    bus.off(EventKind.MARKER_COUNT, listener)
    assert bus.off(EventKind.MARKER_COUNT, listener) is False
    assert bus.listener_count() == 0
