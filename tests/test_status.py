import pytest

from creality_bridge.mapper import build_state_messages
from creality_bridge.status import ACTIVE, IDLE, StatusTracker, classify

PRINTING = {"printJobTime": 120, "layer": 3}


@pytest.mark.parametrize("snapshot,expected", [
    ({}, IDLE),
    ({"printProgress": 50, "leftTime": 100}, ACTIVE),
    ({"printProgress": "50", "leftTime": "100"}, ACTIVE),
    ({"printProgress": 50, "leftTime": 0}, IDLE),
    ({"printProgress": 0, "leftTime": 100}, IDLE),
    ({"printJobTime": 1}, ACTIVE),
    ({"printLeftTime": 600}, ACTIVE),
    ({"layer": 2}, ACTIVE),
    ({"gcodeState": 1}, ACTIVE),
    ({"layer": 0, "gcodeState": "idle"}, IDLE),
])
def test_classify(snapshot, expected):
    assert classify(snapshot) == expected


def test_first_snapshot_always_publishes(clock):
    tracker = StatusTracker(clock=clock)
    assert tracker.evaluate({}) == (IDLE, True)


def test_hysteresis_holds_active_then_falls_idle(clock):
    tracker = StatusTracker(clock=clock, window=10.0)
    assert tracker.evaluate(PRINTING) == (ACTIVE, True)

    # partial snapshots without activity fields inside the window
    clock.t = 1.0
    assert tracker.evaluate({}) == (ACTIVE, False)
    clock.t = 5.0
    assert tracker.evaluate({"nozzleTemp": 210}) == (ACTIVE, False)

    clock.t = 10.5
    assert tracker.evaluate({}) == (IDLE, True)
    clock.t = 11.0
    assert tracker.evaluate({}) == (IDLE, False)


def test_unchanged_status_republished_after_window(clock):
    tracker = StatusTracker(clock=clock, window=10.0)
    tracker.evaluate({})
    clock.t = 9.9
    assert tracker.evaluate({}) == (IDLE, False)
    clock.t = 10.0
    assert tracker.evaluate({}) == (IDLE, True)


def test_active_after_idle_publishes_immediately(clock):
    tracker = StatusTracker(clock=clock)
    tracker.evaluate({})
    clock.t = 0.5
    assert tracker.evaluate(PRINTING) == (ACTIVE, True)


def test_state_messages_follow_tracker(clock):
    tracker = StatusTracker(clock=clock)
    msgs = build_state_messages(PRINTING, "p/k1", tracker)
    assert [(m.topic, m.payload) for m in msgs] == [("p/k1/printer_status", "active")]
    clock.t = 1.0
    assert build_state_messages({"tfCard": 1}, "p/k1", tracker) == [
        ("p/k1/tf_card_present", "true", False),
    ]
