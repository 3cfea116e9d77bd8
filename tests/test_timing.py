"""Tests for TimeDeltaTracker"""

import pytest

from fardriver.timing import TimeDeltaTracker


def test_first_local_sample_sets_baseline():
    tracker = TimeDeltaTracker()
    assert tracker.note_local_sample(1000) is None
    delta = tracker.note_local_sample(1100)
    assert delta.delta_ms == 100
    assert delta.clamped is False


def test_stall_is_clamped_to_twice_median():
    """Test transport stalls don't inflate deltas"""
    tracker = TimeDeltaTracker()
    t = 0
    tracker.note_local_sample(t)
    for _ in range(5):
        t += 100
        tracker.note_local_sample(t)

    t += 5000
    delta = tracker.note_local_sample(t)
    assert delta.delta_ms == 200
    assert delta.clamped is True


def test_non_increasing_local_time_ignored():
    tracker = TimeDeltaTracker()
    tracker.note_local_sample(1000)
    assert tracker.note_local_sample(1000) is None
    assert tracker.note_local_sample(900) is None


def test_median_window_is_bounded():
    tracker = TimeDeltaTracker(local_window_size=3)
    t = 0
    tracker.note_local_sample(t)
    for step in (100, 100, 100, 150, 150, 150):
        t += step
        tracker.note_local_sample(t)
    assert tracker.typical_local_delta == 150


def test_controller_time_units():
    tracker = TimeDeltaTracker()
    assert tracker.note_controller_time(10) is None
    delta = tracker.note_controller_time(11)
    assert delta.delta_ms == pytest.approx(60000)


def test_controller_jump_is_clamped():
    tracker = TimeDeltaTracker()
    tracker.note_controller_time(10)
    delta = tracker.note_controller_time(100)
    assert delta.delta_ms == 600000
    assert delta.clamped is True


def test_controller_counter_going_back_ignored():
    tracker = TimeDeltaTracker()
    tracker.note_controller_time(10)
    assert tracker.note_controller_time(5) is None


def test_reset():
    tracker = TimeDeltaTracker()
    tracker.note_local_sample(0)
    tracker.note_local_sample(100)
    tracker.reset()
    assert tracker.typical_local_delta is None
    assert tracker.note_local_sample(500) is None
