from datetime import timedelta

import pytest

from services.progress import (
    Progress, compute_progress, format_countdown, progress_for_pass, remaining_seconds,
)
from tests.factories import T0, make_pass


@pytest.mark.parametrize("duration", [0, -1, -30])
def test_zero_or_negative_duration_never_shows_progress(duration):
    assert compute_progress(T0, duration, T0 + timedelta(minutes=5)) == Progress(0.0, 0)


def test_just_started():
    p = compute_progress(T0, 10, T0)
    assert p.fraction == 0
    assert p.remaining_minutes == 10


def test_two_minutes_into_ten():
    p = compute_progress(T0, 10, T0 + timedelta(seconds=120))
    assert p.fraction == pytest.approx(0.2)
    assert p.remaining_minutes == 8


def test_start_in_the_future_clamps_to_zero_elapsed():
    p = compute_progress(T0, 10, T0 - timedelta(seconds=90))
    assert p.fraction == 0
    assert p.remaining_minutes == 10


def test_past_the_end_is_complete():
    p = compute_progress(T0, 10, T0 + timedelta(minutes=25))
    assert p.fraction == 1
    assert p.remaining_minutes == 0


def test_remaining_minutes_round_up():
    # 1 second in: 599 seconds left is still "10 minutes"
    assert compute_progress(T0, 10, T0 + timedelta(seconds=1)).remaining_minutes == 10
    # 1 second left is still "1 minute"
    assert compute_progress(T0, 10, T0 + timedelta(seconds=599)).remaining_minutes == 1


def test_labels_and_percent():
    assert Progress(0.5, 1).remaining_label == "1 minute remaining"
    assert Progress(0.5, 3).remaining_label == "3 minutes remaining"
    assert Progress(0.0, 0).remaining_label == "0 minutes remaining"
    assert Progress(0.2, 8).percent == 20


def test_countdown():
    assert remaining_seconds(T0, 10, T0 + timedelta(seconds=75)) == 525
    assert remaining_seconds(T0, 10, T0 + timedelta(hours=1)) == 0
    assert format_countdown(525) == "08:45"
    assert format_countdown(-3) == "00:00"


def test_progress_for_pass_with_incomplete_data():
    now = T0 + timedelta(minutes=3)
    running = make_pass(start_time=T0, duration=10, active=True)
    assert progress_for_pass(running, now).remaining_minutes == 7

    # No start time: treated as starting now
    assert progress_for_pass(make_pass(duration=10), now) == Progress(0.0, 10)
    # No duration: nothing to show
    assert progress_for_pass(make_pass(start_time=T0), now) == Progress(0.0, 0)
