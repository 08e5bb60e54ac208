"""
Progress Service: elapsed/remaining math for a running pass
Pure functions; callers re-invoke them (e.g. once per second) to drive a countdown
"""
import math
from datetime import datetime
from typing import NamedTuple


class Progress(NamedTuple):
    fraction: float  # 0..1, clamped
    remaining_minutes: int  # whole minutes, rounded up, never negative

    @property
    def percent(self) -> int:
        return int(round(self.fraction * 100))

    @property
    def remaining_label(self) -> str:
        if self.remaining_minutes == 1:
            return "1 minute remaining"
        return f"{self.remaining_minutes} minutes remaining"


def _total_seconds(duration_minutes: int) -> int:
    return max(0, duration_minutes) * 60


def _elapsed_seconds(start_at: datetime, now: datetime) -> int:
    # A start in the future (clock skew) counts as nothing elapsed
    return max(0, int((now - start_at).total_seconds()))


def compute_progress(start_at: datetime, duration_minutes: int, now: datetime) -> Progress:
    total = _total_seconds(duration_minutes)
    if total == 0:
        return Progress(0.0, 0)

    clamped = min(_elapsed_seconds(start_at, now), total)
    remaining = total - clamped
    return Progress(clamped / total, math.ceil(remaining / 60))


def remaining_seconds(start_at: datetime, duration_minutes: int, now: datetime) -> int:
    """Seconds left on the pass, for the full-screen MM:SS timer"""
    total = _total_seconds(duration_minutes)
    return max(0, total - _elapsed_seconds(start_at, now))


def format_countdown(seconds: float) -> str:
    s = max(0, int(round(seconds)))
    return f"{s // 60:02d}:{s % 60:02d}"


def progress_for_pass(pass_record, now: datetime) -> Progress:
    """Progress for a stored pass; incomplete data degrades gracefully."""
    start_at = pass_record.start_time or now
    return compute_progress(start_at, max(0, pass_record.duration or 0), now)
