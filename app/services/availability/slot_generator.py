# ===== app/services/availability/slot_generator.py =====
"""
Slot generation - pure computation, no storage access.

Takes already-fetched inputs (rule windows, service duration, busy intervals,
booking window policy) and produces the fixed appointment grid for one local
date. The result is advisory; the conflict guard re-validates at write time.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Sequence, Tuple
from zoneinfo import ZoneInfo

from app.utils.time_utils import local_to_utc, utc_to_local


@dataclass(frozen=True)
class Window:
    """An open window on one local date, wall-clock bounds"""
    start: time
    end: time
    buffer_minutes: int = 0


@dataclass(frozen=True, order=True)
class Slot:
    start_time: datetime  # UTC
    end_time: datetime  # UTC

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start_time < end and self.end_time > start

    def to_dict(self):
        return {"start_time": self.start_time.isoformat(), "end_time": self.end_time.isoformat()}


@dataclass(frozen=True)
class BookingWindowPolicy:
    min_advance_hours: int
    max_advance_days: int

    def earliest(self, now: datetime) -> datetime:
        return now + timedelta(hours=self.min_advance_hours)

    def latest(self, now: datetime) -> datetime:
        return now + timedelta(days=self.max_advance_days)

    def allows(self, start: datetime, now: datetime) -> bool:
        return self.earliest(now) <= start <= self.latest(now)


def merge_windows(windows: Iterable[Window]) -> List[Window]:
    """Union of overlapping windows; touching windows stay separate so each keeps its own grid."""
    merged: List[Window] = []
    for window in sorted(windows, key=lambda w: (w.start, w.end)):
        if merged and window.start < merged[-1].end:
            last = merged[-1]
            merged[-1] = Window(
                start=last.start,
                end=max(last.end, window.end),
                buffer_minutes=max(last.buffer_minutes, window.buffer_minutes),
            )
        else:
            merged.append(window)
    return merged


def _grid(window: Window, target_date: date, duration: timedelta) -> Iterable[Tuple[datetime, datetime]]:
    cursor = datetime.combine(target_date, window.start)
    window_end = datetime.combine(target_date, window.end)
    step = duration + timedelta(minutes=window.buffer_minutes)
    while cursor + duration <= window_end:
        yield cursor, cursor + duration
        cursor += step


def generate_slots(
        windows: Sequence[Window],
        duration_minutes: int,
        target_date: date,
        tz: ZoneInfo,
        busy: Sequence[Tuple[datetime, datetime]],
        now: datetime,
        policy: BookingWindowPolicy,
) -> List[Slot]:
    """
    Candidate free slots for `target_date` (a business-local date).

    Args:
        windows: rule windows already selected for the local weekday of target_date
        duration_minutes: service duration, also the grid step
        target_date: local calendar date
        tz: business timezone
        busy: UTC intervals of bookings that hold time
        now: aware current instant
        policy: min/max advance booking window

    Returns:
        Chronologically ordered, non-overlapping slots of exactly the service duration.
    """
    if duration_minutes <= 0:
        return []

    duration = timedelta(minutes=duration_minutes)
    earliest = policy.earliest(now)
    latest = policy.latest(now)
    slots = set()

    for window in merge_windows(windows):
        for local_start, local_end in _grid(window, target_date, duration):
            start_utc = local_to_utc(local_start, tz)
            if start_utc is None:
                continue
            end_utc = start_utc + duration
            # Slots straddling a DST transition would not be `duration` long on the wall clock
            if utc_to_local(end_utc, tz) != local_end:
                continue
            if start_utc < earliest or start_utc > latest:
                continue
            candidate = Slot(start_utc, end_utc)
            if any(candidate.overlaps(b_start, b_end) for b_start, b_end in busy):
                continue
            slots.add(candidate)

    return sorted(slots)


def interval_within_windows(
        start_utc: datetime,
        end_utc: datetime,
        windows: Sequence[Window],
        tz: ZoneInfo,
) -> bool:
    """True when [start, end) lies entirely inside one window on the local date of `start`."""
    local_start = utc_to_local(start_utc, tz)
    local_end = utc_to_local(end_utc, tz)
    if local_end.date() != local_start.date():
        return False
    # Same instants the generator refuses: ambiguous local start, or a wall-clock length shifted by DST
    if local_to_utc(local_start, tz) is None or local_end - local_start != end_utc - start_utc:
        return False
    return any(
        window.start <= local_start.time() and local_end.time() <= window.end
        for window in merge_windows(windows)
    )
