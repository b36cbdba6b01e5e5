"""Slot generation: grid, busy intervals, booking window and DST handling."""
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from app.services.availability.slot_generator import (
    BookingWindowPolicy,
    Window,
    generate_slots,
    interval_within_windows,
    merge_windows,
)

UTC = ZoneInfo("UTC")
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)
OPEN_POLICY = BookingWindowPolicy(min_advance_hours=0, max_advance_days=3650)


def utc(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def starts(slots):
    return [slot.start_time for slot in slots]


class TestGrid:
    def test_fixed_grid_from_window_start(self):
        slots = generate_slots([Window(time(9), time(12))], 60, MONDAY, UTC, [], NOW, OPEN_POLICY)

        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 10), utc(MONDAY, 11)]
        assert all(slot.end_time - slot.start_time == timedelta(minutes=60) for slot in slots)

    def test_slot_must_fit_before_window_end(self):
        slots = generate_slots([Window(time(9), time(10, 30))], 45, MONDAY, UTC, [], NOW, OPEN_POLICY)

        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 9, 45)]

    def test_duration_longer_than_window_yields_nothing(self):
        assert generate_slots([Window(time(9), time(9, 30))], 60, MONDAY, UTC, [], NOW, OPEN_POLICY) == []

    def test_no_windows_yields_nothing(self):
        assert generate_slots([], 30, MONDAY, UTC, [], NOW, OPEN_POLICY) == []

    def test_buffer_extends_the_step(self):
        window = Window(time(9), time(12), buffer_minutes=30)
        slots = generate_slots([window], 60, MONDAY, UTC, [], NOW, OPEN_POLICY)

        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 10, 30)]

    def test_multiple_windows_are_ordered(self):
        windows = [Window(time(14), time(16)), Window(time(9), time(11))]
        slots = generate_slots(windows, 60, MONDAY, UTC, [], NOW, OPEN_POLICY)

        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 10), utc(MONDAY, 14), utc(MONDAY, 15)]

    def test_overlapping_windows_do_not_produce_overlapping_slots(self):
        windows = [Window(time(9), time(11)), Window(time(10, 30), time(12))]
        slots = generate_slots(windows, 60, MONDAY, UTC, [], NOW, OPEN_POLICY)

        for first, second in zip(slots, slots[1:]):
            assert first.end_time <= second.start_time
        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 10), utc(MONDAY, 11)]

    def test_identical_windows_collapse(self):
        windows = [Window(time(9), time(11)), Window(time(9), time(11))]
        slots = generate_slots(windows, 60, MONDAY, UTC, [], NOW, OPEN_POLICY)

        assert len(slots) == 2

    def test_slots_are_expressed_in_utc_for_the_business_zone(self):
        berlin = ZoneInfo("Europe/Berlin")
        slots = generate_slots([Window(time(9), time(10))], 60, MONDAY, berlin, [], NOW, OPEN_POLICY)

        # CET is UTC+1 in January
        assert starts(slots) == [utc(MONDAY, 8)]


class TestBusyIntervals:
    def test_overlapping_booking_removes_slot(self):
        busy = [(utc(MONDAY, 10, 15), utc(MONDAY, 10, 45))]
        slots = generate_slots([Window(time(9), time(12))], 60, MONDAY, UTC, busy, NOW, OPEN_POLICY)

        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 11)]

    def test_touching_booking_does_not_remove_slot(self):
        busy = [(utc(MONDAY, 8), utc(MONDAY, 9))]
        slots = generate_slots([Window(time(9), time(11))], 60, MONDAY, UTC, busy, NOW, OPEN_POLICY)

        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 10)]


class TestBookingWindow:
    def test_min_advance_hides_near_slots(self):
        now = utc(MONDAY, 8, 30)
        policy = BookingWindowPolicy(min_advance_hours=1, max_advance_days=90)
        slots = generate_slots([Window(time(9), time(12))], 60, MONDAY, UTC, [], now, policy)

        assert starts(slots) == [utc(MONDAY, 10), utc(MONDAY, 11)]

    def test_past_slots_are_never_offered(self):
        now = utc(MONDAY, 10, 30)
        policy = BookingWindowPolicy(min_advance_hours=0, max_advance_days=90)
        slots = generate_slots([Window(time(9), time(12))], 60, MONDAY, UTC, [], now, policy)

        assert starts(slots) == [utc(MONDAY, 11)]

    def test_max_advance_hides_far_dates(self):
        policy = BookingWindowPolicy(min_advance_hours=0, max_advance_days=7)
        far_monday = MONDAY + timedelta(days=14)

        assert generate_slots([Window(time(9), time(12))], 60, far_monday, UTC, [], NOW, policy) == []


class TestDaylightSaving:
    NEW_YORK = ZoneInfo("America/New_York")

    def test_spring_forward_gap_is_skipped(self):
        # 2030-03-10 02:00 local does not exist in New York
        day = date(2030, 3, 10)
        slots = generate_slots([Window(time(1), time(4))], 60, day, self.NEW_YORK, [], NOW, OPEN_POLICY)

        local_starts = [slot.start_time.astimezone(self.NEW_YORK).time() for slot in slots]
        assert time(2) not in local_starts
        assert time(1) not in local_starts  # ends in the gap
        assert time(3) in local_starts
        for slot in slots:
            assert slot.end_time - slot.start_time == timedelta(minutes=60)

    def test_fall_back_ambiguous_times_are_skipped(self):
        # 2030-11-03 01:00-02:00 local happens twice in New York
        day = date(2030, 11, 3)
        slots = generate_slots([Window(time(0), time(3))], 60, day, self.NEW_YORK, [], NOW, OPEN_POLICY)

        local_starts = [slot.start_time.astimezone(self.NEW_YORK).replace(tzinfo=None).time() for slot in slots]
        assert time(1) not in local_starts
        assert len(set(starts(slots))) == len(slots)


class TestMergeAndContainment:
    def test_touching_windows_stay_separate(self):
        merged = merge_windows([Window(time(9), time(10)), Window(time(10), time(11))])

        assert len(merged) == 2

    def test_interval_inside_window(self):
        windows = [Window(time(9), time(12))]

        assert interval_within_windows(utc(MONDAY, 10), utc(MONDAY, 11), windows, UTC)
        assert not interval_within_windows(utc(MONDAY, 11, 30), utc(MONDAY, 12, 30), windows, UTC)
        assert not interval_within_windows(utc(MONDAY, 8), utc(MONDAY, 9), windows, UTC)

    def test_interval_with_ambiguous_local_start_is_refused(self):
        # 2030-11-03 in New York: 01:00 local is both 05:00Z (EDT) and 06:00Z (EST)
        day = date(2030, 11, 3)
        new_york = ZoneInfo("America/New_York")
        windows = [Window(time(0), time(3))]

        assert interval_within_windows(utc(day, 4), utc(day, 4, 30), windows, new_york)
        assert not interval_within_windows(utc(day, 5), utc(day, 5, 30), windows, new_york)
        assert not interval_within_windows(utc(day, 6), utc(day, 6, 30), windows, new_york)
