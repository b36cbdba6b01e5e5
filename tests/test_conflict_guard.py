"""Conflict guard: the authoritative booking write path."""
import random
import threading
from datetime import datetime, timedelta, timezone

import pytest

from app.config.database import SessionLocal
from app.core.deadline import Deadline
from app.core.exceptions import (
    DeadlineExceeded,
    InvalidTime,
    NotFound,
    ServiceNotFound,
    ServiceUnavailable,
    SlotConflict,
    UpstreamDataStale,
    ValidationError,
)
from app.models.booking import Booking, BookingStatus
from app.models.booking_event import BookingEvent
from app.services.booking import conflict_guard as conflict_guard_module
from app.services.booking.conflict_guard import ConflictGuard
from app.services.booking.locks import business_lock
from app.services.events.event_publisher import BOOKING_CONFIRMED, BOOKING_REQUESTED

from tests.conftest import BUSINESS_ID, NOW, SERVICE_ID, RecordingPublisher

MONDAY_9 = datetime(2030, 1, 7, 9, tzinfo=timezone.utc)


@pytest.fixture
def open_monday(make_service, make_rules):
    make_service()
    make_rules([("MONDAY", "09:00", "12:00")])


@pytest.fixture
def guard(db, publisher, clock):
    return ConflictGuard(db, publisher, clock=clock)


class TestCreateBooking:
    def test_creates_pending_payment_booking(self, db, guard, publisher, open_monday):
        booking = guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9)

        assert booking.status == BookingStatus.PENDING_PAYMENT.value
        assert booking.start_time == MONDAY_9
        assert booking.end_time == MONDAY_9 + timedelta(minutes=60)
        assert db.query(Booking).count() == 1
        assert publisher.subjects == [BOOKING_REQUESTED]
        assert db.query(BookingEvent).filter_by(status="published").count() == 1

    def test_free_service_is_confirmed_immediately(self, db, guard, publisher, make_service, make_rules):
        make_service(price=0)
        make_rules([("MONDAY", "09:00", "12:00")])

        booking = guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9)

        assert booking.status == BookingStatus.CONFIRMED.value
        assert publisher.subjects == [BOOKING_REQUESTED, BOOKING_CONFIRMED]
        confirmed = publisher.published[1][1]
        assert confirmed["type"] == BOOKING_CONFIRMED
        assert confirmed["data"]["bookingId"] == booking.id
        assert confirmed["data"]["startTime"] == "2030-01-07T09:00:00Z"

    def test_offset_input_is_normalised_to_utc(self, guard, open_monday):
        berlin_ten = datetime(2030, 1, 7, 10, tzinfo=timezone(timedelta(hours=1)))

        booking = guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", berlin_ten)

        assert booking.start_time == MONDAY_9

    def test_overlapping_request_conflicts(self, guard, open_monday, make_booking):
        existing = make_booking(MONDAY_9, MONDAY_9 + timedelta(hours=1))

        with pytest.raises(SlotConflict) as exc_info:
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9 + timedelta(minutes=30))

        assert exc_info.value.details["reason"] == "time_overlap"
        assert exc_info.value.details["conflicting_booking_ids"] == [existing.id]

    def test_adjacent_request_succeeds(self, guard, open_monday, make_booking):
        make_booking(MONDAY_9, MONDAY_9 + timedelta(hours=1))

        booking = guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9 + timedelta(hours=1))

        assert booking.start_time == MONDAY_9 + timedelta(hours=1)

    def test_cancelled_booking_frees_the_slot(self, guard, open_monday, make_booking):
        make_booking(MONDAY_9, MONDAY_9 + timedelta(hours=1), status=BookingStatus.CANCELLED)

        assert guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9) is not None

    def test_other_service_of_same_business_conflicts_by_default(self, guard, open_monday, make_booking):
        make_booking(MONDAY_9, MONDAY_9 + timedelta(hours=1), service_id="svc-color")

        with pytest.raises(SlotConflict):
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9)

    def test_service_scope_lets_services_overlap(self, guard, open_monday, make_booking, monkeypatch):
        monkeypatch.setattr(conflict_guard_module.settings, "BOOKING_CONFLICT_SCOPE", "service")
        make_booking(MONDAY_9, MONDAY_9 + timedelta(hours=1), service_id="svc-color")

        assert guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9) is not None

    def test_other_business_never_conflicts(self, guard, open_monday, make_booking):
        make_booking(MONDAY_9, MONDAY_9 + timedelta(hours=1), business_id="biz-2", service_id="svc-x")

        assert guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9) is not None


class TestRejections:
    def test_outside_availability_is_stale_upstream_data(self, db, guard, open_monday):
        with pytest.raises(UpstreamDataStale) as exc_info:
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9 + timedelta(hours=2, minutes=30))

        assert isinstance(exc_info.value, SlotConflict)
        assert exc_info.value.details["reason"] == "outside_availability"
        assert db.query(Booking).count() == 0

    def test_rules_removed_after_listing_reject_booking(self, guard, open_monday, make_rules):
        make_rules([("TUESDAY", "09:00", "12:00")])

        with pytest.raises(UpstreamDataStale):
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9)

    def test_past_start_is_invalid(self, guard, open_monday):
        with pytest.raises(InvalidTime):
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", NOW - timedelta(minutes=1))

    def test_start_beyond_max_advance_is_invalid(self, guard, make_service, make_rules):
        make_service(max_advance_booking_days=7)
        make_rules([("MONDAY", "09:00", "12:00")])

        with pytest.raises(InvalidTime) as exc_info:
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9 + timedelta(days=14))

        assert "latest" in exc_info.value.details

    def test_naive_start_is_rejected(self, guard, open_monday):
        with pytest.raises(ValidationError):
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9.replace(tzinfo=None))

    def test_unknown_service(self, guard):
        with pytest.raises(ServiceNotFound):
            guard.create_booking(BUSINESS_ID, "svc-missing", "cust-1", MONDAY_9)

    def test_service_of_another_business(self, guard, open_monday):
        with pytest.raises(NotFound):
            guard.create_booking("biz-2", SERVICE_ID, "cust-1", MONDAY_9)

    def test_inactive_service(self, guard, make_service, make_rules):
        make_service(is_active=False)
        make_rules([("MONDAY", "09:00", "12:00")])

        with pytest.raises(ServiceUnavailable):
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9)

    def test_expired_deadline_writes_nothing(self, db, guard, open_monday):
        with pytest.raises(DeadlineExceeded):
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9, deadline=Deadline.after(0))

        assert db.query(Booking).count() == 0
        assert db.query(BookingEvent).count() == 0

    def test_lock_wait_respects_deadline(self, db, guard, open_monday):
        holder = SessionLocal()
        try:
            with business_lock(holder, BUSINESS_ID):
                with pytest.raises(DeadlineExceeded):
                    guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", MONDAY_9,
                                         deadline=Deadline.after(0.2))
        finally:
            holder.close()

        assert db.query(Booking).count() == 0


class TestDaylightSaving:
    FALL_BACK_MIDNIGHT = datetime(2030, 11, 3, 4, tzinfo=timezone.utc)  # 00:00 EDT

    @pytest.fixture
    def open_fall_back_sunday(self, make_service, make_rules):
        make_service(duration_minutes=30, max_advance_booking_days=400)
        make_rules([("SUNDAY", "00:00", "03:00")], tz="America/New_York")

    def test_ambiguous_local_start_is_refused(self, db, guard, open_fall_back_sunday):
        # 05:00Z is 01:00 EDT, a wall time that repeats an hour later as EST
        with pytest.raises(SlotConflict):
            guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", self.FALL_BACK_MIDNIGHT + timedelta(hours=1))

        assert db.query(Booking).count() == 0

    def test_unambiguous_start_on_same_day_is_accepted(self, db, guard, open_fall_back_sunday):
        booking = guard.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", self.FALL_BACK_MIDNIGHT)

        assert booking.end_time == self.FALL_BACK_MIDNIGHT + timedelta(minutes=30)


class TestConcurrency:
    def test_racing_requests_for_one_slot_have_exactly_one_winner(self, db, open_monday):
        attempts = 8
        barrier = threading.Barrier(attempts)
        results = []
        results_lock = threading.Lock()

        def attempt(customer_id):
            session = SessionLocal()
            guard = ConflictGuard(session, RecordingPublisher(), clock=lambda: NOW)
            try:
                barrier.wait()
                booking = guard.create_booking(BUSINESS_ID, SERVICE_ID, customer_id, MONDAY_9)
                outcome = ("won", booking.id)
            except SlotConflict:
                outcome = ("conflict", None)
            finally:
                session.close()
            with results_lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt, args=(f"cust-{n}",)) for n in range(attempts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(kind for kind, _ in results) == ["conflict"] * (attempts - 1) + ["won"]
        assert db.query(Booking).count() == 1

    def test_overlapping_but_different_starts_still_serialise(self, db, open_monday):
        starts = [MONDAY_9, MONDAY_9 + timedelta(minutes=30)]
        barrier = threading.Barrier(len(starts))
        won = []

        def attempt(start):
            session = SessionLocal()
            try:
                barrier.wait()
                ConflictGuard(session, RecordingPublisher(), clock=lambda: NOW).create_booking(
                    BUSINESS_ID, SERVICE_ID, "cust-1", start)
                won.append(start)
            except SlotConflict:
                pass
            finally:
                session.close()

        threads = [threading.Thread(target=attempt, args=(start,)) for start in starts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(won) == 1
        assert db.query(Booking).count() == 1

    @pytest.mark.parametrize("seed", [7, 21, 1234])
    def test_random_overlapping_requests_leave_no_overlap(self, db, open_monday, seed):
        rng = random.Random(seed)
        # 60 minute service inside 09:00-12:00, starts on a 15 minute step
        starts = [MONDAY_9 + timedelta(minutes=15 * rng.randint(0, 8)) for _ in range(10)]
        barrier = threading.Barrier(len(starts))
        errors = []

        def attempt(index, start):
            session = SessionLocal()
            try:
                barrier.wait()
                ConflictGuard(session, RecordingPublisher(), clock=lambda: NOW).create_booking(
                    BUSINESS_ID, SERVICE_ID, f"cust-{index}", start)
            except SlotConflict:
                pass
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=attempt, args=(n, start)) for n, start in enumerate(starts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        active = (
            db.query(Booking)
            .filter(Booking.status.in_([BookingStatus.PENDING_PAYMENT.value, BookingStatus.CONFIRMED.value]))
            .order_by(Booking.start_time)
            .all()
        )
        assert active
        for earlier, later in zip(active, active[1:]):
            assert earlier.end_time <= later.start_time
