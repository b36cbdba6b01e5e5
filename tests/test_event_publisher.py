"""Outbox recording, post-commit publishing and relay retries."""
import json
from datetime import datetime, timedelta, timezone

import pytest

from app.config.database import SessionLocal
from app.models.booking import BookingStatus
from app.models.booking_event import BookingEvent
from app.services.events import event_publisher as event_publisher_module
from app.services.events.event_publisher import (
    BOOKING_CONFIRMED,
    BOOKING_REQUESTED,
    OutboxRelay,
    RedisEventPublisher,
    record_booking_event,
)

from tests.conftest import RecordingPublisher

START = datetime(2030, 1, 7, 9, tzinfo=timezone.utc)


class FakeRedis:
    def __init__(self):
        self.messages = []

    def publish(self, channel, message):
        self.messages.append((channel, message))
        return 1


@pytest.fixture
def booking(make_booking):
    return make_booking(START, START + timedelta(hours=1), status=BookingStatus.CONFIRMED, customer_id="cust-1")


@pytest.fixture
def pending_event(db, booking):
    event = record_booking_event(db, booking, BOOKING_CONFIRMED)
    db.commit()
    return event


class TestRecordBookingEvent:
    def test_envelope_shape(self, pending_event, booking):
        envelope = pending_event.payload

        assert set(envelope) == {"id", "type", "occurredAt", "data"}
        assert envelope["id"] == pending_event.id
        assert envelope["type"] == BOOKING_CONFIRMED
        assert envelope["data"] == {
            "bookingId": booking.id,
            "customerId": "cust-1",
            "serviceId": booking.service_id,
            "businessId": booking.business_id,
            "startTime": "2030-01-07T09:00:00Z",
            "endTime": "2030-01-07T10:00:00Z",
        }
        assert pending_event.status == "pending"

    def test_created_event_carries_status_and_extra(self, db, booking):
        event = record_booking_event(db, booking, BOOKING_REQUESTED, {"requiresPayment": False})

        assert event.payload["data"]["status"] == BookingStatus.CONFIRMED.value
        assert event.payload["data"]["requiresPayment"] is False

    def test_unknown_event_type_is_rejected(self, db, booking):
        with pytest.raises(ValueError):
            record_booking_event(db, booking, "booking.exploded")


class TestOutboxRelay:
    def test_publish_marks_event_published(self, db, pending_event):
        publisher = RecordingPublisher()

        assert OutboxRelay(db, publisher).publish([pending_event]) == 1

        stored = db.get(BookingEvent, pending_event.id)
        assert stored.status == "published"
        assert stored.published_at is not None
        assert stored.attempts == 1
        assert publisher.published == [(BOOKING_CONFIRMED, pending_event.payload)]

    def test_failure_keeps_event_pending(self, db, pending_event):
        assert OutboxRelay(db, RecordingPublisher(fail=True)).publish([pending_event]) == 0

        stored = db.get(BookingEvent, pending_event.id)
        assert stored.status == "pending"
        assert stored.attempts == 1
        assert "broker unavailable" in stored.last_error

    def test_relay_retries_pending_events(self, db, pending_event):
        OutboxRelay(db, RecordingPublisher(fail=True)).publish([pending_event])
        publisher = RecordingPublisher()

        assert OutboxRelay(db, publisher).publish_pending() == 1
        assert publisher.subjects == [BOOKING_CONFIRMED]
        assert OutboxRelay(db, publisher).publish_pending() == 0

    def test_event_fails_after_max_attempts(self, db, pending_event, monkeypatch):
        monkeypatch.setattr(event_publisher_module.settings, "OUTBOX_MAX_ATTEMPTS", 2)
        failing = OutboxRelay(db, RecordingPublisher(fail=True))

        failing.publish_pending()
        failing.publish_pending()

        assert db.get(BookingEvent, pending_event.id).status == "failed"
        assert failing.publish_pending() == 0

    def test_published_event_is_not_sent_twice(self, db, pending_event):
        publisher = RecordingPublisher()
        relay = OutboxRelay(db, publisher)

        relay.publish([pending_event])
        relay.publish([pending_event])

        assert len(publisher.published) == 1

    def test_relay_skips_event_claimed_by_post_commit_publish(self, db, pending_event):
        relay_published = []

        class RelayDuringPublish(RecordingPublisher):
            def publish(self, subject, payload):
                other_db = SessionLocal()
                try:
                    relay_publisher = RecordingPublisher()
                    OutboxRelay(other_db, relay_publisher).publish_pending()
                    relay_published.extend(relay_publisher.subjects)
                finally:
                    other_db.close()
                super().publish(subject, payload)

        publisher = RelayDuringPublish()

        assert OutboxRelay(db, publisher).publish([pending_event]) == 1
        assert publisher.subjects == [BOOKING_CONFIRMED]
        assert relay_published == []
        assert db.get(BookingEvent, pending_event.id).status == "published"

    def test_post_commit_publish_skips_event_claimed_by_relay(self, db, pending_event):
        OutboxRelay(db, RecordingPublisher()).publish_pending()
        publisher = RecordingPublisher()

        assert OutboxRelay(db, publisher).publish([pending_event]) == 0
        assert publisher.published == []

    def test_abandoned_claim_is_retried_after_timeout(self, db, pending_event):
        pending_event.status = "publishing"
        pending_event.attempts = 1
        pending_event.last_attempt_at = datetime.now(timezone.utc) - timedelta(hours=1)
        db.commit()
        publisher = RecordingPublisher()

        assert OutboxRelay(db, publisher).publish_pending() == 1
        stored = db.get(BookingEvent, pending_event.id)
        assert stored.status == "published"
        assert stored.attempts == 2

    def test_fresh_claim_is_left_alone(self, db, pending_event):
        pending_event.status = "publishing"
        pending_event.last_attempt_at = datetime.now(timezone.utc)
        db.commit()
        publisher = RecordingPublisher()

        assert OutboxRelay(db, publisher).publish_pending() == 0
        assert publisher.published == []


class TestRedisEventPublisher:
    def test_publishes_json_on_prefixed_channel(self):
        client = FakeRedis()

        RedisEventPublisher(client=client, prefix="bookings:").publish(BOOKING_CONFIRMED, {"id": "evt-1"})

        channel, message = client.messages[0]
        assert channel == "bookings:booking.confirmed"
        assert json.loads(message) == {"id": "evt-1"}
