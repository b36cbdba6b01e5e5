# app/services/events/event_publisher.py
"""
Event egress: booking lifecycle events.

Events are written to the booking_events outbox inside the transaction that
changes the booking, and handed to a publisher only after that transaction has
committed. Anything that fails to publish stays pending and is picked up by
the relay task.
"""
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.config.redis import RedisKeys, get_sync_redis
from app.config.settings import get_settings
from app.models.booking import Booking
from app.models.booking_event import BookingEvent

logger = logging.getLogger(__name__)
settings = get_settings()

BOOKING_REQUESTED = "booking.requested"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_COMPLETED = "booking.completed"

VALID_EVENT_TYPES = [BOOKING_REQUESTED, BOOKING_CONFIRMED, BOOKING_CANCELLED, BOOKING_COMPLETED]

PENDING = "pending"
PUBLISHING = "publishing"
PUBLISHED = "published"
FAILED = "failed"


class EventPublisher(Protocol):
    def publish(self, subject: str, payload: Dict[str, Any]) -> None:
        ...


class RedisEventPublisher:
    """Publishes each event on a Redis pub/sub channel named after its type"""

    def __init__(self, client=None, prefix: Optional[str] = None):
        self.client = client if client is not None else get_sync_redis()
        self.prefix = settings.EVENT_CHANNEL_PREFIX if prefix is None else prefix

    def publish(self, subject: str, payload: Dict[str, Any]) -> None:
        channel = RedisKeys.BOOKING_EVENT_CHANNEL.format(prefix=self.prefix, event_type=subject)
        receivers = self.client.publish(channel, json.dumps(payload))
        logger.debug(f"Published {subject} to {channel} ({receivers} receivers)")


class NullEventPublisher:
    """Development publisher when no broker is available"""

    def publish(self, subject: str, payload: Dict[str, Any]) -> None:
        logger.debug(f"Event publishing skipped (no broker): {subject}")


_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    """Process-wide publisher selected by EVENT_PUBLISHER_BACKEND"""
    global _publisher
    if _publisher is None:
        if settings.EVENT_PUBLISHER_BACKEND == "redis":
            _publisher = RedisEventPublisher()
        else:
            _publisher = NullEventPublisher()
    return _publisher


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def booking_event_data(booking: Booking, event_type: str) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "bookingId": booking.id,
        "customerId": booking.customer_id,
        "serviceId": booking.service_id,
        "businessId": booking.business_id,
        "startTime": _iso(booking.start_time),
    }
    if event_type == BOOKING_CANCELLED:
        data["cancelledBy"] = booking.cancelled_by
        if booking.cancellation_reason:
            data["cancellationReason"] = booking.cancellation_reason
        return data

    data["endTime"] = _iso(booking.end_time)
    if event_type == BOOKING_REQUESTED:
        data["status"] = booking.status
    return data


def record_booking_event(
        db: Session,
        booking: Booking,
        event_type: str,
        extra: Optional[Dict[str, Any]] = None,
) -> BookingEvent:
    """Add an outbox row for `booking` to the current transaction (caller commits)"""
    if event_type not in VALID_EVENT_TYPES:
        raise ValueError(f"Invalid event type: {event_type}")

    data = booking_event_data(booking, event_type)
    if extra:
        data.update(extra)

    event_id = str(uuid.uuid4())
    envelope = {
        "id": event_id,
        "type": event_type,
        "occurredAt": _iso(datetime.now(timezone.utc)),
        "data": data,
    }
    event = BookingEvent(
        id=event_id,
        booking_id=booking.id,
        business_id=booking.business_id,
        event_type=event_type,
        payload=envelope,
        status=PENDING,
        attempts=0,
    )
    db.add(event)
    return event


class OutboxRelay:
    """
    Moves committed outbox rows to the publisher.

    A row is claimed (pending -> publishing, committed) before it is handed to
    the publisher, so the post-commit path and any number of relay workers
    never deliver the same row twice. A claim left behind by a worker that
    died mid-publish becomes claimable again after OUTBOX_CLAIM_TIMEOUT_SECONDS.
    """

    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher if publisher is not None else get_event_publisher()

    def publish(self, events: Iterable[BookingEvent]) -> int:
        """Publish already-committed events. Returns how many went out."""
        return self._deliver(self._claim([event.id for event in events]))

    def publish_pending(self, limit: Optional[int] = None) -> int:
        """Retry everything still pending, oldest first"""
        query = (
            self.db.query(BookingEvent.id)
            .filter(self._claimable(datetime.now(timezone.utc)))
            .order_by(BookingEvent.created_at.asc())
            .limit(limit or settings.OUTBOX_BATCH_SIZE)
        )
        if self.db.get_bind().dialect.name == "postgresql":
            query = query.with_for_update(skip_locked=True)

        event_ids = [event_id for (event_id,) in query.all()]
        if not event_ids:
            self.db.commit()
            return 0
        return self._deliver(self._claim(event_ids))

    @staticmethod
    def _claimable(now: datetime):
        stale_before = now - timedelta(seconds=settings.OUTBOX_CLAIM_TIMEOUT_SECONDS)
        return or_(
            BookingEvent.status == PENDING,
            and_(BookingEvent.status == PUBLISHING, BookingEvent.last_attempt_at < stale_before),
        )

    def _claim(self, event_ids: List[str]) -> List[BookingEvent]:
        """Compare-and-set each row to publishing and commit. Returns the rows this worker now owns."""
        now = datetime.now(timezone.utc)
        claimed: List[str] = []
        try:
            for event_id in event_ids:
                updated = (
                    self.db.query(BookingEvent)
                    .filter(BookingEvent.id == event_id, self._claimable(now))
                    .update(
                        {
                            "status": PUBLISHING,
                            "attempts": BookingEvent.attempts + 1,
                            "last_attempt_at": now,
                        },
                        synchronize_session=False,
                    )
                )
                if updated:
                    claimed.append(event_id)
                else:
                    logger.debug(f"Event {event_id} already claimed or delivered")
            self.db.commit()
        except BaseException:
            self.db.rollback()
            raise

        events = []
        for event_id in claimed:
            event = self.db.get(BookingEvent, event_id)
            self.db.refresh(event)
            events.append(event)
        return events

    def _deliver(self, events: List[BookingEvent]) -> int:
        published = 0
        for event in events:
            try:
                self.publisher.publish(event.event_type, event.payload)
            except Exception as e:
                event.last_error = str(e)[:1000]
                if event.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
                    event.status = FAILED
                    logger.error(f"Giving up on {event.event_type} {event.id} after {event.attempts} attempts: {e}")
                else:
                    event.status = PENDING
                    logger.warning(f"Publishing {event.event_type} {event.id} failed (attempt {event.attempts}): {e}")
            else:
                event.status = PUBLISHED
                event.published_at = datetime.now(timezone.utc)
                event.last_error = None
                published += 1
                logger.info(f"Published {event.event_type} for booking {event.booking_id}")
            self.db.commit()
        return published
