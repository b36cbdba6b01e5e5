# ============================================================================
# app/services/booking/conflict_guard.py
# The only code path allowed to create a Booking row
# ============================================================================
"""
Booking Conflict Guard.

Slot lists handed to clients are advisory. Every booking request is
re-validated here against the replica rules and the live bookings of the
business, under a per-business lock and inside one transaction, so of two
racing requests for overlapping intervals exactly one commits.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.core.deadline import Deadline, check_deadline
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
from app.models.availability import DayOfWeek
from app.models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from app.models.booking_event import BookingEvent
from app.models.service import ServiceDefinition
from app.services.availability.availability_service import booking_policy, windows_from_rules
from app.services.availability.availability_store import AvailabilityStore
from app.services.availability.slot_generator import interval_within_windows
from app.services.booking.locks import apply_statement_deadline, business_lock, is_timeout_error
from app.services.events.event_publisher import (
    BOOKING_CONFIRMED,
    BOOKING_REQUESTED,
    EventPublisher,
    OutboxRelay,
    record_booking_event,
)
from app.utils.time_utils import utc_to_local

logger = logging.getLogger(__name__)
settings = get_settings()


def find_conflicting_bookings(
        db: Session,
        business_id: str,
        service_id: str,
        start_time: datetime,
        end_time: datetime,
        scope: Optional[str] = None,
) -> List[Booking]:
    """Active bookings overlapping [start_time, end_time) in the configured conflict scope"""
    query = db.query(Booking).filter(
        Booking.business_id == business_id,
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.start_time < end_time,
        Booking.end_time > start_time,
    )
    if (scope or settings.BOOKING_CONFLICT_SCOPE) == "service":
        query = query.filter(Booking.service_id == service_id)
    return query.all()


class ConflictGuard:
    """Authoritative check-then-insert for new bookings"""

    def __init__(
            self,
            db: Session,
            publisher: Optional[EventPublisher] = None,
            clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.store = AvailabilityStore(db)
        self.publisher = publisher
        self.clock = clock

    def create_booking(
            self,
            business_id: str,
            service_id: str,
            customer_id: str,
            start_time: datetime,
            deadline: Optional[Deadline] = None,
    ) -> Booking:
        """
        Create a booking for `start_time` or fail.

        Raises:
            ValidationError: missing ids or naive start_time
            InvalidTime: start in the past or outside the service's booking window
            ServiceNotFound / NotFound: unknown service, or service of another business
            ServiceUnavailable: service deactivated
            SlotConflict: interval outside availability or overlapping an active booking
            DeadlineExceeded: deadline passed, nothing was written
        """
        if not business_id or not service_id or not customer_id:
            raise ValidationError("business_id, service_id and customer_id are required")
        if start_time.tzinfo is None or start_time.utcoffset() is None:
            raise ValidationError("start_time must include a timezone offset")

        start_time = start_time.astimezone(timezone.utc)
        now = self.clock()
        if start_time < now:
            raise InvalidTime("Requested start time is in the past", {"start_time": start_time.isoformat()})

        logger.info(f"Attempting booking: business={business_id} service={service_id} "
                    f"customer={customer_id} start={start_time.isoformat()}")

        try:
            booking, events = self._create_locked(business_id, service_id, customer_id, start_time, now, deadline)
        except OperationalError as exc:
            self.db.rollback()
            if deadline is not None and (is_timeout_error(exc) or deadline.expired()):
                raise DeadlineExceeded("Booking request timed out, nothing was saved") from exc
            raise
        except BaseException:
            self.db.rollback()
            raise

        logger.info(f"Booking {booking.id} created with status {booking.status}")
        OutboxRelay(self.db, self.publisher).publish(events)
        return booking

    def _load_service(self, business_id: str, service_id: str) -> ServiceDefinition:
        service = self.store.active_service(service_id)
        if service is None:
            if self.store.get_service(service_id) is None:
                logger.warning(f"Booking requested for unknown service {service_id}")
                raise ServiceNotFound(f"Service {service_id} not found")
            raise ServiceUnavailable(f"Service {service_id} is not active")
        if service.business_id != business_id:
            logger.warning(f"Service {service_id} belongs to {service.business_id}, not {business_id}")
            raise NotFound(f"Service {service_id} not found for business {business_id}")
        return service

    def _create_locked(self, business_id, service_id, customer_id, start_time, now, deadline):
        service = self._load_service(business_id, service_id)

        policy = booking_policy(service)
        if not policy.allows(start_time, now):
            raise InvalidTime(
                "Requested start time is outside the booking window",
                {
                    "earliest": policy.earliest(now).isoformat(),
                    "latest": policy.latest(now).isoformat(),
                },
            )
        end_time = start_time + timedelta(minutes=service.duration_minutes)

        apply_statement_deadline(self.db, deadline)
        with business_lock(self.db, business_id, deadline):
            # Re-read under the lock: the replica may have changed since the slot list was built
            tz = self.store.business_timezone(business_id)
            local_day = DayOfWeek.from_date(utc_to_local(start_time, tz))
            windows = windows_from_rules(self.store.rules_for_day(business_id, local_day))
            if not interval_within_windows(start_time, end_time, windows, tz):
                logger.warning(f"Requested interval {start_time.isoformat()} is outside availability "
                               f"of business {business_id}")
                raise UpstreamDataStale(
                    "Requested time is outside the business's availability",
                    {"reason": "outside_availability"},
                )

            conflicts = find_conflicting_bookings(self.db, business_id, service_id, start_time, end_time)
            if conflicts:
                logger.warning(f"Booking conflict for business {business_id} at {start_time.isoformat()}: "
                               f"{len(conflicts)} overlapping")
                raise SlotConflict(
                    "Requested time slot is no longer available",
                    {"reason": "time_overlap", "conflicting_booking_ids": [b.id for b in conflicts]},
                )

            booking = Booking(
                business_id=business_id,
                service_id=service_id,
                customer_id=customer_id,
                start_time=start_time,
                end_time=end_time,
            )
            if service.requires_payment:
                booking.status = BookingStatus.PENDING_PAYMENT.value
            else:
                booking.status = BookingStatus.CONFIRMED.value
                booking.confirmed_at = now
            self.db.add(booking)
            self.db.flush()

            events: List[BookingEvent] = [
                record_booking_event(
                    self.db, booking, BOOKING_REQUESTED, {"requiresPayment": service.requires_payment}
                )
            ]
            if booking.status == BookingStatus.CONFIRMED.value:
                events.append(record_booking_event(self.db, booking, BOOKING_CONFIRMED))

            check_deadline(deadline, "booking commit")
            self.db.commit()
        return booking, events
