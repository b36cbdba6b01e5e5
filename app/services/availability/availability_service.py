# ===== app/services/availability/availability_service.py =====
from typing import Dict, List, Optional, Sequence, Any
from datetime import date, datetime, timedelta, timezone
from sqlalchemy.orm import Session
from app.config.settings import get_settings
from app.core.exceptions import NotFound, ServiceNotFound, ServiceUnavailable, ValidationError
from app.models.availability import AvailabilityRule, DayOfWeek
from app.models.booking import ACTIVE_STATUSES, Booking
from app.models.service import ServiceDefinition
from app.services.availability.availability_store import AvailabilityStore
from app.services.availability.slot_generator import (
    BookingWindowPolicy,
    Slot,
    Window,
    generate_slots,
)
from app.utils.time_utils import local_day_bounds, parse_hhmm
import logging

logger = logging.getLogger(__name__)
settings = get_settings()


def booking_policy(service: ServiceDefinition) -> BookingWindowPolicy:
    """Service-level booking window, falling back to configured defaults"""
    return BookingWindowPolicy(
        min_advance_hours=(
            service.min_advance_booking_hours
            if service.min_advance_booking_hours is not None
            else settings.DEFAULT_MIN_ADVANCE_BOOKING_HOURS
        ),
        max_advance_days=(
            service.max_advance_booking_days
            if service.max_advance_booking_days is not None
            else settings.DEFAULT_MAX_ADVANCE_BOOKING_DAYS
        ),
    )


def windows_from_rules(rules: Sequence[AvailabilityRule]) -> List[Window]:
    """Parse replica rules into windows, skipping (and logging) any unusable rule"""
    windows = []
    for rule in rules:
        try:
            start = parse_hhmm(rule.start_time)
            end = parse_hhmm(rule.end_time)
        except ValueError as e:
            logger.error(f"Skipping availability rule {rule.id} of business {rule.business_id}: {e}")
            continue
        if start >= end:
            logger.error(f"Skipping availability rule {rule.id} of business {rule.business_id}: "
                         f"start {rule.start_time} is not before end {rule.end_time}")
            continue
        windows.append(Window(start=start, end=end, buffer_minutes=max(0, rule.buffer_minutes or 0)))
    return windows


class AvailabilityService:
    """Read path: turns replicated rules and live bookings into advisory slot lists"""

    @staticmethod
    def _resolve_service(store: AvailabilityStore, business_id: str, service_id: str) -> ServiceDefinition:
        service = store.active_service(service_id)
        if service is None:
            # Tell a deactivated service apart from one never replicated
            if store.get_service(service_id) is None:
                logger.warning(f"Service definition not found: {service_id}")
                raise ServiceNotFound(f"Service {service_id} not found")
            logger.warning(f"Service definition is not active: {service_id}")
            raise ServiceUnavailable(f"Service {service_id} is not active")
        if service.business_id != business_id:
            logger.error(f"Service {service_id} does not belong to business {business_id}")
            raise NotFound(f"Service {service_id} not found for business {business_id}")
        return service

    @staticmethod
    def _busy_intervals(db: Session, business_id: str, service_id: str, window_start: datetime,
                        window_end: datetime) -> List[tuple]:
        query = db.query(Booking.start_time, Booking.end_time).filter(
            Booking.business_id == business_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_time < window_end,
            Booking.end_time > window_start,
        )
        if settings.BOOKING_CONFLICT_SCOPE == "service":
            query = query.filter(Booking.service_id == service_id)
        return [(start, end) for start, end in query.all()]

    @staticmethod
    def get_available_slots(
            db: Session,
            business_id: str,
            service_id: str,
            target_date: date,
            now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """GetAvailableSlots: free slots of a service on one business-local date"""
        store = AvailabilityStore(db)
        service = AvailabilityService._resolve_service(store, business_id, service_id)
        tz = store.business_timezone(business_id)
        now = now or datetime.now(timezone.utc)

        slots = AvailabilityService._slots_for_day(db, store, service, target_date, tz, now)

        logger.info(f"Generated {len(slots)} slots for business {business_id}, "
                    f"service {service_id} on {target_date.isoformat()}")
        return {
            "business_id": business_id,
            "service_id": service_id,
            "date": target_date.isoformat(),
            "timezone": tz.key,
            "duration_minutes": service.duration_minutes,
            "slots": [slot.to_dict() for slot in slots],
        }

    @staticmethod
    def _slots_for_day(db, store, service, target_date, tz, now, busy=None) -> List[Slot]:
        day = DayOfWeek.from_date(target_date)
        windows = windows_from_rules(store.rules_for_day(service.business_id, day))
        if not windows:
            return []
        if busy is None:
            day_start, day_end = local_day_bounds(target_date, tz)
            busy = AvailabilityService._busy_intervals(db, service.business_id, service.id, day_start, day_end)
        return generate_slots(
            windows=windows,
            duration_minutes=service.duration_minutes,
            target_date=target_date,
            tz=tz,
            busy=busy,
            now=now,
            policy=booking_policy(service),
        )

    @staticmethod
    def get_business_calendar(
            db: Session,
            business_id: str,
            service_id: str,
            start_date: date,
            end_date: date,
            now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Daily summary of a service's appointment grid over a date range.

        total_slots counts the grid ignoring bookings (booking window still
        applies), booked_slots the grid positions taken by active bookings.
        """
        if start_date > end_date:
            raise ValidationError("start_date cannot be after end_date")
        days = (end_date - start_date).days + 1
        if days > settings.CALENDAR_MAX_DAYS:
            raise ValidationError(f"Date range cannot exceed {settings.CALENDAR_MAX_DAYS} days")

        store = AvailabilityStore(db)
        service = AvailabilityService._resolve_service(store, business_id, service_id)
        tz = store.business_timezone(business_id)
        now = now or datetime.now(timezone.utc)

        range_start, _ = local_day_bounds(start_date, tz)
        _, range_end = local_day_bounds(end_date, tz)
        busy = AvailabilityService._busy_intervals(db, business_id, service_id, range_start, range_end)

        summaries = []
        for offset in range(days):
            current = start_date + timedelta(days=offset)
            grid = AvailabilityService._slots_for_day(db, store, service, current, tz, now, busy=[])
            booked = sum(1 for slot in grid if any(slot.overlaps(b_start, b_end) for b_start, b_end in busy))
            summaries.append({
                "date": current.isoformat(),
                "total_slots": len(grid),
                "booked_slots": booked,
                "available_slots": len(grid) - booked,
            })

        logger.info(f"Business calendar generated for {business_id}, {len(summaries)} days")
        return {
            "business_id": business_id,
            "service_id": service_id,
            "timezone": tz.key,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "days": summaries,
        }
