# app/models/__init__.py
from .base import Base
from .availability import AvailabilityRule, BusinessCalendar, DayOfWeek
from .service import ServiceDefinition
from .booking import Booking, BookingStatus
from .booking_event import BookingEvent

__all__ = [
    "Base",
    "AvailabilityRule",
    "BusinessCalendar",
    "DayOfWeek",
    "ServiceDefinition",
    "Booking",
    "BookingStatus",
    "BookingEvent",
]
