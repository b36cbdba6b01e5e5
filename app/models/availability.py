# ===== app/models/availability.py =====
"""
Replicated availability data.

Rows here are a read replica of the business service's weekly schedule. They
are only ever written by the event ingest layer, always as a full replace per
business, and are never the source of truth.
"""
import enum

from sqlalchemy import Column, String, Integer, UniqueConstraint, Index

from app.models.base import Base, UTCDateTime, utcnow


class DayOfWeek(str, enum.Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def from_date(cls, value) -> "DayOfWeek":
        """Day of week of a date (or local datetime), Monday == date.weekday() 0"""
        return _WEEKDAY_ORDER[value.weekday()]

    @classmethod
    def parse(cls, raw: str) -> "DayOfWeek":
        """Accept "MONDAY", "monday", "Mon"."""
        if not isinstance(raw, str):
            raise ValueError(f"dayOfWeek must be a string, got {raw!r}")
        key = raw.strip().upper()
        for day in cls:
            if day.value == key or day.value[:3] == key:
                return day
        raise ValueError(f"Unknown dayOfWeek: {raw!r}")


_WEEKDAY_ORDER = [
    DayOfWeek.MONDAY,
    DayOfWeek.TUESDAY,
    DayOfWeek.WEDNESDAY,
    DayOfWeek.THURSDAY,
    DayOfWeek.FRIDAY,
    DayOfWeek.SATURDAY,
    DayOfWeek.SUNDAY,
]


class AvailabilityRule(Base):
    """One weekly open window of a business, in the business's local wall-clock time"""
    __tablename__ = "availability_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(String(255), nullable=False)

    day_of_week = Column(String(10), nullable=False)  # DayOfWeek value
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    end_time = Column(String(5), nullable=False)  # "HH:MM"
    buffer_minutes = Column(Integer, nullable=False, default=0)  # Gap after each slot

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "business_id", "day_of_week", "start_time", "end_time",
            name="uq_availability_rules_window",
        ),
        Index("ix_availability_rules_business_day", "business_id", "day_of_week"),
    )

    def __repr__(self):
        return (
            f"<AvailabilityRule(business_id={self.business_id}, day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time})>"
        )


class BusinessCalendar(Base):
    """Replicated per-business scheduling metadata: timezone and last applied schedule event"""
    __tablename__ = "business_calendars"

    business_id = Column(String(255), primary_key=True)
    timezone = Column(String(64), nullable=True)  # IANA name, e.g. "Europe/Berlin"
    availability_occurred_at = Column(UTCDateTime, nullable=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
