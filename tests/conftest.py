# tests/conftest.py
"""
Pytest configuration.

The suite runs against a throwaway SQLite file; environment is set BEFORE any
app import because settings and the engine are created at import time.
"""
import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="booking-engine-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["EVENT_PUBLISHER_BACKEND"] = "null"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["WEBHOOK_SECRET"] = ""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
from sqlalchemy.orm import Session

import app.models  # noqa: F401
from app.config.database import SessionLocal, engine
from app.models.base import Base
from app.models.booking import Booking, BookingStatus
from app.services.availability.availability_store import AvailabilityStore

# Sunday; the Monday after it is 2030-01-07
NOW = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)

BUSINESS_ID = "biz-1"
SERVICE_ID = "svc-haircut"


class RecordingPublisher:
    """Publisher double that keeps what it was given"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, subject: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.published.append((subject, payload))

    @property
    def subjects(self) -> List[str]:
        return [subject for subject, _ in self.published]


@pytest.fixture
def db() -> Session:
    """Fresh schema per test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def make_service(db: Session):
    """Factory writing a service definition straight into the replica"""

    def _make(
            service_id: str = SERVICE_ID,
            business_id: str = BUSINESS_ID,
            duration_minutes: int = 60,
            price: int = 5000,
            is_active: bool = True,
            requires_payment: Optional[bool] = None,
            min_advance_booking_hours: Optional[int] = 1,
            max_advance_booking_days: Optional[int] = 90,
    ):
        service = AvailabilityStore(db).upsert_service(service_id, {
            "business_id": business_id,
            "name": "Haircut",
            "description": None,
            "duration_minutes": duration_minutes,
            "price": price,
            "currency": "USD",
            "is_active": is_active,
            "requires_payment": price > 0 if requires_payment is None else requires_payment,
            "min_advance_booking_hours": min_advance_booking_hours,
            "max_advance_booking_days": max_advance_booking_days,
        })
        db.commit()
        return service

    return _make


@pytest.fixture
def make_rules(db: Session):
    """Factory replacing the weekly rules of a business: [(day, "HH:MM", "HH:MM"), ...]"""

    def _make(rules, business_id: str = BUSINESS_ID, tz: Optional[str] = "UTC", buffer_minutes: int = 0):
        AvailabilityStore(db).replace_rules(
            business_id,
            [
                {"day_of_week": day, "start_time": start, "end_time": end, "buffer_minutes": buffer_minutes}
                for day, start, end in rules
            ],
            timezone=tz,
        )
        db.commit()

    return _make


@pytest.fixture
def make_booking(db: Session):
    """Factory inserting a booking row without going through the guard"""

    def _make(start: datetime, end: datetime, status: BookingStatus = BookingStatus.CONFIRMED,
              customer_id: str = "cust-other", business_id: str = BUSINESS_ID,
              service_id: str = SERVICE_ID, payment_intent_id: Optional[str] = None) -> Booking:
        booking = Booking(
            business_id=business_id,
            service_id=service_id,
            customer_id=customer_id,
            start_time=start,
            end_time=end,
            status=status.value,
            payment_intent_id=payment_intent_id,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make
