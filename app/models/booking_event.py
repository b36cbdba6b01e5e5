# ===== app/models/booking_event.py =====
import uuid

from sqlalchemy import Column, String, Integer, Text, Index

from app.models.base import Base, JSONType, UTCDateTime, utcnow


class BookingEvent(Base):
    """Outbox of booking lifecycle events, written in the same transaction as the booking change"""
    __tablename__ = "booking_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), nullable=False, index=True)
    business_id = Column(String(255), nullable=False)

    # Event details
    event_type = Column(String(50), nullable=False)  # "booking.confirmed", "booking.cancelled"
    payload = Column(JSONType, nullable=False)  # The full envelope that gets published

    # Delivery tracking
    status = Column(String(20), nullable=False, default="pending")  # "pending", "publishing", "published", "failed"
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    last_attempt_at = Column(UTCDateTime, nullable=True)
    published_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_booking_events_status_created", "status", "created_at"),
    )
