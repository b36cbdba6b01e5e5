# ===== app/models/booking.py =====
import enum
import uuid

from sqlalchemy import Column, String, Text, Index, CheckConstraint

from app.models.base import Base, UTCDateTime, utcnow


class BookingStatus(str, enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


# Statuses that hold their time window
ACTIVE_STATUSES = (BookingStatus.PENDING_PAYMENT.value, BookingStatus.CONFIRMED.value)
TERMINAL_STATUSES = (BookingStatus.CANCELLED.value, BookingStatus.COMPLETED.value)


class Booking(Base):
    """A customer's reservation of one service interval. This table is the engine's system of record."""
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    business_id = Column(String(255), nullable=False)
    service_id = Column(String(255), nullable=False, index=True)
    customer_id = Column(String(255), nullable=False, index=True)

    # Absolute instants, UTC
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING_PAYMENT.value)
    payment_intent_id = Column(String(255), nullable=True, unique=True)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(255), nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
    confirmed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_bookings_interval"),
        Index("ix_bookings_business_window", "business_id", "start_time", "end_time"),
        Index("ix_bookings_status_end", "status", "end_time"),
    )

    def __repr__(self):
        return f"<Booking(id={self.id}, business_id={self.business_id}, status={self.status})>"

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "id": self.id,
            "business_id": self.business_id,
            "service_id": self.service_id,
            "customer_id": self.customer_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status,
            "payment_intent_id": self.payment_intent_id,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
