# app/models/service.py
"""
Service Definition Model - replicated service metadata
Local copy of what slot generation and booking need from the business service.
Upserted by id on every catalog event, never deleted (deactivated instead).
"""
from sqlalchemy import Column, String, Integer, BigInteger, Boolean, Text, CheckConstraint

from app.models.base import Base, UTCDateTime, utcnow


class ServiceDefinition(Base):
    __tablename__ = "service_definitions"

    # Shared primary key with the upstream catalog
    id = Column(String(255), primary_key=True)
    business_id = Column(String(255), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    duration_minutes = Column(Integer, nullable=False)
    price = Column(BigInteger, nullable=False)  # Minor units (cents)
    currency = Column(String(10), nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    requires_payment = Column(Boolean, nullable=False, default=True)

    # Booking window policy (None falls back to settings defaults)
    min_advance_booking_hours = Column(Integer, nullable=True)
    max_advance_booking_days = Column(Integer, nullable=True)

    # occurredAt of the last applied catalog event
    source_updated_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_service_definitions_duration_positive"),
        CheckConstraint("price >= 0", name="ck_service_definitions_price_non_negative"),
    )

    def __repr__(self):
        return f"<ServiceDefinition(id={self.id}, name={self.name}, business_id={self.business_id})>"

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
            "price": self.price,
            "currency": self.currency,
            "is_active": self.is_active,
            "requires_payment": self.requires_payment,
            "min_advance_booking_hours": self.min_advance_booking_hours,
            "max_advance_booking_days": self.max_advance_booking_days,
        }
