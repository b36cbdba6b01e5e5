# app/schemas/events.py
"""Payloads of consumed upstream events (camelCase on the wire)"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.availability import DayOfWeek
from app.utils.time_utils import get_zone, parse_hhmm


class _EventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    occurred_at: Optional[datetime] = Field(None, alias="occurredAt", description="When upstream emitted the change")

    @field_validator("occurred_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc) if v is not None else v


class ServiceDetails(BaseModel):
    """serviceDetails block of business.service.created / updated"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    duration_minutes: int = Field(..., alias="durationMinutes", gt=0, le=24 * 60)
    price: Decimal = Field(..., ge=0, description="Major currency units, e.g. 49.99")
    price_cents: Optional[int] = Field(None, alias="priceCents", ge=0, description="Minor units, wins over price")
    currency: str = Field(..., min_length=1, max_length=10)
    is_active: Optional[bool] = Field(None, alias="isActive")
    requires_payment: Optional[bool] = Field(None, alias="requiresPayment")
    min_advance_booking_hours: Optional[int] = Field(None, alias="minAdvanceBookingHours", ge=0)
    max_advance_booking_days: Optional[int] = Field(None, alias="maxAdvanceBookingDays", ge=0)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    def price_minor_units(self) -> int:
        if self.price_cents is not None:
            return self.price_cents
        return int((self.price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class ServiceUpserted(_EventModel):
    """business.service.created / business.service.updated"""
    business_id: str = Field(..., alias="businessId", min_length=1)
    service_id: str = Field(..., alias="serviceId", min_length=1)
    service_details: ServiceDetails = Field(..., alias="serviceDetails")

    def to_store_values(self) -> Dict[str, Any]:
        details = self.service_details
        price = details.price_minor_units()
        return {
            "business_id": self.business_id,
            "name": details.name,
            "description": details.description,
            "duration_minutes": details.duration_minutes,
            "price": price,
            "currency": details.currency,
            "is_active": True if details.is_active is None else details.is_active,
            # Free services are confirmed on creation unless upstream says otherwise
            "requires_payment": price > 0 if details.requires_payment is None else details.requires_payment,
            "min_advance_booking_hours": details.min_advance_booking_hours,
            "max_advance_booking_days": details.max_advance_booking_days,
        }


class AvailabilityRuleIn(BaseModel):
    """One entry of rules[]; validated individually so one bad rule does not sink the event"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    day_of_week: DayOfWeek = Field(..., alias="dayOfWeek")
    start_time: str = Field(..., alias="startTime")
    end_time: str = Field(..., alias="endTime")
    buffer_minutes: int = Field(0, alias="bufferMinutes", ge=0, le=24 * 60)

    @field_validator("day_of_week", mode="before")
    @classmethod
    def parse_day(cls, v: Any) -> DayOfWeek:
        return DayOfWeek.parse(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        return parse_hhmm(v).strftime("%H:%M")

    @model_validator(mode="after")
    def start_before_end(self) -> "AvailabilityRuleIn":
        if self.start_time >= self.end_time:
            raise ValueError(f"startTime ({self.start_time}) must be before endTime ({self.end_time})")
        return self

    def to_store_values(self) -> Dict[str, Any]:
        return {
            "day_of_week": self.day_of_week.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "buffer_minutes": self.buffer_minutes,
        }


class AvailabilityReplaced(_EventModel):
    """business.availability.updated"""
    business_id: str = Field(..., alias="businessId", min_length=1)
    rules: List[Dict[str, Any]] = Field(..., description="Full weekly rule set, may be empty")
    timezone: Optional[str] = Field(None, description="IANA timezone of the business")

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v:
            get_zone(v)
        return v or None


class PaymentSignal(_EventModel):
    """payment.succeeded / payment.failed"""
    payment_intent_id: str = Field(..., alias="paymentIntentId", min_length=1)
    booking_id: Optional[str] = Field(None, alias="bookingId")
    reason: Optional[str] = Field(None, max_length=500)
