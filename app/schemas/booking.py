# app/schemas/booking.py
from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.booking import BookingStatus

ActorRole = Literal["customer", "business", "admin", "system"]


class Actor(BaseModel):
    """Verified caller identity attached to state changes"""
    actor_id: str = Field(..., min_length=1)
    role: ActorRole
    business_id: Optional[str] = Field(None, description="Business the actor acts for (business role)")

    @classmethod
    def system(cls, name: str) -> "Actor":
        return cls(actor_id=f"system:{name}", role="system")


class CreateBookingRequest(BaseModel):
    business_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    customer_id: Optional[str] = Field(None, description="Defaults to the authenticated customer")
    start_time: datetime = Field(..., description="Requested start, ISO 8601 with offset")

    @field_validator("start_time")
    @classmethod
    def require_offset(cls, v: datetime) -> datetime:
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("start_time must include a timezone offset")
        return v


class UpdateBookingStatusRequest(BaseModel):
    status: BookingStatus
    reason: Optional[str] = Field(None, max_length=500, description="Cancellation reason")


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    business_id: str
    service_id: str
    customer_id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    payment_intent_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BookingListResponse(BaseModel):
    total: int
    skip: int
    limit: int
    bookings: List[BookingResponse]


class SlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime


class AvailableSlotsResponse(BaseModel):
    business_id: str
    service_id: str
    date: date
    timezone: str
    duration_minutes: int
    slots: List[SlotResponse]


class CalendarDay(BaseModel):
    date: date
    total_slots: int
    booked_slots: int
    available_slots: int


class BusinessCalendarResponse(BaseModel):
    business_id: str
    service_id: str
    timezone: str
    start_date: date
    end_date: date
    days: List[CalendarDay]
