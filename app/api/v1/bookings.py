# app/api/v1/bookings.py
"""Booking endpoints - thin HTTP layer over the conflict guard and state machine"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Path, status as http_status
from sqlalchemy.orm import Session

from app.api.dependencies import get_current_actor, get_request_deadline
from app.config.database import get_db
from app.core.deadline import Deadline
from app.core.exceptions import Forbidden
from app.models.booking import BookingStatus
from app.schemas.booking import (
    Actor,
    BookingListResponse,
    BookingResponse,
    CreateBookingRequest,
    UpdateBookingStatusRequest,
)
from app.services.booking.booking_query_service import BookingQueryService
from app.services.booking.conflict_guard import ConflictGuard
from app.services.booking.state_machine import BookingStateMachine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings")


@router.post("", response_model=BookingResponse, status_code=http_status.HTTP_201_CREATED)
def create_booking(
        request: CreateBookingRequest,
        actor: Actor = Depends(get_current_actor),
        deadline: Deadline = Depends(get_request_deadline),
        db: Session = Depends(get_db)
):
    """
    Book a service at `start_time`.

    409 when the interval is already taken or no longer inside the business's
    availability: fetch fresh slots and try again.
    """
    customer_id = request.customer_id
    if actor.role == "customer":
        if customer_id and customer_id != actor.actor_id:
            raise Forbidden("Customers can only book for themselves")
        customer_id = actor.actor_id
    elif actor.role == "business" and actor.business_id != request.business_id:
        raise Forbidden("Businesses can only book their own services")

    booking = ConflictGuard(db).create_booking(
        business_id=request.business_id,
        service_id=request.service_id,
        customer_id=customer_id,
        start_time=request.start_time,
        deadline=deadline,
    )
    return booking


@router.get("", response_model=BookingListResponse)
def list_bookings(
        customer_id: Optional[str] = Query(None, description="Bookings of this customer"),
        business_id: Optional[str] = Query(None, description="Bookings of this business"),
        status: Optional[BookingStatus] = Query(None, description="Filter by status"),
        skip: int = Query(0, ge=0, description="Number of records to skip"),
        limit: int = Query(50, ge=1, le=100, description="Number of records to return"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    return BookingQueryService.list_bookings(
        db=db,
        actor=actor,
        customer_id=customer_id,
        business_id=business_id,
        status=status,
        skip=skip,
        limit=limit,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
        booking_id: str = Path(..., description="The booking ID"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    return BookingQueryService.get_booking(db, booking_id, actor)


@router.put("/{booking_id}/status", response_model=BookingResponse)
def update_booking_status(
        request: UpdateBookingStatusRequest,
        booking_id: str = Path(..., description="The booking ID"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    """Cancel (customer or business) or confirm (business) a booking."""
    booking = BookingStateMachine(db).update_status(
        booking_id=booking_id,
        new_status=request.status,
        actor=actor,
        reason=request.reason,
    )
    return booking
