# app/api/v1/availability.py
"""Read path endpoints: advisory slot lists and the business calendar summary"""
from datetime import date

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.orm import Session

from app.api.dependencies import get_current_actor
from app.config.database import get_db
from app.core.exceptions import Forbidden
from app.schemas.booking import Actor, AvailableSlotsResponse, BusinessCalendarResponse
from app.services.availability.availability_service import AvailabilityService

router = APIRouter()


@router.get("/services/{service_id}/slots", response_model=AvailableSlotsResponse)
def get_available_slots(
        service_id: str = Path(..., description="Service to book"),
        business_id: str = Query(..., description="Business offering the service"),
        date: date = Query(..., description="Business-local date (YYYY-MM-DD)"),
        db: Session = Depends(get_db)
):
    """
    Free slots of a service on one day.

    The list is advisory: a slot shown here can still be taken before the
    booking request arrives.
    """
    return AvailabilityService.get_available_slots(
        db=db,
        business_id=business_id,
        service_id=service_id,
        target_date=date,
    )


@router.get("/businesses/{business_id}/calendar", response_model=BusinessCalendarResponse)
def get_business_calendar(
        business_id: str = Path(..., description="The business ID"),
        service_id: str = Query(..., description="Service whose grid is summarised"),
        start_date: date = Query(..., description="First day (inclusive)"),
        end_date: date = Query(..., description="Last day (inclusive)"),
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db)
):
    """Per-day total/booked/available slot counts. Business staff and admins only."""
    if actor.role not in ("admin", "system") and not (
            actor.role == "business" and actor.business_id == business_id
    ):
        raise Forbidden("Only the business itself can view its calendar")

    return AvailabilityService.get_business_calendar(
        db=db,
        business_id=business_id,
        service_id=service_id,
        start_date=start_date,
        end_date=end_date,
    )
