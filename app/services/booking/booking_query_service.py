# ============================================================================
# app/services/booking/booking_query_service.py
# Read-only booking lookups - no FastAPI dependencies
# ============================================================================
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any

from app.core.exceptions import BookingNotFound, Forbidden, ValidationError
from app.models.booking import Booking, BookingStatus
from app.schemas.booking import Actor
from app.services.booking.state_machine import authorize_actor


class BookingQueryService:
    """Booking reads scoped to what the caller may see."""

    @staticmethod
    def get_booking(db: Session, booking_id: str, actor: Actor) -> Dict[str, Any]:
        booking = db.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        authorize_actor(booking, actor)
        return booking.to_dict()

    @staticmethod
    def list_bookings(
            db: Session,
            actor: Actor,
            customer_id: Optional[str] = None,
            business_id: Optional[str] = None,
            status: Optional[BookingStatus] = None,
            skip: int = 0,
            limit: int = 50
    ) -> Dict[str, Any]:
        """Paginated bookings of one customer or one business, soonest first."""
        # Customers and businesses only ever see their own bookings
        if actor.role == "customer":
            if customer_id and customer_id != actor.actor_id:
                raise Forbidden("Customers can only list their own bookings")
            customer_id = actor.actor_id
        elif actor.role == "business":
            if business_id and business_id != actor.business_id:
                raise Forbidden("Businesses can only list their own bookings")
            business_id = actor.business_id

        if not customer_id and not business_id:
            raise ValidationError("customer_id or business_id is required")

        query = db.query(Booking)
        if customer_id:
            query = query.filter(Booking.customer_id == customer_id)
        if business_id:
            query = query.filter(Booking.business_id == business_id)
        if status:
            query = query.filter(Booking.status == status.value)

        total = query.count()
        bookings = query.order_by(Booking.start_time.asc()).offset(skip).limit(limit).all()

        return {
            "total": total,
            "skip": skip,
            "limit": limit,
            "bookings": [booking.to_dict() for booking in bookings],
        }
