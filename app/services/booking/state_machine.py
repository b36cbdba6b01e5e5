# ============================================================================
# app/services/booking/state_machine.py
# ============================================================================
"""
Booking lifecycle.

    PENDING_PAYMENT -> CONFIRMED -> COMPLETED
    PENDING_PAYMENT | CONFIRMED -> CANCELLED

Every transition is a compare-and-set UPDATE on the current status, commits
together with its outbox event, and is published only after that commit.
CANCELLED and COMPLETED are terminal.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import BookingNotFound, Forbidden, InvalidTransition, ValidationError
from app.models.booking import ACTIVE_STATUSES, TERMINAL_STATUSES, Booking, BookingStatus
from app.schemas.booking import Actor
from app.services.events.event_publisher import (
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    EventPublisher,
    OutboxRelay,
    record_booking_event,
)

logger = logging.getLogger(__name__)

PENDING = BookingStatus.PENDING_PAYMENT.value
CONFIRMED = BookingStatus.CONFIRMED.value
CANCELLED = BookingStatus.CANCELLED.value
COMPLETED = BookingStatus.COMPLETED.value


def authorize_actor(booking: Booking, actor: Actor) -> None:
    """Customers act on their own bookings, businesses on theirs; admin and system on any"""
    if actor.role in ("admin", "system"):
        return
    if actor.role == "business" and actor.business_id == booking.business_id:
        return
    if actor.role == "customer" and actor.actor_id == booking.customer_id:
        return
    raise Forbidden(f"Actor {actor.actor_id} may not access booking {booking.id}")


class BookingStateMachine:
    """Applies lifecycle transitions to bookings"""

    def __init__(
            self,
            db: Session,
            publisher: Optional[EventPublisher] = None,
            clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.publisher = publisher
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    def _booking_for_payment(self, payment_intent_id: str, booking_id: Optional[str]) -> Booking:
        booking = self.db.query(Booking).filter(Booking.payment_intent_id == payment_intent_id).first()
        if booking is not None:
            return booking
        if booking_id is None:
            raise BookingNotFound(f"No booking for payment intent {payment_intent_id}")
        booking = self.get_booking(booking_id)
        if booking.payment_intent_id not in (None, payment_intent_id):
            raise ValidationError(
                f"Booking {booking_id} is tied to a different payment intent",
                {"payment_intent_id": payment_intent_id},
            )
        return booking

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def confirm_payment(self, payment_intent_id: str, booking_id: Optional[str] = None) -> Booking:
        """
        Payment-confirmed signal: PENDING_PAYMENT -> CONFIRMED.

        Re-delivery for an already CONFIRMED booking is a successful no-op.
        """
        booking = self._booking_for_payment(payment_intent_id, booking_id)
        return self._confirm(booking, {"payment_intent_id": payment_intent_id})

    def confirm(self, booking_id: str, actor: Actor) -> Booking:
        """Explicit confirmation of a pending booking by the business"""
        booking = self.get_booking(booking_id)
        if actor.role == "customer":
            raise Forbidden("Customers cannot confirm bookings")
        authorize_actor(booking, actor)
        return self._confirm(booking, {})

    def _confirm(self, booking: Booking, changes: Dict) -> Booking:
        if booking.status == CONFIRMED:
            logger.info(f"Booking {booking.id} already confirmed, nothing to do")
            return booking
        if booking.status != PENDING:
            raise InvalidTransition(f"Cannot confirm a booking that is {booking.status}")

        changes = dict(changes, confirmed_at=self.clock())
        if self._transition(booking, (PENDING,), CONFIRMED, BOOKING_CONFIRMED, changes):
            return booking

        # Lost a race with another transition: judge the status it left behind
        if booking.status == CONFIRMED:
            return booking
        raise InvalidTransition(f"Cannot confirm a booking that is {booking.status}")

    def cancel(self, booking_id: str, actor: Actor, reason: Optional[str] = None) -> Booking:
        """
        PENDING_PAYMENT | CONFIRMED -> CANCELLED.

        Cancelling a booking that is already CANCELLED or COMPLETED raises
        InvalidTransition.
        """
        booking = self.get_booking(booking_id)
        authorize_actor(booking, actor)
        if booking.status in TERMINAL_STATUSES:
            raise InvalidTransition(f"Cannot cancel a booking that is {booking.status}")

        changes = {
            "cancellation_reason": reason,
            "cancelled_by": actor.actor_id,
            "cancelled_at": self.clock(),
        }
        if not self._transition(booking, ACTIVE_STATUSES, CANCELLED, BOOKING_CANCELLED, changes):
            raise InvalidTransition(f"Cannot cancel a booking that is {booking.status}")
        return booking

    def fail_payment(self, payment_intent_id: str, booking_id: Optional[str] = None,
                     reason: Optional[str] = None) -> Booking:
        """Payment failed: release the slot of a booking still waiting for payment"""
        booking = self._booking_for_payment(payment_intent_id, booking_id)
        if booking.status != PENDING:
            logger.info(f"Ignoring failed payment {payment_intent_id}: booking {booking.id} is {booking.status}")
            return booking
        return self.cancel(booking.id, Actor.system("payments"), reason or "payment_failed")

    def update_status(self, booking_id: str, new_status: BookingStatus, actor: Actor,
                      reason: Optional[str] = None) -> Booking:
        """UpdateBookingStatus entry point for API callers"""
        if new_status == BookingStatus.CANCELLED:
            return self.cancel(booking_id, actor, reason)
        if new_status == BookingStatus.CONFIRMED:
            return self.confirm(booking_id, actor)

        booking = self.get_booking(booking_id)
        authorize_actor(booking, actor)
        raise InvalidTransition(f"Status {new_status.value} cannot be set by callers")

    def complete_due(self, now: Optional[datetime] = None, limit: int = 500) -> int:
        """CONFIRMED -> COMPLETED for bookings whose end time has passed. Returns the number completed."""
        now = now or self.clock()
        due: Iterable[Booking] = (
            self.db.query(Booking)
            .filter(Booking.status == CONFIRMED, Booking.end_time <= now)
            .order_by(Booking.end_time.asc())
            .limit(limit)
            .all()
        )
        completed = 0
        for booking in due:
            if self._transition(booking, (CONFIRMED,), COMPLETED, BOOKING_COMPLETED, {"completed_at": now}):
                completed += 1
        if completed:
            logger.info(f"Completed {completed} bookings ended before {now.isoformat()}")
        return completed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, booking: Booking, from_statuses, to_status: str, event_type: str,
                    changes: Dict) -> bool:
        """
        Compare-and-set the status, write the outbox event, commit, publish.

        Returns False (with `booking` refreshed) when the status was no longer
        one of `from_statuses`.
        """
        values = dict(changes, status=to_status, updated_at=self.clock())
        try:
            updated = (
                self.db.query(Booking)
                .filter(Booking.id == booking.id, Booking.status.in_(from_statuses))
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                self.db.rollback()
                self.db.refresh(booking)
                logger.info(f"Booking {booking.id} changed concurrently, now {booking.status}")
                return False

            self.db.refresh(booking)
            event = record_booking_event(self.db, booking, event_type)
            self.db.commit()
        except BaseException:
            self.db.rollback()
            raise

        logger.info(f"Booking {booking.id} -> {to_status}")
        OutboxRelay(self.db, self.publisher).publish([event])
        return True
