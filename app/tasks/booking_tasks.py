"""Periodic booking maintenance tasks (celery beat)"""
import logging

from app.config.celery_config import celery_app
from app.config.database import session_scope
from app.services.booking.state_machine import BookingStateMachine
from app.services.events.event_publisher import OutboxRelay

logger = logging.getLogger(__name__)


@celery_app.task
def complete_finished_bookings():
    """Move CONFIRMED bookings whose end time has passed to COMPLETED"""
    with session_scope() as db:
        completed = BookingStateMachine(db).complete_due()
    return {"completed": completed}


@celery_app.task
def relay_booking_events():
    """Re-publish outbox events that could not be delivered right after commit"""
    with session_scope() as db:
        published = OutboxRelay(db).publish_pending()
    if published:
        logger.info(f"Relayed {published} pending booking events")
    return {"published": published}
