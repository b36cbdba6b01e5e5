# ===== app/services/ingest/event_ingest.py =====
"""
Event Ingest Layer.

Applies upstream catalog and payment events to the local replica. The handler
knows nothing about the transport: Celery tasks and the webhook push endpoint
both end up in `EventIngestHandler.apply`.

Malformed payloads are logged and dropped (a retry would fail the same way).
Storage errors propagate so the caller can retry; every apply runs in a single
transaction, so a retry never sees a half-applied event.
"""
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.core.deadline import Deadline, check_deadline
from app.core.exceptions import BookingNotFound, InvalidTransition, ValidationError
from app.schemas.events import AvailabilityReplaced, AvailabilityRuleIn, PaymentSignal, ServiceUpserted
from app.services.availability.availability_store import AvailabilityStore
from app.services.booking.state_machine import BookingStateMachine
from app.services.events.event_publisher import EventPublisher

logger = logging.getLogger(__name__)

SERVICE_CREATED = "business.service.created"
SERVICE_UPDATED = "business.service.updated"
AVAILABILITY_UPDATED = "business.availability.updated"
PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"

CONSUMED_SUBJECTS = [SERVICE_CREATED, SERVICE_UPDATED, AVAILABILITY_UPDATED, PAYMENT_SUCCEEDED, PAYMENT_FAILED]


class IngestOutcome(str, Enum):
    APPLIED = "applied"
    DROPPED = "dropped"
    STALE = "stale"


class MalformedEvent(Exception):
    """Payload can never be applied"""


def decode_payload(payload: Union[bytes, str, Dict[str, Any]]) -> Dict[str, Any]:
    """Accept raw JSON or a decoded dict; unwrap a {"type", "data"} envelope"""
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEvent(f"Payload is not valid UTF-8: {e}") from e
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MalformedEvent(f"Payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedEvent(f"Payload must be a JSON object, got {type(payload).__name__}")

    data = payload.get("data")
    if "type" in payload and isinstance(data, dict):
        unwrapped = dict(data)
        if "occurredAt" in payload and "occurredAt" not in unwrapped:
            unwrapped["occurredAt"] = payload["occurredAt"]
        return unwrapped
    return payload


def _is_stale(occurred_at: Optional[datetime], applied_at: Optional[datetime]) -> bool:
    return occurred_at is not None and applied_at is not None and occurred_at < applied_at


class EventIngestHandler:
    """Applies one consumed event to the replica (or the booking lifecycle)"""

    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.store = AvailabilityStore(db)
        self.publisher = publisher

    def apply(
            self,
            subject: str,
            payload: Union[bytes, str, Dict[str, Any]],
            deadline: Optional[Deadline] = None,
    ) -> IngestOutcome:
        handlers = {
            SERVICE_CREATED: self._apply_service,
            SERVICE_UPDATED: self._apply_service,
            AVAILABILITY_UPDATED: self._apply_availability,
            PAYMENT_SUCCEEDED: self._apply_payment_succeeded,
            PAYMENT_FAILED: self._apply_payment_failed,
        }
        handler = handlers.get(subject)
        if handler is None:
            logger.error(f"Dropping event with unknown subject: {subject}")
            return IngestOutcome.DROPPED

        try:
            data = decode_payload(payload)
            outcome = handler(data, deadline)
        except (MalformedEvent, PydanticValidationError) as e:
            self.db.rollback()
            logger.error(f"Dropping malformed {subject} event: {e}")
            return IngestOutcome.DROPPED
        except BaseException:
            self.db.rollback()
            raise

        logger.info(f"Ingested {subject}: {outcome.value}")
        return outcome

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def _apply_service(self, data: Dict[str, Any], deadline: Optional[Deadline]) -> IngestOutcome:
        event = ServiceUpserted.model_validate(data)

        existing = self.store.get_service(event.service_id)
        if existing is not None and _is_stale(event.occurred_at, existing.source_updated_at):
            logger.warning(f"Skipping stale update of service {event.service_id} "
                           f"({event.occurred_at.isoformat()} < {existing.source_updated_at.isoformat()})")
            return IngestOutcome.STALE
        if existing is not None and existing.business_id != event.business_id:
            logger.warning(f"Service {event.service_id} moves from business {existing.business_id} "
                           f"to {event.business_id}")

        self.store.upsert_service(event.service_id, event.to_store_values(), event.occurred_at)
        check_deadline(deadline, "service upsert")
        self.db.commit()
        return IngestOutcome.APPLIED

    def _apply_availability(self, data: Dict[str, Any], deadline: Optional[Deadline]) -> IngestOutcome:
        event = AvailabilityReplaced.model_validate(data)

        calendar = self.store.get_calendar(event.business_id)
        if calendar is not None and _is_stale(event.occurred_at, calendar.availability_occurred_at):
            logger.warning(f"Skipping stale availability of business {event.business_id}")
            return IngestOutcome.STALE

        rules = self._valid_rules(event)
        count = self.store.replace_rules(event.business_id, rules, event.timezone, event.occurred_at)
        check_deadline(deadline, "availability replace")
        self.db.commit()
        logger.info(f"Replaced availability of business {event.business_id} with {count} rules")
        return IngestOutcome.APPLIED

    @staticmethod
    def _valid_rules(event: AvailabilityReplaced) -> List[Dict[str, Any]]:
        rules: Dict[tuple, Dict[str, Any]] = {}
        for index, raw in enumerate(event.rules):
            try:
                rule = AvailabilityRuleIn.model_validate(raw).to_store_values()
            except (PydanticValidationError, ValueError) as e:
                logger.warning(f"Skipping invalid rule #{index} for business {event.business_id}: {e}")
                continue
            key = (rule["day_of_week"], rule["start_time"], rule["end_time"])
            if key in rules:
                logger.info(f"Collapsing duplicate rule {key} for business {event.business_id}")
                continue
            rules[key] = rule
        return list(rules.values())

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def _apply_payment_succeeded(self, data: Dict[str, Any], deadline: Optional[Deadline]) -> IngestOutcome:
        signal = PaymentSignal.model_validate(data)
        check_deadline(deadline, "payment confirmation")
        machine = BookingStateMachine(self.db, self.publisher)
        try:
            machine.confirm_payment(signal.payment_intent_id, signal.booking_id)
        except (BookingNotFound, InvalidTransition, ValidationError) as e:
            logger.error(f"Cannot confirm payment {signal.payment_intent_id}: {e.message}")
            return IngestOutcome.DROPPED
        return IngestOutcome.APPLIED

    def _apply_payment_failed(self, data: Dict[str, Any], deadline: Optional[Deadline]) -> IngestOutcome:
        signal = PaymentSignal.model_validate(data)
        check_deadline(deadline, "payment failure")
        machine = BookingStateMachine(self.db, self.publisher)
        try:
            machine.fail_payment(signal.payment_intent_id, signal.booking_id, signal.reason)
        except (BookingNotFound, InvalidTransition, ValidationError) as e:
            logger.error(f"Cannot apply failed payment {signal.payment_intent_id}: {e.message}")
            return IngestOutcome.DROPPED
        return IngestOutcome.APPLIED
