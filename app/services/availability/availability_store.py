# ===== app/services/availability/availability_store.py =====
"""
Availability Store - local replica of upstream-owned scheduling data.

The business service owns the truth for services and weekly rules; this store
only holds what the last applied events said. Reads are used by slot generation
and the conflict guard, writes come exclusively from the event ingest layer and
are idempotent (upsert by key, full replace per business).
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.models.availability import AvailabilityRule, BusinessCalendar, DayOfWeek
from app.models.service import ServiceDefinition
from app.utils.time_utils import get_zone

logger = logging.getLogger(__name__)
settings = get_settings()

_SERVICE_FIELDS = (
    "business_id",
    "name",
    "description",
    "duration_minutes",
    "price",
    "currency",
    "is_active",
    "requires_payment",
    "min_advance_booking_hours",
    "max_advance_booking_days",
)


class AvailabilityStore:
    """Replica view over service definitions and availability rules"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def rules_for_day(self, business_id: str, day: DayOfWeek) -> List[AvailabilityRule]:
        return (
            self.db.query(AvailabilityRule)
            .filter(
                AvailabilityRule.business_id == business_id,
                AvailabilityRule.day_of_week == day.value,
            )
            .order_by(AvailabilityRule.start_time.asc())
            .all()
        )

    def get_service(self, service_id: str) -> Optional[ServiceDefinition]:
        return self.db.query(ServiceDefinition).filter(ServiceDefinition.id == service_id).first()

    def active_service(self, service_id: str) -> Optional[ServiceDefinition]:
        return (
            self.db.query(ServiceDefinition)
            .filter(ServiceDefinition.id == service_id, ServiceDefinition.is_active.is_(True))
            .first()
        )

    def get_calendar(self, business_id: str) -> Optional[BusinessCalendar]:
        return self.db.get(BusinessCalendar, business_id)

    def business_timezone(self, business_id: str):
        """ZoneInfo of the business; the configured default when never replicated or unusable"""
        calendar = self.get_calendar(business_id)
        name = calendar.timezone if calendar and calendar.timezone else settings.DEFAULT_TIMEZONE
        try:
            return get_zone(name)
        except ValueError:
            logger.warning(
                f"Business {business_id} has unusable timezone {name!r}, "
                f"falling back to {settings.DEFAULT_TIMEZONE}"
            )
            return get_zone(settings.DEFAULT_TIMEZONE)

    # ------------------------------------------------------------------
    # Writes (ingest only). Callers own the transaction.
    # ------------------------------------------------------------------

    def upsert_service(self, service_id: str, values: dict, occurred_at: Optional[datetime] = None) -> ServiceDefinition:
        """Create or update by id. Assigning unchanged values issues no UPDATE."""
        service = self.get_service(service_id)
        if service is None:
            service = ServiceDefinition(id=service_id)
            self.db.add(service)

        for field in _SERVICE_FIELDS:
            if getattr(service, field) != values[field]:
                setattr(service, field, values[field])
        if occurred_at is not None and service.source_updated_at != occurred_at:
            service.source_updated_at = occurred_at
        return service

    def replace_rules(
            self,
            business_id: str,
            rules: Sequence[dict],
            timezone: Optional[str] = None,
            occurred_at: Optional[datetime] = None,
    ) -> int:
        """Delete every rule of the business and insert `rules`."""
        self.db.query(AvailabilityRule).filter(
            AvailabilityRule.business_id == business_id
        ).delete(synchronize_session=False)
        self.db.add_all(AvailabilityRule(business_id=business_id, **rule) for rule in rules)

        calendar = self.get_calendar(business_id)
        if calendar is None:
            calendar = BusinessCalendar(business_id=business_id)
            self.db.add(calendar)
        if timezone is not None:
            calendar.timezone = timezone
        if occurred_at is not None:
            calendar.availability_occurred_at = occurred_at
        return len(rules)
