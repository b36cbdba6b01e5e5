"""Upstream event ingest tasks"""
import logging
from typing import Any, Dict

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from app.config.celery_config import celery_app
from app.config.database import session_scope
from app.config.settings import get_settings
from app.services.ingest.event_ingest import EventIngestHandler

logger = logging.getLogger(__name__)
settings = get_settings()


@celery_app.task(
    bind=True,
    acks_late=True,
    max_retries=settings.INGEST_MAX_RETRIES,
    soft_time_limit=settings.INGEST_TASK_SOFT_TIME_LIMIT,
)
def ingest_event(self, subject: str, payload: Dict[str, Any], correlation_id: str = "unknown"):
    """Apply one upstream event; storage failures are retried with back-off"""
    logger.info(f"Ingesting {subject} (correlation_id={correlation_id}, attempt {self.request.retries + 1})")
    try:
        with session_scope() as db:
            outcome = EventIngestHandler(db).apply(subject, payload)
        return {"status": outcome.value, "subject": subject}

    except (SQLAlchemyError, SoftTimeLimitExceeded) as exc:
        countdown = min(2 ** self.request.retries * 5, 600)
        logger.error(f"Ingest of {subject} failed, retrying in {countdown}s: {exc}")
        raise self.retry(exc=exc, countdown=countdown)
