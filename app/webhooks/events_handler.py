# app/webhooks/events_handler.py
"""Upstream event push webhook - queuing only"""
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Request, HTTPException, Header, Path
from fastapi.responses import JSONResponse

from app.config.settings import get_settings
from app.services.ingest.event_ingest import CONSUMED_SUBJECTS
from app.tasks.ingest_tasks import ingest_event

router = APIRouter()
logger = logging.getLogger(__name__)
settings = get_settings()


@router.post("/{subject}")
async def handle_event(
        request: Request,
        subject: str = Path(..., description="Event subject, e.g. business.service.updated"),
        x_webhook_secret: Optional[str] = Header(None),
):
    """Validate the subject and queue the event for the ingest worker"""
    if settings.WEBHOOK_SECRET and not hmac.compare_digest(x_webhook_secret or "", settings.WEBHOOK_SECRET):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    if subject not in CONSUMED_SUBJECTS:
        logger.warning(f"Rejected event with unknown subject: {subject}")
        raise HTTPException(status_code=404, detail=f"Unknown subject: {subject}")

    try:
        payload = json.loads(await request.body())
    except ValueError:
        raise HTTPException(status_code=422, detail="Body must be JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=422, detail="Body must be a JSON object")

    correlation_id = getattr(request.state, "correlation_id", "unknown")
    ingest_event.delay(subject=subject, payload=payload, correlation_id=correlation_id)

    logger.info(f"Queued {subject} event (correlation_id={correlation_id})")
    return JSONResponse(status_code=202, content={"status": "queued", "subject": subject})
