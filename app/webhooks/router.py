# app/webhooks/router.py
from fastapi import APIRouter

webhook_router = APIRouter()

# Import handlers inside a function to avoid circular imports
def register_handlers():
    from app.webhooks import events_handler
    webhook_router.include_router(events_handler.router, prefix="/events")

register_handlers()

@webhook_router.get("/")
async def webhook_info():
    from app.services.ingest.event_ingest import CONSUMED_SUBJECTS
    return {
        "endpoints": {
            "events": "/webhooks/events/{subject}",
        },
        "subjects": CONSUMED_SUBJECTS,
        "note": "Events are queued and applied by the ingest worker"
    }
