"""Health checks and monitoring endpoints"""
from fastapi import APIRouter, Depends
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from app.config.database import get_db
from app.config.redis import get_redis
from app.models.booking_event import BookingEvent

health_router = APIRouter()


@health_router.get("/")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "booking-engine"}


@health_router.get("/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """Detailed health check with dependencies and the outbox backlog"""
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown",
        "overall": "unknown"
    }
    outbox = {}

    # Check database
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
        rows = (
            db.query(BookingEvent.status, func.count(BookingEvent.id))
            .filter(BookingEvent.status.in_(["pending", "failed"]))
            .group_by(BookingEvent.status)
            .all()
        )
        outbox = {status: count for status, count in rows}
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    # Check Redis
    try:
        redis_client = await get_redis()
        await redis_client.ping()
        checks["redis"] = "healthy"
        await redis_client.aclose()
    except Exception as e:
        checks["redis"] = f"unhealthy: {str(e)}"

    # Overall status
    if all(status == "healthy" for status in checks.values() if status != "unknown"):
        checks["overall"] = "healthy"
    else:
        checks["overall"] = "degraded"

    return {
        **checks,
        "outbox": {"pending": outbox.get("pending", 0), "failed": outbox.get("failed", 0)},
    }
