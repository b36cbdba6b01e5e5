"""
API v1 router setup
"""
from fastapi import APIRouter

from app.api.v1 import availability, bookings

api_v1_router = APIRouter()

# ============================================================================
# READ PATH (slots are public, the calendar needs a business token)
# ============================================================================
api_v1_router.include_router(
    availability.router,
    tags=["Availability"]
)

# ============================================================================
# BOOKINGS (JWT authentication required)
# ============================================================================
api_v1_router.include_router(
    bookings.router,
    tags=["Bookings"]
)


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """API information and available endpoints."""
    return {
        "version": "1.0",
        "authentication": {
            "slots": "No authentication required",
            "bookings": "JWT Bearer token required (customer, business or admin)",
            "calendar": "JWT Bearer token of the business or an admin",
        }
    }
