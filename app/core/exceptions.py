# app/core/exceptions.py
"""Domain error taxonomy shared by the booking write path, read path and API"""
from typing import Any, Dict, Optional


class BookingEngineError(Exception):
    """Base class for every error the engine surfaces to a caller"""

    code = "booking_engine_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.details:
            body["context"] = self.details
        return body


class ValidationError(BookingEngineError):
    """Malformed input, the caller's fault"""
    code = "validation_error"
    status_code = 422


class InvalidTime(ValidationError):
    """Requested start is in the past or outside the service's booking window"""
    code = "invalid_time"


class NotFound(BookingEngineError):
    code = "not_found"
    status_code = 404


class ServiceNotFound(NotFound):
    """The replica never received a definition for this service"""
    code = "service_not_found"


class BookingNotFound(NotFound):
    code = "booking_not_found"


class ServiceUnavailable(BookingEngineError):
    """Service exists in the replica but is deactivated"""
    code = "service_unavailable"
    status_code = 409


class SlotConflict(BookingEngineError):
    """Requested interval is taken or no longer bookable; re-fetch slots and retry"""
    code = "slot_conflict"
    status_code = 409


class UpstreamDataStale(SlotConflict):
    """A slot relied on replicated data that has since changed"""
    code = "slot_conflict"


class InvalidTransition(BookingEngineError):
    code = "invalid_transition"
    status_code = 409


class Forbidden(BookingEngineError):
    code = "forbidden"
    status_code = 403


class DeadlineExceeded(BookingEngineError):
    """The caller's deadline passed before the transaction could commit"""
    code = "deadline_exceeded"
    status_code = 504
