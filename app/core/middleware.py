# app/core/middleware.py
"""Request tracing middleware"""
import uuid
import time
import logging
from contextvars import ContextVar
from starlette.requests import Request

logger = logging.getLogger(__name__)

# Read by the logging filter so every line of a request carries its id
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


async def correlation_id_middleware(request: Request, call_next):
    """Add correlation ID to all requests for tracing"""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    token = correlation_id_var.set(correlation_id)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


async def request_logging_middleware(request: Request, call_next):
    """Log every request with its outcome and latency"""
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} in {duration * 1000:.1f}ms",
        extra={
            "method": request.method,
            "url": str(request.url),
            "status_code": response.status_code,
            "duration_ms": round(duration * 1000, 2),
            "client": request.client.host if request.client else "unknown",
        }
    )
    return response
