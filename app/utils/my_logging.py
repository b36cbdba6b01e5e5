# app/utils/my_logging.py
"""Logging configuration"""
import logging
import sys
from app.config.settings import get_settings


class CorrelationIdFilter(logging.Filter):
    """Stamp records with the correlation id of the current request (or '-')"""

    def filter(self, record: logging.LogRecord) -> bool:
        from app.core.middleware import correlation_id_var

        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def setup_logging(verbose=True):
    """Configure application logging"""
    settings = get_settings()

    if verbose:
        level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    else:
        level = logging.WARNING

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s",
        handlers=[handler],
        force=True,
    )

    # SQL echo only when explicitly debugging
    noisy_loggers = ["sqlalchemy.engine", "sqlalchemy.pool", "alembic", "celery.redirected"]
    if not verbose:
        noisy_loggers += ["uvicorn", "uvicorn.error", "uvicorn.access", "celery"]
    for name in noisy_loggers:
        logging.getLogger(name).setLevel(logging.WARNING if verbose else logging.ERROR)
