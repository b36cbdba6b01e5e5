# app/config/celery_config.py
"""Celery application factory and beat schedule"""
from celery import Celery

from app.config.settings import get_settings

settings = get_settings()

TASK_MODULES = [
    "app.tasks.ingest_tasks",
    "app.tasks.booking_tasks",
]


def create_celery_app() -> Celery:
    """Create and configure the Celery application"""
    app = Celery(
        "booking_engine",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=TASK_MODULES,
    )

    app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        # At-least-once: a message is acked only after the task finished,
        # so a crashed worker leaves it on the queue for redelivery.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        task_routes={
            "app.tasks.ingest_tasks.*": {"queue": "ingest"},
            "app.tasks.booking_tasks.*": {"queue": "bookings"},
        },
        beat_schedule={
            "complete-finished-bookings": {
                "task": "app.tasks.booking_tasks.complete_finished_bookings",
                "schedule": float(settings.COMPLETION_SWEEP_INTERVAL_SECONDS),
            },
            "relay-booking-events": {
                "task": "app.tasks.booking_tasks.relay_booking_events",
                "schedule": float(settings.OUTBOX_RELAY_INTERVAL_SECONDS),
            },
        },
    )
    return app


celery_app = create_celery_app()
