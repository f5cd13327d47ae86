# backend/lessonbook/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for the lessonbook engine.

The payment hold sweep must run server side on a short interval: a client
countdown is only a display aid and never releases a slot by itself.
"""

from datetime import timedelta
from typing import Any, Dict

from celery.schedules import crontab

from lessonbook.core.config import settings


def get_beat_schedule(environment: str) -> Dict[str, Dict[str, Any]]:
    """Periodic tasks for the given environment."""
    schedule: Dict[str, Dict[str, Any]] = {
        # Release reservations whose payment hold lapsed
        "sweep-expired-payment-holds": {
            "task": "holds.sweep_expired",
            "schedule": timedelta(seconds=settings.hold_sweep_interval_seconds),
            "options": {
                "queue": "payments",
                "priority": 9,
                "expires": settings.hold_sweep_interval_seconds,
            },
        },
        # Trusted payers past their due date
        "mark-overdue-invoices": {
            "task": "invoices.mark_overdue",
            "schedule": crontab(hour=1, minute=15),
            "options": {"queue": "payments", "priority": 5},
        },
        # Outbox dispatch
        "dispatch-outbox-events": {
            "task": "outbox.dispatch_pending",
            "schedule": timedelta(seconds=30),
            "options": {"queue": "notifications", "priority": 6},
        },
    }

    if environment == "development":
        # Slower outbox polling for local development
        schedule["dispatch-outbox-events"]["schedule"] = timedelta(minutes=2)

    return schedule

