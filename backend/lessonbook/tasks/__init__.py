# backend/lessonbook/tasks/__init__.py
"""
Celery tasks package for the lessonbook engine.

- Payment hold sweep and overdue marking
- Outbox event delivery
"""

from lessonbook.tasks.celery_app import BaseTask, celery_app
from lessonbook.tasks.hold_tasks import mark_overdue_invoices, sweep_expired_holds
from lessonbook.tasks.notification_tasks import deliver_event, dispatch_pending

__all__ = [
    "BaseTask",
    "celery_app",
    "deliver_event",
    "dispatch_pending",
    "mark_overdue_invoices",
    "sweep_expired_holds",
]
