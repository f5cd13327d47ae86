# backend/lessonbook/tasks/hold_tasks.py
"""
Celery tasks for payment hold expiry and invoice ageing.

Runs on a short beat interval; overlapping runs are safe because every
invoice transition is guarded.
"""

from __future__ import annotations

from typing import Any, Dict

from celery.utils.log import get_task_logger

from lessonbook.database import SessionLocal
from lessonbook.services.invoice_service import InvoiceService
from lessonbook.services.payment_hold_service import PaymentHoldService
from lessonbook.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="holds.sweep_expired", max_retries=0, queue="payments")
def sweep_expired_holds() -> Dict[str, Any]:
    """Cancel invoices whose payment hold lapsed and release their reservations."""
    session = SessionLocal()
    try:
        result = PaymentHoldService(session).sweep_expired_holds()
    finally:
        session.close()

    if result.expired or result.failed:
        logger.info(
            "Hold sweep: examined=%s expired=%s skipped=%s failed=%s",
            result.examined,
            result.expired,
            result.skipped,
            result.failed,
        )
    return {
        "examined": result.examined,
        "expired": result.expired,
        "skipped": result.skipped,
        "failed": result.failed,
        "expired_invoice_ids": result.expired_invoice_ids,
    }


@celery_app.task(name="invoices.mark_overdue", max_retries=0, queue="payments")
def mark_overdue_invoices() -> int:
    """Move trusted invoices past their due date to OVERDUE."""
    session = SessionLocal()
    try:
        marked = InvoiceService(session).mark_overdue_invoices()
    finally:
        session.close()
    if marked:
        logger.info("Marked %s invoice(s) overdue", len(marked))
    return len(marked)
