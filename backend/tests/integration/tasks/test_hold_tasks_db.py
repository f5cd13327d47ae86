from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from lessonbook.core.timezone_utils import get_school_today
from lessonbook.models.invoice import InvoiceStatus, PayerTrustLevel
from lessonbook.schemas.invoice import InvoiceLineItemIn
from lessonbook.tasks import hold_tasks

LESSON = [InvoiceLineItemIn(description="Lesson", unit_price=Decimal("500"))]


@pytest.fixture(autouse=True)
def task_sessions(monkeypatch, session_factory):
    monkeypatch.setattr(hold_tasks, "SessionLocal", session_factory)


def test_sweep_task_expires_lapsed_holds(invoice_service, reservation_service, held_reservation):
    invoice = invoice_service.create_invoice(
        held_reservation.id, LESSON, now=datetime.now(timezone.utc) - timedelta(hours=3)
    )

    summary = hold_tasks.sweep_expired_holds()

    assert summary == {
        "examined": 1,
        "expired": 1,
        "skipped": 0,
        "failed": 0,
        "expired_invoice_ids": [invoice.id],
    }
    assert invoice_service.get_invoice(invoice.id).status == InvoiceStatus.CANCELLED.value
    assert reservation_service.get_reservation(held_reservation.id).status == "CANCELLED"


def test_sweep_task_with_nothing_to_do(invoice_service, held_reservation):
    invoice_service.create_invoice(held_reservation.id, LESSON)

    assert hold_tasks.sweep_expired_holds()["examined"] == 0


def test_overdue_task_marks_past_due_invoices(db, invoice_service, held_reservation):
    invoice = invoice_service.create_invoice(
        held_reservation.id, LESSON, payer_trust_level=PayerTrustLevel.ENROLLED
    )
    invoice.due_date = get_school_today() - timedelta(days=2)
    db.commit()

    assert hold_tasks.mark_overdue_invoices() == 1
    assert invoice_service.get_invoice(invoice.id).status == InvoiceStatus.OVERDUE.value
