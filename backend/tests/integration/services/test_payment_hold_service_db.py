"""Payment hold expiry: sweeps, inline expiry and races with settlement."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
import threading

import pytest

from lessonbook.core.exceptions import InvalidStateException
from lessonbook.models.invoice import InvoiceStatus
from lessonbook.schemas.invoice import InvoiceLineItemIn
from tests.factories.reservation_builders import build_services, single_lesson, student

LESSON = [InvoiceLineItemIn(description="Manual lesson 60 min", unit_price=Decimal("500"))]


@pytest.fixture
def created_at() -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=6)


def _held(reservation_service, lesson_date, hour: int, identity: str = "cust-1"):
    return reservation_service.create_reservation(
        single_lesson(), lesson_date, time(hour, 0), 60, [student(identity_id=identity)], identity=identity
    )


class TestSweep:
    def test_lapsed_hold_cancels_invoice_and_frees_slot(
        self,
        payment_hold_service,
        invoice_service,
        reservation_service,
        availability_service,
        held_reservation,
        lesson_date,
        created_at,
        outbox,
    ):
        invoice = invoice_service.create_invoice(held_reservation.id, LESSON, now=created_at)

        result = payment_hold_service.sweep_expired_holds(now=created_at + timedelta(minutes=121))

        assert result.examined == 1
        assert result.expired == 1
        assert result.expired_invoice_ids == [invoice.id]

        expired = invoice_service.get_invoice(invoice.id)
        assert expired.status == InvoiceStatus.CANCELLED.value
        assert expired.cancellation_reason == "payment_timeout"
        reservation = reservation_service.get_reservation(held_reservation.id)
        assert reservation.status == "CANCELLED"
        assert reservation.cancellation_reason == "payment_timeout"
        assert reservation.cancelled_by == "system"

        windows = availability_service.get_available_windows(lesson_date, resource_id="car-1")
        assert any(w.contains(600, 660) for w in windows)
        assert [e.event_type for e in outbox.list_for_aggregate(invoice.id)] == ["payment_hold.expired"]

    def test_hold_within_deadline_is_untouched(
        self, payment_hold_service, invoice_service, held_reservation, created_at
    ):
        invoice = invoice_service.create_invoice(held_reservation.id, LESSON, now=created_at)

        result = payment_hold_service.sweep_expired_holds(now=created_at + timedelta(minutes=119))

        assert result.examined == 0
        assert invoice_service.get_invoice(invoice.id).status == InvoiceStatus.PENDING.value

    def test_only_lapsed_holds_are_expired(
        self, payment_hold_service, invoice_service, reservation_service, weekday_templates, lesson_date, created_at
    ):
        early = invoice_service.create_invoice(
            _held(reservation_service, lesson_date, 10).id, LESSON, now=created_at
        )
        late = invoice_service.create_invoice(
            _held(reservation_service, lesson_date, 13).id, LESSON, now=created_at + timedelta(hours=1)
        )

        result = payment_hold_service.sweep_expired_holds(now=created_at + timedelta(minutes=150))

        assert result.expired_invoice_ids == [early.id]
        assert invoice_service.get_invoice(late.id).status == InvoiceStatus.PENDING.value

    def test_second_sweep_finds_nothing(
        self, payment_hold_service, invoice_service, held_reservation, created_at, outbox
    ):
        invoice = invoice_service.create_invoice(held_reservation.id, LESSON, now=created_at)
        sweep_at = created_at + timedelta(hours=3)

        payment_hold_service.sweep_expired_holds(now=sweep_at)
        second = payment_hold_service.sweep_expired_holds(now=sweep_at)

        assert second.examined == 0
        assert len(outbox.list_for_aggregate(invoice.id)) == 1

    def test_limit_caps_examined_invoices(
        self, payment_hold_service, invoice_service, reservation_service, weekday_templates, lesson_date, created_at
    ):
        for hour in (9, 11, 14):
            invoice_service.create_invoice(_held(reservation_service, lesson_date, hour).id, LESSON, now=created_at)

        result = payment_hold_service.sweep_expired_holds(now=created_at + timedelta(hours=3), limit=2)

        assert result.examined == 2
        assert result.expired == 2

    def test_paid_invoice_is_never_expired(
        self, payment_hold_service, invoice_service, reservation_service, held_reservation, created_at
    ):
        invoice = invoice_service.create_invoice(held_reservation.id, LESSON, now=created_at)
        invoice_service.confirm_instant_mobile(invoice.id)

        result = payment_hold_service.sweep_expired_holds(now=created_at + timedelta(hours=3))

        assert result.examined == 0
        assert reservation_service.get_reservation(held_reservation.id).status == "CONFIRMED"

    def test_trusted_invoice_has_no_hold(
        self, payment_hold_service, invoice_service, held_reservation, created_at
    ):
        from lessonbook.models.invoice import PayerTrustLevel

        invoice_service.create_invoice(
            held_reservation.id, LESSON, payer_trust_level=PayerTrustLevel.ENROLLED, now=created_at
        )

        assert payment_hold_service.sweep_expired_holds(now=created_at + timedelta(days=1)).examined == 0

    def test_errored_invoice_replaced_by_new_one_keeps_reservation(
        self, payment_hold_service, invoice_service, reservation_service, held_reservation, created_at
    ):
        failed = invoice_service.create_invoice(held_reservation.id, LESSON, now=created_at)
        invoice_service.reconcile_hosted_checkout(failed.id, "payment_failed")
        replacement = invoice_service.create_invoice(
            held_reservation.id, LESSON, now=created_at + timedelta(minutes=30)
        )

        result = payment_hold_service.sweep_expired_holds(now=created_at + timedelta(minutes=121))

        assert result.expired_invoice_ids == [failed.id]
        assert invoice_service.get_invoice(replacement.id).status == InvoiceStatus.PENDING.value
        assert reservation_service.get_reservation(held_reservation.id).status == "HELD"

    def test_errored_invoice_alone_releases_reservation(
        self, payment_hold_service, invoice_service, reservation_service, held_reservation, created_at
    ):
        failed = invoice_service.create_invoice(held_reservation.id, LESSON, now=created_at)
        invoice_service.reconcile_hosted_checkout(failed.id, "declined")

        payment_hold_service.sweep_expired_holds(now=created_at + timedelta(minutes=121))

        assert invoice_service.get_invoice(failed.id).status == InvoiceStatus.CANCELLED.value
        assert reservation_service.get_reservation(held_reservation.id).status == "CANCELLED"


class TestExpireHold:
    def test_not_lapsed_returns_false(self, payment_hold_service, invoice_service, held_reservation, created_at):
        invoice = invoice_service.create_invoice(held_reservation.id, LESSON, now=created_at)

        assert payment_hold_service.expire_hold(invoice.id, now=created_at + timedelta(minutes=5)) is False
        assert payment_hold_service.expire_hold(invoice.id, now=created_at + timedelta(minutes=120)) is True
        assert payment_hold_service.expire_hold(invoice.id, now=created_at + timedelta(minutes=121)) is False

    def test_unknown_invoice_returns_false(self, payment_hold_service):
        assert payment_hold_service.expire_hold("missing") is False


class TestConcurrency:
    def test_parallel_sweeps_expire_each_hold_once(
        self, session_factory, invoice_service, held_reservation, created_at, outbox
    ):
        invoice = invoice_service.create_invoice(held_reservation.id, LESSON, now=created_at)
        sweep_at = created_at + timedelta(hours=3)
        barrier = threading.Barrier(3)

        def sweep(_: int) -> int:
            session = session_factory()
            try:
                _, holds, _ = build_services(session)
                barrier.wait(timeout=10)
                return holds.sweep_expired_holds(now=sweep_at).expired
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=3) as pool:
            expired_counts = list(pool.map(sweep, range(3)))

        assert sum(expired_counts) == 1
        assert [e.event_type for e in outbox.list_for_aggregate(invoice.id)] == ["payment_hold.expired"]

    def test_staff_confirmation_racing_sweep_has_one_winner(
        self, session_factory, invoice_service, reservation_service, held_reservation, created_at
    ):
        invoice = invoice_service.create_invoice(held_reservation.id, LESSON, now=created_at)
        barrier = threading.Barrier(2)

        def confirm() -> str:
            session = session_factory()
            try:
                _, _, invoices = build_services(session)
                barrier.wait(timeout=10)
                try:
                    invoices.confirm_instant_mobile(invoice.id)
                    return "paid"
                except InvalidStateException:
                    return "refused"
            finally:
                session.close()

        def sweep() -> str:
            session = session_factory()
            try:
                _, holds, _ = build_services(session)
                barrier.wait(timeout=10)
                result = holds.sweep_expired_holds(now=created_at + timedelta(hours=3))
                return "expired" if result.expired else "skipped"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=2) as pool:
            confirm_future = pool.submit(confirm)
            sweep_future = pool.submit(sweep)
            outcome = (confirm_future.result(), sweep_future.result())

        assert outcome in {("paid", "skipped"), ("refused", "expired")}
        final_invoice = invoice_service.get_invoice(invoice.id).status
        final_reservation = reservation_service.get_reservation(held_reservation.id).status
        if outcome[0] == "paid":
            assert (final_invoice, final_reservation) == ("PAID", "CONFIRMED")
        else:
            assert (final_invoice, final_reservation) == ("CANCELLED", "CANCELLED")
