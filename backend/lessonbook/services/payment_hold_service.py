# backend/lessonbook/services/payment_hold_service.py
"""
Payment hold expiry supervisor.

A payment hold is a PENDING invoice with a deadline, created for payers the
school does not trust yet. When the deadline lapses the supervisor cancels
the invoice and releases the reservation's slot. It is the only component
that moves an invoice out of PENDING because of time passing.

Expiry races with payment: both sides issue guarded UPDATEs on the invoice
row, so whichever commits first wins and the other observes a terminal
invoice and backs off.
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import CANCEL_REASON_PAYMENT_TIMEOUT
from ..core.timezone_utils import ensure_utc
from ..events import EventPublisher, PaymentHoldExpired
from ..models.invoice import InvoiceStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .reservation_service import ReservationService

logger = logging.getLogger(__name__)

SYSTEM_INITIATOR = "system"


@dataclass
class SweepResult:
    """Outcome of one sweep pass."""

    examined: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0
    expired_invoice_ids: List[str] = field(default_factory=list)


class PaymentHoldService(BaseService):
    """Expires lapsed payment holds, one invoice per transaction."""

    def __init__(
        self,
        db: Session,
        reservation_service: Optional[ReservationService] = None,
        event_publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.invoice_repository = RepositoryFactory.create_invoice_repository(db)
        self.event_publisher = event_publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )
        self.reservation_service = reservation_service or ReservationService(
            db, event_publisher=self.event_publisher
        )

    @BaseService.measure_operation("sweep_expired_holds")
    def sweep_expired_holds(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> SweepResult:
        """
        Cancel every invoice whose payment hold lapsed at or before ``now``.

        Each invoice is expired in its own transaction; a failure on one does
        not roll back the others. Running two sweeps at once is safe: the
        loser of each guarded transition counts the invoice as skipped.

        Args:
            now: Reference instant (defaults to the current UTC time)
            limit: Maximum invoices examined in this pass

        Returns:
            SweepResult with per-outcome counts
        """
        now = ensure_utc(now)
        batch_size = limit or settings.hold_sweep_batch_size
        result = SweepResult()

        invoice_ids = self.invoice_repository.get_expired_hold_ids(now, limit=batch_size)
        # End the read transaction before taking per-invoice write transactions
        self.db.rollback()

        for invoice_id in invoice_ids:
            result.examined += 1
            try:
                expired = self._expire(invoice_id, now, trigger="sweep")
            except Exception as exc:
                result.failed += 1
                self.logger.error(
                    f"Failed to expire payment hold for invoice {invoice_id}: {str(exc)}",
                    exc_info=True,
                )
                continue
            if expired:
                result.expired += 1
                result.expired_invoice_ids.append(invoice_id)
            else:
                result.skipped += 1

        if result.examined:
            self.logger.info(
                "Payment hold sweep finished",
                extra={
                    "examined": result.examined,
                    "expired": result.expired,
                    "skipped": result.skipped,
                    "failed": result.failed,
                },
            )
        return result

    @BaseService.measure_operation("expire_hold")
    def expire_hold(
        self, invoice_id: str, now: Optional[datetime] = None, trigger: str = "inline"
    ) -> bool:
        """
        Expire a single invoice's hold if it has lapsed.

        Returns True when this call cancelled the invoice, False when the hold
        had not lapsed or another writer already made the invoice terminal.
        """
        return self._expire(invoice_id, ensure_utc(now), trigger=trigger)

    def _expire(self, invoice_id: str, now: datetime, trigger: str) -> bool:
        with self.transaction():
            invoice = self.invoice_repository.get_fresh(invoice_id)
            if invoice is None or not invoice.hold_expired(now):
                return False

            expired = self.invoice_repository.transition(
                invoice_id,
                InvoiceStatus.CANCELLED,
                from_statuses=(InvoiceStatus.PENDING, InvoiceStatus.ERROR),
                hold_lapsed_at=now,
                cancelled_at=now,
                cancellation_reason=CANCEL_REASON_PAYMENT_TIMEOUT,
            )
            prometheus_metrics.record_invoice_transition(InvoiceStatus.CANCELLED.value, expired)
            if not expired:
                return False

            reservation_id = invoice.reservation_id
            if reservation_id and self._should_release(reservation_id, invoice_id):
                self.reservation_service.cancel_within_transaction(
                    reservation_id,
                    reason=CANCEL_REASON_PAYMENT_TIMEOUT,
                    initiator=SYSTEM_INITIATOR,
                )

            self.event_publisher.publish(
                PaymentHoldExpired(
                    invoice_id=invoice_id,
                    reservation_id=reservation_id,
                    deadline=invoice.payment_hold_deadline,
                    expired_at=now,
                )
            )

        prometheus_metrics.inc_hold_expired(trigger)
        self.logger.info(
            "Payment hold expired",
            extra={"invoice_id": invoice_id, "reservation_id": reservation_id, "trigger": trigger},
        )
        return True

    def _should_release(self, reservation_id: str, invoice_id: str) -> bool:
        """An errored invoice may have been replaced; keep the slot if a newer one is active."""
        active = self.invoice_repository.get_active_for_reservation(reservation_id)
        return active is None or active.id == invoice_id
