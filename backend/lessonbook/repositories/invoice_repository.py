# backend/lessonbook/repositories/invoice_repository.py
"""
Invoice Repository for the lessonbook engine.

All status changes go through ``transition`` which issues a guarded
``UPDATE invoices SET status = :to WHERE id = :id AND status IN (:legal_sources)``.
Whoever commits first wins; the loser gets ``False`` back and re-reads.
"""

from datetime import date, datetime, timezone
import logging
from typing import Any, Iterable, List, Optional, cast

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload

from ..core.exceptions import RepositoryException
from ..models.invoice import (
    INVOICE_TRANSITIONS,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = [s.value for s in InvoiceStatus.active()]


def _hold_guards(
    hold_active_at: Optional[datetime], hold_lapsed_at: Optional[datetime]
) -> List[Any]:
    guards: List[Any] = []
    if hold_active_at is not None:
        guards.append(
            or_(
                Invoice.payment_hold_deadline.is_(None),
                Invoice.payment_hold_deadline > hold_active_at,
            )
        )
    if hold_lapsed_at is not None:
        guards.append(Invoice.payment_hold_deadline.isnot(None))
        guards.append(Invoice.payment_hold_deadline <= hold_lapsed_at)
    return guards


class InvoiceRepository(BaseRepository[Invoice]):
    """Data access and guarded transitions for invoices."""

    def __init__(self, db: Session):
        super().__init__(db, Invoice)
        self.logger = logging.getLogger(__name__)

    def create(self, **kwargs: Any) -> Invoice:
        """Create an invoice, exposing integrity errors for active-invoice conflicts."""
        try:
            return super().create(**kwargs)
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise exc.__cause__
            raise

    def add_item(self, invoice_id: str, **kwargs: Any) -> InvoiceItem:
        item = InvoiceItem(invoice_id=invoice_id, **kwargs)
        self.db.add(item)
        self.db.flush()
        return item

    def get_fresh(self, invoice_id: str) -> Optional[Invoice]:
        """Load an invoice, overwriting any stale identity-map state."""
        try:
            invoice = cast(Optional[Invoice], self.db.get(Invoice, invoice_id))
            if invoice is not None:
                self.db.refresh(invoice)
            return invoice
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading invoice {invoice_id}: {str(e)}")
            raise RepositoryException(f"Failed to load invoice: {str(e)}")

    def get_active_for_reservation(self, reservation_id: str) -> Optional[Invoice]:
        """The PENDING, PAID or OVERDUE invoice attached to a reservation, if any."""
        try:
            return cast(
                Optional[Invoice],
                self.db.query(Invoice)
                .filter(
                    Invoice.reservation_id == reservation_id,
                    Invoice.status.in_(ACTIVE_STATUSES),
                )
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading active invoice for {reservation_id}: {str(e)}")
            raise RepositoryException(f"Failed to load active invoice: {str(e)}")

    def get_for_reservation(
        self, reservation_id: str, statuses: Iterable[InvoiceStatus]
    ) -> List[Invoice]:
        return cast(
            List[Invoice],
            self.db.query(Invoice)
            .filter(
                Invoice.reservation_id == reservation_id,
                Invoice.status.in_([s.value for s in statuses]),
            )
            .order_by(Invoice.created_at.asc(), Invoice.id.asc())
            .all(),
        )

    def get_by_external_checkout_id(self, external_checkout_id: str) -> Optional[Invoice]:
        return cast(
            Optional[Invoice],
            self.db.query(Invoice)
            .filter(Invoice.external_checkout_id == external_checkout_id)
            .first(),
        )

    def get_expired_hold_ids(self, now: datetime, limit: int = 200) -> List[str]:
        """
        Invoices whose payment hold deadline has passed.

        ERROR invoices are included: a failed gateway payment leaves the
        reservation held until its deadline lapses.
        """
        try:
            rows = (
                self.db.query(Invoice.id)
                .filter(
                    Invoice.status.in_([InvoiceStatus.PENDING.value, InvoiceStatus.ERROR.value]),
                    Invoice.payment_hold_deadline.isnot(None),
                    Invoice.payment_hold_deadline <= now,
                )
                .order_by(Invoice.payment_hold_deadline.asc(), Invoice.id.asc())
                .limit(limit)
                .all()
            )
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding expired holds: {str(e)}")
            raise RepositoryException(f"Failed to find expired holds: {str(e)}")

    def get_past_due_ids(self, today: date, limit: int = 200) -> List[str]:
        """PENDING invoices without a hold whose due date has passed."""
        rows = (
            self.db.query(Invoice.id)
            .filter(
                Invoice.status == InvoiceStatus.PENDING.value,
                Invoice.payment_hold_deadline.is_(None),
                Invoice.due_date.isnot(None),
                Invoice.due_date < today,
            )
            .order_by(Invoice.due_date.asc(), Invoice.id.asc())
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]

    def transition(
        self,
        invoice_id: str,
        to_status: InvoiceStatus,
        *,
        from_statuses: Optional[Iterable[InvoiceStatus]] = None,
        hold_active_at: Optional[datetime] = None,
        hold_lapsed_at: Optional[datetime] = None,
        **values: Any,
    ) -> bool:
        """
        Move an invoice to ``to_status`` if its current status is a legal source.

        ``from_statuses`` narrows the legal sources further (e.g. the sweep only
        expires PENDING/ERROR invoices, never OVERDUE ones). ``hold_active_at``
        additionally requires that no payment hold has lapsed at that instant;
        ``hold_lapsed_at`` requires the opposite.
        """
        sources = list(from_statuses) if from_statuses is not None else list(
            INVOICE_TRANSITIONS[to_status]
        )
        values.setdefault("updated_at", datetime.now(timezone.utc))
        result = self.db.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice_id,
                Invoice.status.in_([s.value for s in sources]),
                *_hold_guards(hold_active_at, hold_lapsed_at),
            )
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def update_if_status(
        self,
        invoice_id: str,
        statuses: Iterable[InvoiceStatus],
        *,
        hold_active_at: Optional[datetime] = None,
        **values: Any,
    ) -> bool:
        """Guarded non-status update (settlement method, checkout ids)."""
        values.setdefault("updated_at", datetime.now(timezone.utc))
        result = self.db.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice_id,
                Invoice.status.in_([s.value for s in statuses]),
                *_hold_guards(hold_active_at, None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(selectinload(Invoice.items))
