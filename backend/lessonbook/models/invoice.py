# backend/lessonbook/models/invoice.py
"""
Invoice, line item and stored credit models.

An invoice settles one reservation (or stands alone as a custom invoice).
Its status moves through a small state machine driven by the settlement
method the payer chose; a reservation may have at most one active
(PENDING, PAID or OVERDUE) invoice at a time.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import logging
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class InvoiceStatus(str, Enum):
    """Invoice lifecycle statuses."""

    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"  # Trusted payer missed the due date
    CANCELLED = "CANCELLED"
    ERROR = "ERROR"  # Gateway reported a failed payment

    @classmethod
    def active(cls) -> tuple["InvoiceStatus", ...]:
        return (cls.PENDING, cls.PAID, cls.OVERDUE)


# Legal source statuses for each target status.
INVOICE_TRANSITIONS: dict[InvoiceStatus, tuple[InvoiceStatus, ...]] = {
    InvoiceStatus.PAID: (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE),
    InvoiceStatus.OVERDUE: (InvoiceStatus.PENDING,),
    InvoiceStatus.ERROR: (InvoiceStatus.PENDING,),
    InvoiceStatus.CANCELLED: (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE, InvoiceStatus.ERROR),
}


class SettlementMethod(str, Enum):
    """How the payer intends to settle the invoice."""

    UNSET = "UNSET"
    INSTANT_MOBILE = "INSTANT_MOBILE"
    HOSTED_CHECKOUT = "HOSTED_CHECKOUT"
    STORED_CREDIT = "STORED_CREDIT"
    ON_LOCATION = "ON_LOCATION"


class PayerTrustLevel(str, Enum):
    """Trust level supplied by the caller; decides whether a payment hold applies."""

    GUEST = "GUEST"
    REGISTERED = "REGISTERED"
    ENROLLED = "ENROLLED"

    @property
    def requires_payment_hold(self) -> bool:
        return self is not PayerTrustLevel.ENROLLED


class Invoice(Base):
    """Bill for a reservation; the amount is always derived from its items."""

    __tablename__ = "invoices"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    invoice_number = Column(String(32), nullable=False, unique=True)
    reservation_id = Column(
        String(26), ForeignKey("reservations.id"), nullable=True, index=True
    )

    customer_identity = Column(String(64), nullable=True, index=True)
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(String(20), nullable=False, default=InvoiceStatus.PENDING.value, index=True)
    settlement_method = Column(
        String(20), nullable=False, default=SettlementMethod.UNSET.value
    )
    payer_trust_level = Column(String(20), nullable=False, default=PayerTrustLevel.GUEST.value)
    payment_hold_deadline = Column(DateTime(timezone=True), nullable=True, index=True)
    due_date = Column(Date, nullable=True)

    external_checkout_id = Column(String(255), nullable=True, unique=True)
    external_status = Column(String(50), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    credit_id = Column(String(26), ForeignKey("stored_credits.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    reservation = relationship("Reservation", back_populates="invoices")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PAID', 'OVERDUE', 'CANCELLED', 'ERROR')",
            name="ck_invoices_status",
        ),
        CheckConstraint(
            "settlement_method IN "
            "('UNSET', 'INSTANT_MOBILE', 'HOSTED_CHECKOUT', 'STORED_CREDIT', 'ON_LOCATION')",
            name="ck_invoices_settlement_method",
        ),
        CheckConstraint("amount >= 0", name="ck_invoices_amount_non_negative"),
    )

    @property
    def has_payment_hold(self) -> bool:
        return (
            self.status == InvoiceStatus.PENDING.value and self.payment_hold_deadline is not None
        )

    def hold_expired(self, now: Optional[datetime] = None) -> bool:
        """True when a payment hold exists and its deadline has passed."""
        if self.payment_hold_deadline is None:
            return False
        now = now or datetime.now(timezone.utc)
        deadline = self.payment_hold_deadline
        if deadline.tzinfo is None:
            # SQLite drops tzinfo on round trip; stored values are UTC
            deadline = deadline.replace(tzinfo=timezone.utc)
        return deadline <= now

    def __repr__(self) -> str:
        return (
            f"<Invoice {self.invoice_number}: reservation={self.reservation_id}, "
            f"amount={self.amount} {self.currency}, status={self.status}, "
            f"method={self.settlement_method}>"
        )


# A reservation can carry at most one PENDING, PAID or OVERDUE invoice.
_ACTIVE_INVOICE_PREDICATE = (
    "status IN ('PENDING', 'PAID', 'OVERDUE') AND reservation_id IS NOT NULL"
)
Index(
    "uq_invoices_active_per_reservation",
    Invoice.reservation_id,
    unique=True,
    postgresql_where=text(_ACTIVE_INVOICE_PREDICATE),
    sqlite_where=text(_ACTIVE_INVOICE_PREDICATE),
)


class InvoiceItem(Base):
    """Single line on an invoice."""

    __tablename__ = "invoice_items"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    invoice_id = Column(
        String(26), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    description = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    item_type = Column(String(30), nullable=False, default="lesson")

    invoice = relationship("Invoice", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_invoice_items_unit_price_non_negative"),
    )

    @staticmethod
    def line_total(quantity: int, unit_price: Decimal) -> Decimal:
        return (Decimal(quantity) * unit_price).quantize(Decimal("0.01"))

    def __repr__(self) -> str:
        return f"<InvoiceItem {self.description} x{self.quantity} = {self.total_price}>"


class StoredCredit(Base):
    """Pre-paid lesson credits (package purchase) owned by one identity."""

    __tablename__ = "stored_credits"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    identity_id = Column(String(64), nullable=False, index=True)
    lesson_type = Column(String(100), nullable=True)  # None = usable for any lesson type
    credit_type = Column(String(30), nullable=False, default="package")
    credits_remaining = Column(Integer, nullable=False, default=0)
    credits_total = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "credits_remaining >= 0 AND credits_remaining <= credits_total",
            name="ck_stored_credits_remaining_bounds",
        ),
    )

    def covers(self, lesson_type: Optional[str]) -> bool:
        return self.lesson_type is None or self.lesson_type == lesson_type

    def __repr__(self) -> str:
        return (
            f"<StoredCredit {self.id} identity={self.identity_id} "
            f"{self.credits_remaining}/{self.credits_total} ({self.lesson_type or 'any'})>"
        )
