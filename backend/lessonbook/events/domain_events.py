"""Reservation, invoice and payment hold domain events."""
from dataclasses import asdict, dataclass
from datetime import date, datetime, time
from typing import Any, ClassVar, Dict, Optional


@dataclass
class ReservationHeld:
    """Fired after a reservation is committed in HELD status."""

    event_type: ClassVar[str] = "reservation.held"

    reservation_id: str
    resource_id: str
    scheduled_date: date
    start_time: time
    end_time: time
    booked_by: Optional[str]

    @property
    def aggregate_id(self) -> str:
        return self.reservation_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReservationConfirmed:
    """Fired when a reservation moves HELD -> CONFIRMED."""

    event_type: ClassVar[str] = "reservation.confirmed"

    reservation_id: str
    confirmed_at: datetime
    settlement_method: Optional[str] = None

    @property
    def aggregate_id(self) -> str:
        return self.reservation_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReservationCancelled:
    """Fired after a reservation is cancelled.

    ``reason`` distinguishes a payment timeout from a staff decline or a
    customer cancellation; downstream messaging differs for each.
    """

    event_type: ClassVar[str] = "reservation.cancelled"

    reservation_id: str
    reason: str
    initiator: Optional[str]
    cancelled_at: datetime
    credit_reimbursed: bool = False

    @property
    def aggregate_id(self) -> str:
        return self.reservation_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InvoicePaid:
    """Fired when an invoice reaches PAID."""

    event_type: ClassVar[str] = "invoice.paid"

    invoice_id: str
    reservation_id: Optional[str]
    settlement_method: str
    amount: str
    currency: str
    paid_at: datetime

    @property
    def aggregate_id(self) -> str:
        return self.invoice_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InvoiceFailed:
    """Fired when the hosted checkout gateway reports a failed payment."""

    event_type: ClassVar[str] = "invoice.failed"

    invoice_id: str
    external_status: str

    @property
    def aggregate_id(self) -> str:
        return self.invoice_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InvoiceCancelled:
    """Fired when staff or the customer cancels an invoice."""

    event_type: ClassVar[str] = "invoice.cancelled"

    invoice_id: str
    reservation_id: Optional[str]
    reason: str
    cancelled_at: datetime

    @property
    def aggregate_id(self) -> str:
        return self.invoice_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PaymentHoldExpired:
    """Fired when an unpaid hold lapses and its slot is released."""

    event_type: ClassVar[str] = "payment_hold.expired"

    invoice_id: str
    reservation_id: Optional[str]
    deadline: datetime
    expired_at: datetime
    reason: str = "payment_timeout"

    @property
    def aggregate_id(self) -> str:
        return self.invoice_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
