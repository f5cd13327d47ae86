# backend/lessonbook/services/invoice_service.py
"""
Invoice & settlement state machine for the lessonbook engine.

Statuses and legal moves::

    PENDING -> PAID | OVERDUE | CANCELLED | ERROR
    OVERDUE -> PAID | CANCELLED
    ERROR   -> CANCELLED

PAID and CANCELLED are terminal. Every move is a guarded UPDATE on the
invoice row, so concurrent callers (a settlement racing the hold sweep,
duplicate gateway callbacks, two redemptions of the same credit) resolve
to "first commit wins" and the others observe the new state.

Customer-driven settlement re-checks the payment hold deadline before it
is honored; staff confirmations and gateway reconciliation only require the
invoice to still be payable.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import CANCEL_REASON_STAFF_DECLINE, MAX_REASON_LENGTH
from ..core.exceptions import (
    ActiveInvoiceExistsException,
    InsufficientCreditException,
    InvalidStateException,
    NotFoundException,
    PaymentHoldExpiredException,
    ServiceException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, get_school_today
from ..core.ulid_helper import generate_ulid
from ..events import EventPublisher, InvoiceCancelled, InvoiceFailed, InvoicePaid
from ..integrations.checkout_gateway import (
    CheckoutGatewayError,
    CheckoutOutcome,
    CheckoutSession,
    HostedCheckoutGateway,
    get_checkout_gateway,
    map_external_status,
)
from ..models.invoice import Invoice, InvoiceItem, InvoiceStatus, PayerTrustLevel, SettlementMethod
from ..models.reservation import ReservationStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.invoice import InvoiceLineItemIn
from .base import BaseService
from .payment_hold_service import PaymentHoldService
from .reservation_service import ReservationService

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE)


class InvoiceService(BaseService):
    """Creates invoices and drives them through their settlement methods."""

    def __init__(
        self,
        db: Session,
        reservation_service: Optional[ReservationService] = None,
        payment_hold_service: Optional[PaymentHoldService] = None,
        checkout_gateway: Optional[HostedCheckoutGateway] = None,
        event_publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_invoice_repository(db)
        self.reservation_repository = RepositoryFactory.create_reservation_repository(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)
        self.event_publisher = event_publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )
        self.reservation_service = reservation_service or ReservationService(
            db, event_publisher=self.event_publisher
        )
        self.payment_hold_service = payment_hold_service or PaymentHoldService(
            db,
            reservation_service=self.reservation_service,
            event_publisher=self.event_publisher,
        )
        self._checkout_gateway = checkout_gateway

    @property
    def checkout_gateway(self) -> HostedCheckoutGateway:
        if self._checkout_gateway is None:
            self._checkout_gateway = get_checkout_gateway()
        return self._checkout_gateway

    def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.repository.get_fresh(invoice_id)
        if invoice is None:
            raise NotFoundException(f"Invoice {invoice_id} not found")
        return invoice

    # ----------------------------------------------------------------- create

    @BaseService.measure_operation("create_invoice")
    def create_invoice(
        self,
        reservation_id: Optional[str],
        line_items: Sequence[InvoiceLineItemIn],
        payer_trust_level: PayerTrustLevel = PayerTrustLevel.GUEST,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        customer_identity: Optional[str] = None,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Invoice:
        """
        Create a PENDING invoice for a reservation (or a custom invoice without one).

        The stored amount is always the sum of the line items. A caller-supplied
        ``amount`` is only checked against that sum.

        Raises:
            ValidationException: No line items, or the supplied amount disagrees
            NotFoundException: Unknown reservation
            InvalidStateException: Reservation is not HELD/CONFIRMED
            ActiveInvoiceExistsException: Reservation already has a PENDING, PAID or OVERDUE invoice
        """
        if not line_items:
            raise ValidationException("An invoice needs at least one line item")

        totals = [InvoiceItem.line_total(item.quantity, item.unit_price) for item in line_items]
        computed = sum(totals, Decimal("0.00"))
        if amount is not None and Decimal(amount).quantize(Decimal("0.01")) != computed:
            raise ValidationException(
                "Invoice amount does not match its line items",
                details={"supplied": str(amount), "computed": str(computed)},
            )

        if reservation_id is not None:
            reservation = self.reservation_repository.get_fresh(reservation_id)
            if reservation is None:
                raise NotFoundException(f"Reservation {reservation_id} not found")
            if not reservation.is_active:
                raise InvalidStateException(
                    "Invoices can only be created for held or confirmed reservations",
                    current_status=reservation.status,
                )
            existing = self.repository.get_active_for_reservation(reservation_id)
            if existing is not None:
                raise ActiveInvoiceExistsException(reservation_id, existing.id)
            customer_identity = customer_identity or reservation.booked_by_identity

        now = ensure_utc(now)
        hold_deadline = None
        due_date = None
        if payer_trust_level.requires_payment_hold:
            hold_deadline = now + timedelta(minutes=settings.payment_hold_minutes)
        else:
            due_date = get_school_today() + timedelta(days=settings.invoice_due_days)

        with self.transaction():
            try:
                invoice = self.repository.create(
                    invoice_number=f"INV-{now:%Y%m%d}-{generate_ulid()[-6:]}",
                    reservation_id=reservation_id,
                    customer_identity=customer_identity,
                    customer_name=customer_name,
                    customer_email=customer_email,
                    customer_phone=customer_phone,
                    amount=computed,
                    currency=(currency or settings.default_currency).upper(),
                    status=InvoiceStatus.PENDING.value,
                    settlement_method=SettlementMethod.UNSET.value,
                    payer_trust_level=payer_trust_level.value,
                    payment_hold_deadline=hold_deadline,
                    due_date=due_date,
                )
            except IntegrityError as exc:
                # invoice_number is the only other unique column
                if reservation_id is None or "invoice_number" in str(exc.orig):
                    raise ServiceException("Failed to create invoice") from exc
                raise ActiveInvoiceExistsException(reservation_id) from exc

            for item, total in zip(line_items, totals):
                self.repository.add_item(
                    invoice.id,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=total,
                    item_type=item.item_type,
                )

        self.log_operation(
            "create_invoice",
            invoice_id=invoice.id,
            reservation_id=reservation_id,
            payer_trust_level=payer_trust_level.value,
            has_payment_hold=hold_deadline is not None,
        )
        return self.get_invoice(invoice.id)

    # ------------------------------------------------------------- settlement

    @BaseService.measure_operation("confirm_instant_mobile")
    def confirm_instant_mobile(
        self, invoice_id: str, payment_reference: Optional[str] = None
    ) -> Invoice:
        """
        Staff confirmation of a verified push payment. Idempotent.

        Also confirms on-location payments collected at lesson time; those keep
        their ON_LOCATION settlement method.
        """
        invoice = self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID.value:
            return invoice
        self._require_payable(invoice)

        method = (
            SettlementMethod.ON_LOCATION
            if invoice.settlement_method == SettlementMethod.ON_LOCATION.value
            else SettlementMethod.INSTANT_MOBILE
        )
        values = {"payment_reference": payment_reference} if payment_reference else {}
        with self.transaction():
            paid = self._pay_within_transaction(invoice, method, **values)

        invoice = self.get_invoice(invoice_id)
        if not paid and invoice.status != InvoiceStatus.PAID.value:
            raise InvalidStateException(
                "Invoice can no longer be paid", current_status=invoice.status
            )
        return invoice

    @BaseService.measure_operation("begin_hosted_checkout")
    def begin_hosted_checkout(
        self, invoice_id: str, now: Optional[datetime] = None
    ) -> CheckoutSession:
        """
        Start a hosted checkout session and return where to send the customer.

        Phases:
            1. Validate the invoice and its hold (read only)
            2. Create the gateway session (no transaction held open)
            3. Record the session on the invoice with a guarded update
        """
        now = ensure_utc(now)

        # Phase 1
        invoice = self.get_invoice(invoice_id)
        if invoice.status != InvoiceStatus.PENDING.value:
            raise InvalidStateException(
                "Only pending invoices can be paid by hosted checkout",
                current_status=invoice.status,
            )
        self._raise_if_hold_lapsed(invoice, now)
        invoice_number = invoice.invoice_number
        amount = Decimal(invoice.amount)
        currency = invoice.currency
        customer_email = invoice.customer_email
        self.db.rollback()

        # Phase 2
        try:
            session = self.checkout_gateway.create_session(
                invoice_id=invoice_id,
                invoice_number=invoice_number,
                amount=amount,
                currency=currency,
                customer_email=customer_email,
            )
        except CheckoutGatewayError as exc:
            raise ServiceException(
                "Could not start the payment, please try again",
                code="CHECKOUT_UNAVAILABLE",
            ) from exc

        # Phase 3
        with self.transaction():
            recorded = self.repository.update_if_status(
                invoice_id,
                (InvoiceStatus.PENDING,),
                hold_active_at=now,
                settlement_method=SettlementMethod.HOSTED_CHECKOUT.value,
                external_checkout_id=session.session_id,
                external_status="open",
            )
        if not recorded:
            invoice = self.get_invoice(invoice_id)
            self._raise_if_hold_lapsed(invoice, now)
            raise InvalidStateException(
                "Invoice changed while the checkout was being created",
                current_status=invoice.status,
            )

        self.log_operation(
            "begin_hosted_checkout", invoice_id=invoice_id, session_id=session.session_id
        )
        return session

    @BaseService.measure_operation("reconcile_hosted_checkout")
    def reconcile_hosted_checkout(self, invoice_id: str, external_status: str) -> Invoice:
        """
        Apply a gateway status to the invoice.

        Paid statuses move the invoice to PAID, failures to ERROR, anything else
        only records the external status. Gateways deliver at least once, so
        repeating a status that was already applied is a no-op.
        """
        outcome = map_external_status(external_status)
        invoice = self.get_invoice(invoice_id)

        if outcome is CheckoutOutcome.PAID:
            if invoice.status == InvoiceStatus.PAID.value:
                return invoice
            self._require_payable(invoice)
            with self.transaction():
                paid = self._pay_within_transaction(
                    invoice, SettlementMethod.HOSTED_CHECKOUT, external_status=external_status
                )
            invoice = self.get_invoice(invoice_id)
            if not paid and invoice.status != InvoiceStatus.PAID.value:
                self.logger.warning(
                    "Gateway reported payment for an invoice that is no longer payable",
                    extra={"invoice_id": invoice_id, "status": invoice.status},
                )
                raise InvalidStateException(
                    "Invoice can no longer be paid", current_status=invoice.status
                )
            return invoice

        if outcome is CheckoutOutcome.FAILED:
            if invoice.status != InvoiceStatus.PENDING.value:
                return invoice
            with self.transaction():
                failed = self.repository.transition(
                    invoice_id, InvoiceStatus.ERROR, external_status=external_status
                )
                prometheus_metrics.record_invoice_transition(InvoiceStatus.ERROR.value, failed)
                if failed:
                    self.event_publisher.publish(
                        InvoiceFailed(invoice_id=invoice_id, external_status=external_status)
                    )
            return self.get_invoice(invoice_id)

        with self.transaction():
            self.repository.update_if_status(
                invoice_id, (InvoiceStatus.PENDING,), external_status=external_status
            )
        return self.get_invoice(invoice_id)

    def reconcile_checkout_session(self, external_checkout_id: str, external_status: str) -> Invoice:
        """Gateway callbacks identify the invoice by checkout session id."""
        invoice = self.repository.get_by_external_checkout_id(external_checkout_id)
        if invoice is None:
            raise NotFoundException(f"No invoice for checkout session {external_checkout_id}")
        return self.reconcile_hosted_checkout(invoice.id, external_status)

    @BaseService.measure_operation("settle_with_stored_credit")
    def settle_with_stored_credit(
        self, invoice_id: str, credit_id: str, now: Optional[datetime] = None
    ) -> Invoice:
        """
        Pay an invoice with one unit of stored credit.

        The credit debit and the PAID transition commit together. Concurrent
        redemptions of a credit's last unit cannot both succeed: the loser's
        guarded decrement matches no row and it fails with InsufficientCredit.
        """
        now = ensure_utc(now)
        invoice = self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID.value and invoice.credit_id == credit_id:
            return invoice
        self._require_payable(invoice)
        self._raise_if_hold_lapsed(invoice, now)

        credit = self.credit_repository.get_by_id(credit_id)
        if credit is None:
            raise InsufficientCreditException(credit_id)
        if invoice.customer_identity and credit.identity_id != invoice.customer_identity:
            raise ValidationException("Credit belongs to another customer")
        if invoice.reservation is not None and not credit.covers(invoice.reservation.lesson_type):
            raise ValidationException("Credit cannot be used for this lesson type")

        try:
            with self.transaction():
                if not self.credit_repository.consume_one(credit_id):
                    raise InsufficientCreditException(credit_id)
                if not self._pay_within_transaction(
                    invoice,
                    SettlementMethod.STORED_CREDIT,
                    hold_active_at=now,
                    credit_id=credit_id,
                ):
                    raise InvalidStateException("Invoice can no longer be paid")
        except InvalidStateException:
            self._raise_if_hold_lapsed(self.get_invoice(invoice_id), now)
            raise

        self.log_operation("settle_with_stored_credit", invoice_id=invoice_id, credit_id=credit_id)
        return self.get_invoice(invoice_id)

    @BaseService.measure_operation("mark_pay_on_location")
    def mark_pay_on_location(self, invoice_id: str, now: Optional[datetime] = None) -> Invoice:
        """
        Defer payment to the lesson itself.

        The invoice stays PENDING but leaves the payment hold: staff confirm the
        payment later through ``confirm_instant_mobile``. The reservation is
        confirmed now since a payment method has been accepted.
        """
        now = ensure_utc(now)
        invoice = self.get_invoice(invoice_id)
        if (
            invoice.status == InvoiceStatus.PENDING.value
            and invoice.settlement_method == SettlementMethod.ON_LOCATION.value
        ):
            return invoice
        self._require_payable(invoice)
        self._raise_if_hold_lapsed(invoice, now)

        try:
            with self.transaction():
                if not self.repository.update_if_status(
                    invoice_id,
                    PAYABLE_STATUSES,
                    hold_active_at=now,
                    settlement_method=SettlementMethod.ON_LOCATION.value,
                    payment_hold_deadline=None,
                ):
                    raise InvalidStateException("Invoice can no longer be settled")
                if invoice.reservation_id:
                    self._confirm_reservation(invoice.reservation_id, SettlementMethod.ON_LOCATION)
        except InvalidStateException:
            self._raise_if_hold_lapsed(self.get_invoice(invoice_id), now)
            raise

        self.log_operation("mark_pay_on_location", invoice_id=invoice_id)
        return self.get_invoice(invoice_id)

    # ---------------------------------------------------------- cancellation

    @BaseService.measure_operation("cancel_invoice")
    def cancel_invoice(
        self,
        invoice_id: str,
        reason: Optional[str] = None,
        initiator: Optional[str] = None,
        *,
        release_reservation: bool = True,
    ) -> Invoice:
        """Staff decline. Idempotent; PAID invoices cannot be cancelled."""
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise ValidationException(f"Reason must be at most {MAX_REASON_LENGTH} characters")

        invoice = self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            return invoice
        if invoice.status == InvoiceStatus.PAID.value:
            raise InvalidStateException(
                "Paid invoices cannot be cancelled", current_status=invoice.status
            )

        reason = reason or CANCEL_REASON_STAFF_DECLINE
        now = datetime.now(timezone.utc)
        with self.transaction():
            cancelled = self.repository.transition(
                invoice_id,
                InvoiceStatus.CANCELLED,
                cancelled_at=now,
                cancellation_reason=reason,
            )
            prometheus_metrics.record_invoice_transition(InvoiceStatus.CANCELLED.value, cancelled)
            if cancelled:
                self.event_publisher.publish(
                    InvoiceCancelled(
                        invoice_id=invoice_id,
                        reservation_id=invoice.reservation_id,
                        reason=reason,
                        cancelled_at=now,
                    )
                )
                if release_reservation and invoice.reservation_id:
                    self.reservation_service.cancel_within_transaction(
                        invoice.reservation_id, reason=reason, initiator=initiator
                    )

        invoice = self.get_invoice(invoice_id)
        if not cancelled and invoice.status != InvoiceStatus.CANCELLED.value:
            raise InvalidStateException(
                "Invoice can no longer be cancelled", current_status=invoice.status
            )
        return invoice

    @BaseService.measure_operation("mark_overdue_invoices")
    def mark_overdue_invoices(self, limit: Optional[int] = None) -> List[str]:
        """Move trusted PENDING invoices past their due date to OVERDUE."""
        today = get_school_today()
        invoice_ids = self.repository.get_past_due_ids(
            today, limit=limit or settings.hold_sweep_batch_size
        )
        self.db.rollback()

        marked: List[str] = []
        for invoice_id in invoice_ids:
            with self.transaction():
                applied = self.repository.transition(invoice_id, InvoiceStatus.OVERDUE)
            prometheus_metrics.record_invoice_transition(InvoiceStatus.OVERDUE.value, applied)
            if applied:
                marked.append(invoice_id)

        if marked:
            self.logger.info(f"Marked {len(marked)} invoice(s) overdue")
        return marked

    # ---------------------------------------------------------------- helpers

    def _pay_within_transaction(
        self,
        invoice: Invoice,
        method: SettlementMethod,
        *,
        hold_active_at: Optional[datetime] = None,
        **values: object,
    ) -> bool:
        """
        Guarded move to PAID plus confirmation of the HELD reservation.

        Returns False when another writer already made the invoice terminal.
        Raises InvalidState (rolling the payment back) when the reservation was
        cancelled in the meantime.
        """
        now = datetime.now(timezone.utc)
        paid = self.repository.transition(
            invoice.id,
            InvoiceStatus.PAID,
            hold_active_at=hold_active_at,
            paid_at=now,
            settlement_method=method.value,
            **values,
        )
        prometheus_metrics.record_invoice_transition(InvoiceStatus.PAID.value, paid)
        if not paid:
            return False

        if invoice.reservation_id:
            self._confirm_reservation(invoice.reservation_id, method)

        self.event_publisher.publish(
            InvoicePaid(
                invoice_id=invoice.id,
                reservation_id=invoice.reservation_id,
                settlement_method=method.value,
                amount=str(invoice.amount),
                currency=invoice.currency,
                paid_at=now,
            )
        )
        self.logger.info(
            "Invoice paid",
            extra={"invoice_id": invoice.id, "settlement_method": method.value},
        )
        return True

    def _confirm_reservation(self, reservation_id: str, method: SettlementMethod) -> None:
        if self.reservation_service.confirm_within_transaction(reservation_id, method):
            return
        reservation = self.reservation_repository.get_fresh(reservation_id)
        if reservation is None or reservation.status == ReservationStatus.CANCELLED.value:
            raise InvalidStateException(
                "The reservation for this invoice has been cancelled",
                current_status=reservation.status if reservation else None,
            )

    @staticmethod
    def _require_payable(invoice: Invoice) -> None:
        if invoice.status not in {s.value for s in PAYABLE_STATUSES}:
            raise InvalidStateException(
                "Invoice can no longer be paid", current_status=invoice.status
            )

    def _raise_if_hold_lapsed(self, invoice: Invoice, now: datetime) -> None:
        """Expire a lapsed hold on the spot and refuse the settlement."""
        if invoice.status not in (InvoiceStatus.PENDING.value, InvoiceStatus.ERROR.value):
            return
        if not invoice.hold_expired(now):
            return
        deadline = invoice.payment_hold_deadline
        self.payment_hold_service.expire_hold(invoice.id, now, trigger="inline")
        raise PaymentHoldExpiredException(invoice.id, deadline)
