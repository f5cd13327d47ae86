"""Hosted checkout gateway adapters (Stripe Checkout and an in-process fake)."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, Dict, Optional, Protocol
from uuid import uuid4

from pydantic import SecretStr
import stripe

from ..core.config import settings

logger = logging.getLogger(__name__)


class CheckoutGatewayError(RuntimeError):
    """Raised when the gateway cannot create a checkout session."""


class CheckoutOutcome(str, Enum):
    """What an external gateway status means for the invoice."""

    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"


_PAID_STATUSES = {"paid", "complete", "completed", "succeeded", "no_payment_required"}
_FAILED_STATUSES = {"failed", "payment_failed", "expired", "canceled", "cancelled", "declined"}


def map_external_status(external_status: str) -> CheckoutOutcome:
    """Map a gateway status string to an outcome; unknown statuses leave the invoice pending."""
    normalized = (external_status or "").strip().lower()
    if normalized in _PAID_STATUSES:
        return CheckoutOutcome.PAID
    if normalized in _FAILED_STATUSES:
        return CheckoutOutcome.FAILED
    return CheckoutOutcome.PENDING


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


class HostedCheckoutGateway(Protocol):
    def create_session(
        self,
        *,
        invoice_id: str,
        invoice_number: str,
        amount: Decimal,
        currency: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        ...


def _minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1")))


class StripeCheckoutGateway:
    """Creates Stripe Checkout sessions for invoices."""

    def __init__(
        self,
        *,
        api_key: str | SecretStr,
        success_url: str,
        cancel_url: str,
    ) -> None:
        secret_value = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        if not secret_value:
            raise ValueError("Stripe secret key must be provided")
        stripe.api_key = secret_value
        stripe.max_network_retries = 1
        self._success_url = success_url
        self._cancel_url = cancel_url

    def create_session(
        self,
        *,
        invoice_id: str,
        invoice_number: str,
        amount: Decimal,
        currency: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        params: Dict[str, Any] = {
            "mode": "payment",
            "client_reference_id": invoice_id,
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": _minor_units(amount),
                        "product_data": {"name": f"Invoice {invoice_number}"},
                    },
                }
            ],
            "metadata": {"invoice_id": invoice_id, "invoice_number": invoice_number},
            "success_url": self._success_url.format(invoice_id=invoice_id),
            "cancel_url": self._cancel_url.format(invoice_id=invoice_id),
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(
                idempotency_key=f"invoice-checkout-{invoice_id}", **params
            )
        except stripe.StripeError as exc:
            logger.error(
                "Stripe error creating checkout session for invoice %s: %s",
                invoice_id,
                str(exc),
            )
            raise CheckoutGatewayError("Failed to create checkout session") from exc

        logger.info(
            "Created Stripe checkout session",
            extra={"invoice_id": invoice_id, "session_id": session.id},
        )
        return CheckoutSession(session_id=session.id, redirect_url=str(session.url))


class FakeCheckoutGateway:
    """In-memory stand-in that mimics a hosted checkout for non-production flows."""

    def __init__(self, base_url: str = "https://checkout.invalid/pay") -> None:
        self._base_url = base_url.rstrip("/")
        self._logger = logging.getLogger(self.__class__.__name__)
        self.sessions: Dict[str, Dict[str, Any]] = {}

    def create_session(
        self,
        *,
        invoice_id: str,
        invoice_number: str,
        amount: Decimal,
        currency: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        session_id = f"cs_fake_{uuid4().hex}"
        self.sessions[session_id] = {
            "invoice_id": invoice_id,
            "invoice_number": invoice_number,
            "amount": str(amount),
            "currency": currency,
            "customer_email": customer_email,
        }
        self._logger.debug(
            "Fake checkout session created",
            extra={"invoice_id": invoice_id, "session_id": session_id},
        )
        return CheckoutSession(session_id=session_id, redirect_url=f"{self._base_url}/{session_id}")


def get_checkout_gateway() -> HostedCheckoutGateway:
    """Gateway selected by configuration."""
    if settings.checkout_fake or settings.stripe_secret_key is None:
        return FakeCheckoutGateway()
    return StripeCheckoutGateway(
        api_key=settings.stripe_secret_key,
        success_url=settings.checkout_success_url,
        cancel_url=settings.checkout_cancel_url,
    )
