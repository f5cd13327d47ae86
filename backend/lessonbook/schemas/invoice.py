# backend/lessonbook/schemas/invoice.py
"""Invoice and settlement schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.constants import MAX_REASON_LENGTH
from ..models.invoice import PayerTrustLevel
from .base import Money, StandardizedModel, StrictRequestModel


class InvoiceLineItemIn(StrictRequestModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(1, ge=1, le=1000)
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    item_type: str = Field("lesson", max_length=30)


class InvoiceCreate(StrictRequestModel):
    """
    Invoice request.

    ``amount`` is optional; when supplied it must equal the sum of the line
    items, which is what the server stores either way.
    """

    reservation_id: Optional[str] = None
    line_items: List[InvoiceLineItemIn] = Field(..., min_length=1)
    payer_trust_level: PayerTrustLevel = PayerTrustLevel.GUEST
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    customer_identity: Optional[str] = Field(None, max_length=64)
    customer_name: Optional[str] = Field(None, max_length=255)
    customer_email: Optional[str] = Field(None, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=50)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class ConfirmInstantMobileRequest(StrictRequestModel):
    payment_reference: Optional[str] = Field(None, max_length=255)


class HostedCheckoutReconcileRequest(StrictRequestModel):
    external_status: str = Field(..., min_length=1, max_length=50)


class StoredCreditSettleRequest(StrictRequestModel):
    credit_id: str = Field(..., min_length=1)


class InvoiceCancelRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class InvoiceItemResponse(StandardizedModel):
    id: str
    description: str
    quantity: int
    unit_price: Money
    total_price: Money
    item_type: str


class InvoiceResponse(StandardizedModel):
    id: str
    invoice_number: str
    reservation_id: Optional[str] = None
    amount: Money
    currency: str
    status: str
    settlement_method: str
    payer_trust_level: str
    payment_hold_deadline: Optional[datetime] = None
    due_date: Optional[date] = None
    external_status: Optional[str] = None
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[InvoiceItemResponse] = Field(default_factory=list)


class HostedCheckoutResponse(StandardizedModel):
    invoice_id: str
    redirect_url: str
    external_checkout_id: str


class SweepResponse(StandardizedModel):
    examined: int
    expired: int
    skipped: int
    failed: int
    expired_invoice_ids: List[str] = Field(default_factory=list)
