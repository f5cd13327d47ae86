# backend/lessonbook/routes/v1/invoices.py
"""
Invoice and settlement routes - API v1

Endpoints:
    POST / - Create an invoice (starts a payment hold for untrusted payers)
    GET /{invoice_id} - Get invoice details
    POST /{invoice_id}/confirm-instant-mobile - Staff confirm a push payment
    POST /{invoice_id}/hosted-checkout - Start a hosted checkout session
    POST /{invoice_id}/hosted-checkout/reconcile - Apply a gateway status
    POST /checkout-sessions/{session_id}/reconcile - Apply a gateway status by session id
    POST /{invoice_id}/stored-credit - Pay with stored credit
    POST /{invoice_id}/pay-on-location - Defer payment to the lesson
    POST /{invoice_id}/cancel - Staff decline
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, status

from ...api.dependencies import get_invoice_service
from ...api.errors import handle_domain_exception
from ...core.exceptions import DomainException
from ...schemas.invoice import (
    ConfirmInstantMobileRequest,
    HostedCheckoutReconcileRequest,
    HostedCheckoutResponse,
    InvoiceCancelRequest,
    InvoiceCreate,
    InvoiceResponse,
    StoredCreditSettleRequest,
)
from ...services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["invoices-v1"])


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate = Body(...),
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceResponse:
    try:
        invoice = invoice_service.create_invoice(
            payload.reservation_id,
            payload.line_items,
            payer_trust_level=payload.payer_trust_level,
            amount=payload.amount,
            currency=payload.currency,
            customer_identity=payload.customer_identity,
            customer_name=payload.customer_name,
            customer_email=payload.customer_email,
            customer_phone=payload.customer_phone,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return InvoiceResponse.model_validate(invoice)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(
    invoice_id: str,
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceResponse:
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except DomainException as e:
        handle_domain_exception(e)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/confirm-instant-mobile", response_model=InvoiceResponse)
def confirm_instant_mobile(
    invoice_id: str,
    payload: Optional[ConfirmInstantMobileRequest] = Body(None),
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceResponse:
    try:
        invoice = invoice_service.confirm_instant_mobile(
            invoice_id, payment_reference=payload.payment_reference if payload else None
        )
    except DomainException as e:
        handle_domain_exception(e)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/hosted-checkout", response_model=HostedCheckoutResponse)
def begin_hosted_checkout(
    invoice_id: str,
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> HostedCheckoutResponse:
    """Create a checkout session; the client redirects to ``redirect_url``."""
    try:
        session = invoice_service.begin_hosted_checkout(invoice_id)
    except DomainException as e:
        handle_domain_exception(e)
    return HostedCheckoutResponse(
        invoice_id=invoice_id,
        redirect_url=session.redirect_url,
        external_checkout_id=session.session_id,
    )


@router.post("/{invoice_id}/hosted-checkout/reconcile", response_model=InvoiceResponse)
def reconcile_hosted_checkout(
    invoice_id: str,
    payload: HostedCheckoutReconcileRequest = Body(...),
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceResponse:
    try:
        invoice = invoice_service.reconcile_hosted_checkout(invoice_id, payload.external_status)
    except DomainException as e:
        handle_domain_exception(e)
    return InvoiceResponse.model_validate(invoice)


@router.post("/checkout-sessions/{session_id}/reconcile", response_model=InvoiceResponse)
def reconcile_checkout_session(
    session_id: str,
    payload: HostedCheckoutReconcileRequest = Body(...),
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceResponse:
    try:
        invoice = invoice_service.reconcile_checkout_session(session_id, payload.external_status)
    except DomainException as e:
        handle_domain_exception(e)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/stored-credit", response_model=InvoiceResponse)
def settle_with_stored_credit(
    invoice_id: str,
    payload: StoredCreditSettleRequest = Body(...),
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceResponse:
    try:
        invoice = invoice_service.settle_with_stored_credit(invoice_id, payload.credit_id)
    except DomainException as e:
        handle_domain_exception(e)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/pay-on-location", response_model=InvoiceResponse)
def mark_pay_on_location(
    invoice_id: str,
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceResponse:
    try:
        invoice = invoice_service.mark_pay_on_location(invoice_id)
    except DomainException as e:
        handle_domain_exception(e)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
def cancel_invoice(
    invoice_id: str,
    payload: Optional[InvoiceCancelRequest] = Body(None),
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceResponse:
    try:
        invoice = invoice_service.cancel_invoice(
            invoice_id, reason=payload.reason if payload else None
        )
    except DomainException as e:
        handle_domain_exception(e)
    return InvoiceResponse.model_validate(invoice)
