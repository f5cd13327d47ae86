# backend/lessonbook/services/notification_provider.py
"""
Notification provider shim used by the outbox dispatcher.

Message rendering and delivery belong to an external notification service;
this shim picks the message kind for an event and logs the hand-off. A
test-only environment flag (`NOTIFICATION_PROVIDER_RAISE_ON`) can be used to
trigger transient failures.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from typing import Any, Dict, Optional

from ..core.constants import (
    CANCEL_REASON_CUSTOMER,
    CANCEL_REASON_PAYMENT_TIMEOUT,
    CANCEL_REASON_STAFF_DECLINE,
)

logger = logging.getLogger(__name__)


class NotificationProviderTemporaryError(RuntimeError):
    """Exception raised to simulate transient provider failures."""


# Cancellation messages differ by cause
_CANCELLATION_MESSAGES = {
    CANCEL_REASON_PAYMENT_TIMEOUT: "booking_expired_unpaid",
    CANCEL_REASON_STAFF_DECLINE: "booking_declined",
    CANCEL_REASON_CUSTOMER: "booking_cancelled_by_customer",
}

_EVENT_MESSAGES = {
    "reservation.held": "booking_received",
    "reservation.confirmed": "booking_confirmed",
    "invoice.paid": "payment_receipt",
    "invoice.failed": "payment_failed",
    "invoice.cancelled": "invoice_cancelled",
    "payment_hold.expired": "booking_expired_unpaid",
}


def _should_raise(event_type: str, idempotency_key: str) -> bool:
    """Determine whether to simulate a provider failure."""
    raw = os.getenv("NOTIFICATION_PROVIDER_RAISE_ON")
    if not raw:
        return False

    tokens = {token.strip() for token in raw.split(",") if token.strip()}
    if not tokens:
        return False

    return "*" in tokens or event_type in tokens or idempotency_key in tokens


def message_kind_for(event_type: str, payload: Dict[str, Any]) -> Optional[str]:
    """Which customer message an event produces, if any."""
    if event_type == "reservation.cancelled":
        reason = str(payload.get("reason") or "")
        return _CANCELLATION_MESSAGES.get(reason, "booking_cancelled")
    return _EVENT_MESSAGES.get(event_type)


@dataclass(slots=True)
class NotificationDispatchResult:
    """Metadata describing a provider hand-off."""

    idempotency_key: str
    event_type: str
    message_kind: Optional[str]


class NotificationProvider:
    """
    Lightweight provider shim.

    Usage:
        provider = NotificationProvider()
        provider.send(event_type="reservation.cancelled", payload={...}, idempotency_key="...")
    """

    def send(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> NotificationDispatchResult:
        if not idempotency_key:
            raise ValueError("idempotency_key is required for notification dispatch")

        if _should_raise(event_type, idempotency_key):
            logger.warning(
                "Simulating provider failure for %s (%s)",
                event_type,
                idempotency_key,
            )
            raise NotificationProviderTemporaryError(
                f"Simulated transient failure for {event_type}"
            )

        payload = payload or {}
        kind = message_kind_for(event_type, payload)
        logger.info(
            "Dispatching notification %s kind=%s key=%s payload=%s",
            event_type,
            kind,
            idempotency_key,
            json.dumps(payload, sort_keys=True)[:500],
        )
        return NotificationDispatchResult(
            idempotency_key=idempotency_key,
            event_type=event_type,
            message_kind=kind,
        )
