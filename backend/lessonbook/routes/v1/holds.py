# backend/lessonbook/routes/v1/holds.py
"""
Payment hold sweep trigger for external schedulers.

Beat runs the sweep on its own; this endpoint lets a platform cron job do
the same when no worker is deployed. Requests must carry the shared
``X-Cron-Secret`` header.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from ...api.dependencies import get_payment_hold_service
from ...core.config import settings
from ...schemas.invoice import SweepResponse
from ...services.payment_hold_service import PaymentHoldService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["holds-v1"], include_in_schema=False)


def _verify_cron_secret(provided: Optional[str]) -> None:
    secret = settings.cron_secret.get_secret_value()
    if not secret:
        raise HTTPException(status_code=403, detail="sweep endpoint disabled")
    if not hmac.compare_digest((provided or "").encode(), secret.encode()):
        raise HTTPException(status_code=403, detail="invalid cron secret")


@router.post("/sweep", response_model=SweepResponse)
def sweep_expired_holds(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    x_cron_secret: Optional[str] = Header(None, alias="X-Cron-Secret"),
    payment_hold_service: PaymentHoldService = Depends(get_payment_hold_service),
) -> SweepResponse:
    _verify_cron_secret(x_cron_secret)
    result = payment_hold_service.sweep_expired_holds(limit=limit)
    return SweepResponse(
        examined=result.examined,
        expired=result.expired,
        skipped=result.skipped,
        failed=result.failed,
        expired_invoice_ids=result.expired_invoice_ids,
    )
