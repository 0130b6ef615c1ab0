# backend/spacebook/routes/v1/webhooks_stripe.py
"""
Stripe webhook endpoint.

Stripe retries on any non-2xx response. Signature and payload errors are
answered with 400 and nothing is recorded; events that verified but could
not be applied are recorded as failed and acknowledged with 200.
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from ...api.dependencies import get_services
from ...schemas.payment import WebhookResponse
from ...services.dependencies import SettlementServices

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    services: SettlementServices = Depends(get_services),
) -> WebhookResponse:
    payload = await request.body()
    result = await asyncio.to_thread(services.webhooks.process, payload, stripe_signature)
    return WebhookResponse(
        status=result.status, event_type=result.event_type, event_id=result.event_id
    )
