# backend/spacebook/routes/v1/admin.py
"""
Admin read endpoints.

Endpoints:
    GET /tax-config - Current revenue counter and tax mode
    GET /webhook-events/failed - Recently failed webhook deliveries for review
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import CurrentUser, get_services, require_admin
from ...schemas.payment import TaxConfigResponse, WebhookEventResponse
from ...services.dependencies import SettlementServices

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/tax-config", response_model=TaxConfigResponse)
def get_tax_config(
    services: SettlementServices = Depends(get_services),
    admin: CurrentUser = Depends(require_admin),
) -> TaxConfigResponse:
    return TaxConfigResponse.model_validate(services.revenue.get_tax_config())


@router.get("/webhook-events/failed", response_model=List[WebhookEventResponse])
def list_failed_webhook_events(
    since_hours: int = Query(24, ge=1, le=24 * 30),
    limit: int = Query(50, ge=1, le=200),
    services: SettlementServices = Depends(get_services),
    admin: CurrentUser = Depends(require_admin),
) -> List[WebhookEventResponse]:
    events = services.webhooks.webhook_repository.list_failed(since_hours=since_hours, limit=limit)
    return [WebhookEventResponse.model_validate(e) for e in events]
