# backend/spacebook/routes/v1/internal_jobs.py
"""
Scheduler-triggered jobs.

Authenticated with ``Authorization: Bearer <CRON_SECRET>``. Celery beat runs
the same jobs; either trigger is safe to repeat.
"""

from fastapi import APIRouter, Depends

from ...api.dependencies import get_services, require_cron_secret
from ...schemas.payment import BookingJobResponse, TaxConfigResponse
from ...services.dependencies import SettlementServices

router = APIRouter(
    prefix="/internal/jobs",
    tags=["internal"],
    dependencies=[Depends(require_cron_secret)],
)


@router.post("/booking-notifications", response_model=BookingJobResponse)
def run_booking_notifications(
    services: SettlementServices = Depends(get_services),
) -> BookingJobResponse:
    result = services.booking_job.run()
    return BookingJobResponse(**result.to_dict())


@router.post("/revenue-reconciliation", response_model=TaxConfigResponse)
def run_revenue_reconciliation(
    services: SettlementServices = Depends(get_services),
) -> TaxConfigResponse:
    config = services.revenue.reconcile_from_gateway()
    return TaxConfigResponse.model_validate(config)
