# backend/spacebook/main.py
"""
Spacebook settlement API.

Mounts the v1 routers under /api/v1 and exposes /health and /metrics.
"""

import logging

from fastapi import APIRouter, FastAPI, Response
from pydantic import BaseModel

from .core.config import settings
from .database import get_db_pool_status
from .errors import register_error_handlers
from .middleware.prometheus_middleware import PrometheusMiddleware
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import admin, bookings, internal_jobs, payments, webhooks_stripe

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

API_TITLE = "Spacebook API"
API_VERSION = "1.0.0"


class HealthResponse(BaseModel):
    status: str
    environment: str
    database_pool: dict[str, int]


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description="Booking reservation and payment settlement",
        version=API_VERSION,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
    )
    register_error_handlers(app)
    app.add_middleware(PrometheusMiddleware)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(bookings.router)
    api_v1.include_router(payments.router)
    api_v1.include_router(webhooks_stripe.router)
    api_v1.include_router(internal_jobs.router)
    api_v1.include_router(admin.router)
    app.include_router(api_v1)

    @app.get("/health", response_model=HealthResponse, include_in_schema=False)
    def health_check() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            environment=settings.environment,
            database_pool=get_db_pool_status(),
        )

    @app.get("/metrics", include_in_schema=False)
    def metrics() -> Response:
        return Response(
            content=prometheus_metrics.get_metrics(),
            media_type=prometheus_metrics.get_content_type(),
        )

    logger.info("%s %s initialised (%s)", API_TITLE, API_VERSION, settings.environment)
    return app


app = create_app()
