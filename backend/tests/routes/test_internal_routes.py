# backend/tests/routes/test_internal_routes.py
"""HTTP tests for internal jobs, admin endpoints, health and metrics."""

from unittest.mock import MagicMock

from pydantic import SecretStr
import pytest

from spacebook.core.config import settings
from tests.helpers import sign_webhook, webhook_body

JOBS = "/api/v1/internal/jobs"


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {settings.cron_secret.get_secret_value()}"}


class TestInternalJobs:
    def test_booking_notifications(self, client, cron_headers):
        response = client.post(f"{JOBS}/booking-notifications", headers=cron_headers)

        assert response.status_code == 200
        assert response.json()["released"] == 0

    def test_revenue_reconciliation(self, client, cron_headers, stripe_client):
        page = MagicMock()
        page.auto_paging_iter.return_value = iter(
            [{"status": "succeeded", "currency": "cad", "amount": 5000, "amount_refunded": 0}]
        )
        stripe_client.charges.list.return_value = page

        response = client.post(f"{JOBS}/revenue-reconciliation", headers=cron_headers)

        assert response.status_code == 200
        assert response.json()["revenue_cents"] == 5000
        assert response.json()["tax_mode"] == "off"

    def test_missing_secret_is_401(self, client):
        assert client.post(f"{JOBS}/booking-notifications").status_code == 401

    def test_wrong_secret_is_401(self, client):
        response = client.post(
            f"{JOBS}/booking-notifications", headers={"Authorization": "Bearer nope"}
        )

        assert response.status_code == 401

    def test_unconfigured_secret_disables_jobs(self, client, cron_headers, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", SecretStr(""))

        response = client.post(f"{JOBS}/booking-notifications", headers=cron_headers)

        assert response.status_code == 403


class TestAdminRoutes:
    def test_tax_config_requires_admin(self, client, auth_headers, renter_id):
        response = client.get("/api/v1/admin/tax-config", headers=auth_headers(renter_id))

        assert response.status_code == 403

    def test_tax_config(self, client, auth_headers, renter_id):
        response = client.get(
            "/api/v1/admin/tax-config", headers=auth_headers(renter_id, role="admin")
        )

        assert response.status_code == 200
        body = response.json()
        assert body["tax_mode"] == "off"
        assert body["threshold_cents"] == settings.small_supplier_threshold_cents

    def test_failed_webhook_events(self, client, auth_headers, renter_id):
        body = webhook_body("evt_broken", "payment_intent.succeeded", {"id": "pi_missing"})
        client.post(
            "/api/v1/webhooks/stripe",
            content=body.encode(),
            headers={
                "Stripe-Signature": sign_webhook(
                    body, settings.stripe_webhook_secret.get_secret_value()
                )
            },
        )

        response = client.get(
            "/api/v1/admin/webhook-events/failed", headers=auth_headers(renter_id, role="admin")
        )

        assert response.status_code == 200
        events = response.json()
        assert [e["event_id"] for e in events] == ["evt_broken"]
        assert events[0]["processing_error"].startswith("NotFoundException")


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "size" in response.json()["database_pool"]


def test_metrics_exposes_request_counters(client):
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert b"spacebook_http_request_duration_seconds_count" in response.content
