# backend/tests/unit/services/test_notification_provider.py
"""Tests for the outbox notification provider."""

import json

import httpx
import pytest

from spacebook.repositories.event_outbox_repository import NotificationDeliveryRepository
from spacebook.services.notification_provider import (
    NotificationProvider,
    NotificationProviderPermanentError,
    NotificationProviderTemporaryError,
)

URL = "https://messaging.internal/events"


def _provider(session_factory, handler=None):
    transport = httpx.MockTransport(handler) if handler else None
    return NotificationProvider(
        session_factory, webhook_url=URL if handler else "", timeout=1.0, transport=transport
    )


def _delivered(session_factory, key):
    with session_factory() as session:
        return NotificationDeliveryRepository(session).get_by_idempotency_key(key)


class TestNotificationProvider:
    def test_posts_event_with_idempotency_header(self, session_factory):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202)

        result = _provider(session_factory, handler).send(
            "booking.confirmed", {"booking_id": "b1"}, idempotency_key="booking.confirmed:b1"
        )

        assert result.delivered
        assert seen[0].headers["Idempotency-Key"] == "booking.confirmed:b1"
        assert json.loads(seen[0].content) == {
            "event_type": "booking.confirmed",
            "idempotency_key": "booking.confirmed:b1",
            "payload": {"booking_id": "b1"},
        }
        assert _delivered(session_factory, "booking.confirmed:b1") is not None

    def test_delivered_key_is_never_posted_again(self, session_factory):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        provider = _provider(session_factory, handler)
        provider.send("booking.paid", {}, idempotency_key="k1")
        second = provider.send("booking.paid", {}, idempotency_key="k1")

        assert second.duplicate
        assert not second.delivered
        assert len(calls) == 1

    def test_without_url_the_event_is_logged(self, session_factory):
        result = _provider(session_factory).send("ops.alert", {"alert": "x"}, idempotency_key="k")

        assert result.delivered
        assert _delivered(session_factory, "k") is not None

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_statuses(self, session_factory, status):
        provider = _provider(session_factory, lambda request: httpx.Response(status))

        with pytest.raises(NotificationProviderTemporaryError):
            provider.send("booking.paid", {}, idempotency_key="k")

        assert _delivered(session_factory, "k") is None

    def test_rejection_is_permanent(self, session_factory):
        provider = _provider(session_factory, lambda request: httpx.Response(422))

        with pytest.raises(NotificationProviderPermanentError):
            provider.send("booking.paid", {}, idempotency_key="k")

    def test_timeout_is_temporary(self, session_factory):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(NotificationProviderTemporaryError):
            _provider(session_factory, handler).send("booking.paid", {}, idempotency_key="k")

    def test_idempotency_key_is_required(self, session_factory):
        with pytest.raises(ValueError):
            _provider(session_factory).send("booking.paid", {})
