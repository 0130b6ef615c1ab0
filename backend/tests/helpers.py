# backend/tests/helpers.py
"""Shared test helpers: a controllable clock and Stripe webhook signing."""

from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import json
import time
from typing import Any, Optional

import ulid

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock the services accept; tests move it explicitly."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def new_id() -> str:
    return str(ulid.ULID())


def sign_webhook(payload: str, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def webhook_body(event_id: str, event_type: str, obj: dict[str, Any]) -> str:
    return json.dumps(
        {"id": event_id, "type": event_type, "object": "event", "data": {"object": obj}}
    )
