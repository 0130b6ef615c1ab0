# backend/spacebook/services/notification_provider.py
"""
Notification provider used by the outbox dispatcher.

Delivers an outbox event as a JSON POST to ``NOTIFICATION_WEBHOOK_URL`` (the
messaging collaborator renders and sends the actual email/SMS). When no URL
is configured the event is only logged. Delivery is idempotent through the
notification_delivery table: a key that was already delivered is never posted
again.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import json
import logging
from typing import Any, Callable, Dict, Generator, Optional

import httpx
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import SessionLocal
from ..repositories.event_outbox_repository import NotificationDeliveryRepository

logger = logging.getLogger(__name__)


class NotificationProviderTemporaryError(RuntimeError):
    """Transient delivery failure; the outbox retries with backoff."""


class NotificationProviderPermanentError(RuntimeError):
    """The collaborator rejected the event; retrying will not help."""


@contextmanager
def _managed_session(session_factory: Callable[[], Session]) -> Generator[Session, None, None]:
    """Context manager that yields a session and guarantees cleanup."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@dataclass(slots=True)
class NotificationDispatchResult:
    idempotency_key: str
    event_type: str
    delivered: bool
    duplicate: bool = False


class NotificationProvider:
    """
    Usage:
        provider = NotificationProvider()
        provider.send(event_type="booking.confirmed", payload={...}, idempotency_key="...")
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._webhook_url = (
            webhook_url if webhook_url is not None else settings.notification_webhook_url
        )
        self._timeout = timeout if timeout is not None else settings.notification_timeout_seconds
        self._transport = transport

    def _post(self, event_type: str, payload: Dict[str, Any], idempotency_key: str) -> None:
        body = {"event_type": event_type, "idempotency_key": idempotency_key, "payload": payload}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(
                    self._webhook_url,
                    json=body,
                    headers={"Idempotency-Key": idempotency_key},
                )
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise NotificationProviderTemporaryError(f"Timed out delivering {event_type}") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 429 or status >= 500:
                raise NotificationProviderTemporaryError(
                    f"Provider returned {status} for {event_type}"
                ) from exc
            raise NotificationProviderPermanentError(
                f"Provider rejected {event_type} with {status}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationProviderTemporaryError(
                f"Error delivering {event_type}: {exc}"
            ) from exc

    def send(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> NotificationDispatchResult:
        if not idempotency_key:
            raise ValueError("idempotency_key is required for notification dispatch")
        payload = payload or {}

        with _managed_session(self._session_factory) as session:
            repo = NotificationDeliveryRepository(session)
            if repo.get_by_idempotency_key(idempotency_key) is not None:
                logger.info("Notification %s already delivered; skipping", idempotency_key)
                return NotificationDispatchResult(
                    idempotency_key=idempotency_key,
                    event_type=event_type,
                    delivered=False,
                    duplicate=True,
                )

        if self._webhook_url:
            self._post(event_type, payload, idempotency_key)
        else:
            logger.info(
                "Notification %s key=%s payload=%s",
                event_type,
                idempotency_key,
                json.dumps(payload, sort_keys=True, default=str)[:500],
            )

        with _managed_session(self._session_factory) as session:
            NotificationDeliveryRepository(session).record_delivery(
                event_type, idempotency_key, payload
            )
        return NotificationDispatchResult(
            idempotency_key=idempotency_key, event_type=event_type, delivered=True
        )
