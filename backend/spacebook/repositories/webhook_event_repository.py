"""Repository helpers for webhook event ledger."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session
import ulid

from spacebook.models.webhook_event import WebhookEvent, WebhookEventStatus
from spacebook.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for webhook ledger queries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def claim(
        self,
        *,
        source: str,
        event_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> Optional[WebhookEvent]:
        """
        Insert the ledger row for an event if it has never been seen.

        Returns the new row, or None when the event id is already recorded
        (a duplicate delivery that must not be reapplied).
        """
        inserted = self._insert_if_absent(
            {
                "id": str(ulid.ULID()),
                "source": source,
                "event_id": event_id,
                "event_type": event_type,
                "payload": payload,
                "status": WebhookEventStatus.RECEIVED.value,
                "received_at": _now_utc(),
            },
            ["source", "event_id"],
        )
        if not inserted:
            return None
        return self.get_by_event_id(source, event_id)

    def get_by_event_id(self, source: str, event_id: str) -> Optional[WebhookEvent]:
        return self.find_one_by(source=source, event_id=event_id)

    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        status: str = WebhookEventStatus.PROCESSED.value,
        related_entity_type: Optional[str] = None,
        related_entity_id: Optional[str] = None,
    ) -> None:
        event.status = status
        event.processed_at = _now_utc()
        if related_entity_type:
            event.related_entity_type = related_entity_type
            event.related_entity_id = related_entity_id
        self.flush()

    def mark_failed(self, event: WebhookEvent, error: str) -> None:
        event.status = WebhookEventStatus.FAILED.value
        event.processing_error = error[:2000]
        event.processed_at = _now_utc()
        self.flush()

    def list_failed(self, since_hours: int = 24, limit: int = 50) -> list[WebhookEvent]:
        """Recently failed events, for operator review."""
        cutoff = _now_utc() - timedelta(hours=since_hours)
        query = (
            self._build_query()
            .filter(WebhookEvent.status == WebhookEventStatus.FAILED.value)
            .filter(WebhookEvent.received_at >= cutoff)
            .order_by(WebhookEvent.received_at.desc())
            .limit(limit)
        )
        return self._execute_query(query)
