# backend/spacebook/repositories/event_outbox_repository.py
"""
Repository for notification event outbox operations.

Implements transactional enqueue, pending fetch with locking, and status updates
required for the outbox dispatcher.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Optional, cast

from sqlalchemy import Select, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session
import ulid

from spacebook.database.session_utils import get_dialect_name
from spacebook.models.event_outbox import EventOutbox, EventOutboxStatus, NotificationDelivery

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    """Return timezone-aware utcnow suitable for DB comparisons."""
    return datetime.now(timezone.utc)


class EventOutboxRepository:
    """Data access helpers for event outbox rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    # ------------------------------------------------------------------ enqueue
    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        payload: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        next_attempt_at: Optional[datetime] = None,
    ) -> EventOutbox:
        """
        Insert a new outbox row if one does not already exist for the idempotency key.

        Returns the persisted row (existing or newly created).
        """
        payload = payload or {}
        next_attempt = next_attempt_at or _now_utc()
        key = idempotency_key or f"{event_type}:{aggregate_id}:{int(next_attempt.timestamp())}"

        values = dict(
            id=str(ulid.ULID()),
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload,
            idempotency_key=key,
            status=EventOutboxStatus.PENDING.value,
            attempt_count=0,
            next_attempt_at=next_attempt,
            created_at=_now_utc(),
            updated_at=_now_utc(),
        )
        insert_fn = pg_insert if self._dialect == "postgresql" else sqlite_insert
        stmt = insert_fn(EventOutbox).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=["idempotency_key"])
        self.db.execute(stmt)
        self.db.flush()

        existing_result = self.db.execute(
            select(EventOutbox).where(EventOutbox.idempotency_key == key)
        )
        row = cast(Optional[EventOutbox], existing_result.scalar_one_or_none())
        if row is None:
            raise RuntimeError("Outbox row not found after enqueue")
        return row

    # ---------------------------------------------------------------- fetchers
    def fetch_pending(self, limit: int = 200) -> list[EventOutbox]:
        """Return pending events eligible for delivery ordered by attempt time."""
        now = _now_utc()
        stmt: Select[Any] = (
            select(EventOutbox)
            .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
            .where(EventOutbox.next_attempt_at <= now)
            .order_by(EventOutbox.next_attempt_at.asc(), EventOutbox.id.asc())
            .limit(limit)
        )
        if self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)

        result = self.db.execute(stmt)
        return cast(list[EventOutbox], result.scalars().all())

    def get_by_id(self, event_id: str) -> Optional[EventOutbox]:
        """Fetch a single outbox row."""
        return cast(Optional[EventOutbox], self.db.get(EventOutbox, event_id))

    def list_by_aggregate(self, aggregate_id: str) -> list[EventOutbox]:
        result = self.db.execute(
            select(EventOutbox)
            .where(EventOutbox.aggregate_id == aggregate_id)
            .order_by(EventOutbox.created_at.asc(), EventOutbox.id.asc())
        )
        return cast(list[EventOutbox], result.scalars().all())

    # ------------------------------------------------------------- state updates
    def mark_sent(self, event_id: str, attempt_count: int) -> None:
        """Update row to SENT state."""
        now = _now_utc()
        self.db.execute(
            update(EventOutbox)
            .where(EventOutbox.id == event_id)
            .values(
                status=EventOutboxStatus.SENT.value,
                attempt_count=attempt_count,
                last_error=None,
                next_attempt_at=now,
                updated_at=now,
            )
        )
        self.db.flush()

    def mark_failed(
        self,
        event_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Update row after delivery failure."""
        now = _now_utc()
        values: dict[str, Any] = {
            "attempt_count": attempt_count,
            "updated_at": now,
            "last_error": (error[:1000] if error else None),
        }
        if terminal:
            values["status"] = EventOutboxStatus.FAILED.value
            values["next_attempt_at"] = now
        else:
            values["status"] = EventOutboxStatus.PENDING.value
            values["next_attempt_at"] = now + timedelta(seconds=max(backoff_seconds, 1))

        self.db.execute(update(EventOutbox).where(EventOutbox.id == event_id).values(**values))
        self.db.flush()


class NotificationDeliveryRepository:
    """Data access helper for notification_delivery rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    def record_delivery(
        self,
        event_type: str,
        idempotency_key: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Persist the delivery and enforce idempotency.

        Returns False when this idempotency key was already delivered.
        """
        insert_fn = pg_insert if self._dialect == "postgresql" else sqlite_insert
        stmt = (
            insert_fn(NotificationDelivery)
            .values(
                id=str(ulid.ULID()),
                event_type=event_type,
                idempotency_key=idempotency_key,
                payload=payload or {},
                attempt_count=1,
                delivered_at=_now_utc(),
            )
            .on_conflict_do_nothing(index_elements=["idempotency_key"])
        )
        result = self.db.execute(stmt)
        self.db.flush()
        return bool(getattr(result, "rowcount", 0))

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[NotificationDelivery]:
        """Fetch a delivery row by idempotency key."""
        stmt: Select[Any] = select(NotificationDelivery).where(
            NotificationDelivery.idempotency_key == idempotency_key
        )
        result = self.db.execute(stmt)
        return cast(Optional[NotificationDelivery], result.scalar_one_or_none())
