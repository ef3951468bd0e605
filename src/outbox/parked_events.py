"""
Parked outbox events (dead letters).

A row is parked when publishing failed ``max_retries`` times: it stays in the
outbox with status ``failed`` for manual review. Replaying resets it to
``pending`` with a fresh retry budget and enqueues it again.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update

from src.persistence.database import Database, get_database
from src.persistence.models import OutboxEntry, OutboxStatus

from .config import MAX_RETRIES
from .queue import DeliveryQueue, get_delivery_queue

logger = logging.getLogger(__name__)


class ParkedEvent:
    """A permanently failed outbox row with its error context."""

    def __init__(
        self,
        event_id: str,
        event_type: str,
        aggregate_id: str,
        error_message: Optional[str],
        retry_count: int,
        created_at: datetime,
        parked_at: datetime,
        payload: Dict[str, Any],
    ):
        self.event_id = event_id
        self.event_type = event_type
        self.aggregate_id = aggregate_id
        self.error_message = error_message
        self.retry_count = retry_count
        self.created_at = created_at
        self.parked_at = parked_at
        self.payload = payload

    @classmethod
    def from_entry(cls, entry: OutboxEntry) -> "ParkedEvent":
        return cls(
            event_id=entry.event_id,
            event_type=entry.event_type,
            aggregate_id=entry.aggregate_id,
            error_message=entry.error_message,
            retry_count=entry.retry_count,
            created_at=entry.created_at,
            parked_at=entry.updated_at,
            payload=entry.payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "aggregate_id": self.aggregate_id,
            "error": {"message": self.error_message},
            "retry_count": self.retry_count,
            "created_at": self.created_at.isoformat(),
            "parked_at": self.parked_at.isoformat(),
            "payload": self.payload,
        }


class ParkedEventsManager:
    """Lists and replays parked outbox events."""

    def __init__(
        self,
        database: Optional[Database] = None,
        queue: Optional[DeliveryQueue] = None,
        max_retries: Optional[int] = None,
    ):
        self._database = database
        self._queue = queue
        self.max_retries = max_retries if max_retries is not None else MAX_RETRIES

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = get_database()
        return self._database

    @property
    def queue(self) -> DeliveryQueue:
        if self._queue is None:
            self._queue = get_delivery_queue()
        return self._queue

    def _parked_filter(self):
        return (
            OutboxEntry.status == OutboxStatus.FAILED.value,
            OutboxEntry.retry_count >= self.max_retries,
        )

    def get_parked_events(self, event_type: Optional[str] = None, max_count: Optional[int] = None) -> List[ParkedEvent]:
        """
        Get parked events, oldest first.

        Args:
            event_type: Only return events of this type
            max_count: Maximum number of events to return

        Returns:
            List[ParkedEvent]: Parked events
        """
        query = select(OutboxEntry).where(*self._parked_filter()).order_by(OutboxEntry.created_at.asc())
        if event_type:
            query = query.where(OutboxEntry.event_type == event_type)
        if max_count:
            query = query.limit(max_count)

        with self.database.transaction() as session:
            return [ParkedEvent.from_entry(entry) for entry in session.scalars(query).all()]

    def count_parked(self) -> int:
        with self.database.transaction() as session:
            return session.scalar(select(func.count()).select_from(OutboxEntry).where(*self._parked_filter())) or 0

    def replay_parked_event(self, event_id: str) -> bool:
        """
        Replay a parked event: reset it to pending with ``retry_count = 0``
        and enqueue it.

        Returns:
            bool: True if the event was parked and has been replayed
        """
        with self.database.transaction() as session:
            result = session.execute(
                update(OutboxEntry)
                .where(OutboxEntry.event_id == event_id, *self._parked_filter())
                .values(
                    status=OutboxStatus.PENDING.value,
                    retry_count=0,
                    error_message=None,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )

        if result.rowcount != 1:
            logger.warning(f"Outbox event {event_id} is not parked; nothing to replay")
            return False

        logger.info(f"Replaying parked outbox event {event_id}")
        # A stale marker from the failed job would block the enqueue
        self.queue.release(event_id)
        self.queue.enqueue(event_id)
        return True

    def replay_all(self, event_type: Optional[str] = None) -> int:
        """Replay every parked event (optionally of one type); returns how many were replayed."""
        return sum(1 for parked in self.get_parked_events(event_type) if self.replay_parked_event(parked.event_id))
