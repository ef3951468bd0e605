"""
Outbox writer.

Writes integration events to the ``outbox`` table. Two entry points:

- ``save_event_in_transaction`` / ``save_events_in_transaction`` add rows on
  the caller's session and schedule nothing. The caller commits, then calls
  ``schedule_publishing`` with the returned ids.
- ``save_event`` / ``save_events`` open their own transaction and enqueue the
  publish jobs right after it commits.

Either way no job can ever reference a row that was rolled back.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from src.events.envelope import EventEnvelope, IntegrationEnvelope, generate_event_id
from src.persistence.database import Database, get_database
from src.persistence.models import OutboxEntry, OutboxStatus

from .config import EVENT_VERSION, SERVICE_NAME
from .metrics import METRIC_EVENTS_WRITTEN, OutboxMetrics, get_metrics
from .queue import DeliveryQueue, get_delivery_queue

logger = logging.getLogger(__name__)


@dataclass
class OutboxMessage:
    """An integration event to be written to the outbox."""

    event_type: str
    payload: Dict[str, Any]
    aggregate_id: str
    event_id: Optional[str] = None

    @classmethod
    def from_domain_event(cls, event: EventEnvelope) -> "OutboxMessage":
        """Integration event for a domain event; the event id is kept."""
        return cls(
            event_type=event.event_type,
            payload=event.data,
            aggregate_id=event.aggregate_id,
            event_id=event.event_id,
        )


class OutboxWriter:
    """Persists outbox rows and schedules their delivery."""

    def __init__(
        self,
        database: Optional[Database] = None,
        queue: Optional[DeliveryQueue] = None,
        source: Optional[str] = None,
        version: Optional[int] = None,
        metrics: Optional[OutboxMetrics] = None,
    ):
        """
        Initialize the writer.

        Args:
            database: Database for the self-contained entry points (uses global if not provided)
            queue: Delivery queue (uses global if not provided)
            source: Envelope ``source`` (service name)
            version: Envelope schema ``version``
            metrics: Metrics collector (uses global if not provided)
        """
        self._database = database
        self._queue = queue
        self.source = source or SERVICE_NAME
        self.version = version or EVENT_VERSION
        self.metrics = metrics or get_metrics()

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

    def build_envelope(
        self, event_type: str, payload: Dict[str, Any], event_id: Optional[str] = None
    ) -> IntegrationEnvelope:
        return IntegrationEnvelope(
            event_id=event_id or generate_event_id(),
            event_type=event_type,
            version=self.version,
            source=self.source,
            payload=payload,
        )

    def _build_entry(self, message: OutboxMessage) -> OutboxEntry:
        envelope = self.build_envelope(message.event_type, message.payload, message.event_id)
        now = datetime.now(timezone.utc)
        return OutboxEntry(
            event_id=envelope.event_id,
            aggregate_id=message.aggregate_id,
            event_type=message.event_type,
            payload=envelope.to_wire(),
            status=OutboxStatus.PENDING.value,
            retry_count=0,
            created_at=now,
            updated_at=now,
        )

    def save_event_in_transaction(
        self,
        session: Session,
        event_type: str,
        payload: Dict[str, Any],
        aggregate_id: str,
        event_id: Optional[str] = None,
    ) -> str:
        """
        Add one outbox row on the caller's session.

        No job is scheduled; call ``schedule_publishing`` after commit.

        Returns:
            str: The event id of the new row
        """
        entry = self._build_entry(OutboxMessage(event_type, payload, aggregate_id, event_id))
        session.add(entry)
        session.flush()
        self.metrics.increment_counter(METRIC_EVENTS_WRITTEN)
        logger.info(f"Outbox event saved: {entry.event_id} ({event_type}) for aggregate {aggregate_id}")
        return entry.event_id

    def save_events_in_transaction(self, session: Session, messages: Sequence[OutboxMessage]) -> List[str]:
        """Add several outbox rows on the caller's session; returns their ids in order."""
        if not messages:
            return []

        entries = [self._build_entry(message) for message in messages]
        session.add_all(entries)
        session.flush()
        self.metrics.increment_counter(METRIC_EVENTS_WRITTEN, len(entries))
        logger.info(f"Outbox batch saved: {len(entries)} events")
        return [entry.event_id for entry in entries]

    def save_event(
        self, event_type: str, payload: Dict[str, Any], aggregate_id: str, event_id: Optional[str] = None
    ) -> str:
        """
        Write one outbox row in its own transaction and enqueue its job.

        Returns:
            str: The event id of the new row
        """
        with self.database.transaction() as session:
            saved_id = self.save_event_in_transaction(session, event_type, payload, aggregate_id, event_id)
        self.schedule_publishing([saved_id])
        return saved_id

    def save_events(self, messages: Sequence[OutboxMessage]) -> List[str]:
        """Write several outbox rows in one transaction and enqueue their jobs."""
        if not messages:
            return []

        with self.database.transaction() as session:
            event_ids = self.save_events_in_transaction(session, messages)
        self.schedule_publishing(event_ids)
        return event_ids

    def schedule_publishing(self, event_ids: Sequence[str]) -> None:
        """
        Enqueue publish jobs for rows whose transaction has committed.

        A failure here is not fatal: the rows stay pending and the scheduler's
        pending sweep picks them up.
        """
        if not event_ids:
            return

        try:
            scheduled = self.queue.enqueue_many(event_ids)
        except Exception as e:
            logger.warning(
                f"Could not schedule {len(event_ids)} outbox events, leaving them to the pending sweep: {e}"
            )
            return

        logger.info(f"Scheduled {scheduled} of {len(event_ids)} outbox events for publishing")


# Global writer instance
_outbox_writer: Optional[OutboxWriter] = None


def get_outbox_writer() -> OutboxWriter:
    """Get the global outbox writer instance."""
    global _outbox_writer
    if _outbox_writer is None:
        _outbox_writer = OutboxWriter()
    return _outbox_writer
