"""
Publisher worker: delivers one outbox row to the message bus.

One call handles one event id:

1. Claim the row with a conditional UPDATE ``pending -> publishing``. If no
   row is claimed another worker has it (or it is already done), so return.
2. Publish the stored envelope to the topic for its event type, keyed by
   aggregate id.
3. On success mark it ``published``.
4. On failure mark it ``failed`` and bump ``retry_count``. Below
   ``max_retries`` raise RetryablePublishError so the job runner retries with
   backoff; otherwise the row stays parked for an operator.

On a retry attempt the worker first moves its own retryable ``failed`` row
back to ``pending`` so it can be claimed again.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import select, update

from src.events.exceptions import RetryablePublishError
from src.persistence.database import Database, get_database
from src.persistence.models import OutboxEntry, OutboxStatus

from .config import MAX_RETRIES, get_topic_for_event
from .message_bus import MessageBus, get_message_bus
from .metrics import (
    METRIC_EVENTS_FAILED,
    METRIC_EVENTS_PARKED,
    METRIC_EVENTS_PUBLISHED,
    LatencyTimer,
    OutboxMetrics,
    get_metrics,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PublishOutcome(str, Enum):
    """What a publish attempt did."""

    PUBLISHED = "published"
    SKIPPED = "skipped"
    PARKED = "parked"


class ClaimedEvent:
    """Snapshot of a claimed outbox row."""

    def __init__(self, event_id: str, event_type: str, aggregate_id: str, payload: dict, retry_count: int):
        self.event_id = event_id
        self.event_type = event_type
        self.aggregate_id = aggregate_id
        self.payload = payload
        self.retry_count = retry_count


class PublisherWorker:
    """Claims, publishes and settles outbox rows."""

    def __init__(
        self,
        database: Optional[Database] = None,
        message_bus: Optional[MessageBus] = None,
        max_retries: Optional[int] = None,
        metrics: Optional[OutboxMetrics] = None,
    ):
        """
        Initialize the worker.

        Args:
            database: Database holding the outbox (uses global if not provided)
            message_bus: Bus to publish to (uses global Kafka bus if not provided)
            max_retries: Failed attempts after which a row is parked
            metrics: Metrics collector (uses global if not provided)
        """
        self._database = database
        self._message_bus = message_bus
        self.max_retries = max_retries if max_retries is not None else MAX_RETRIES
        self.metrics = metrics or get_metrics()

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = get_database()
        return self._database

    @property
    def message_bus(self) -> MessageBus:
        if self._message_bus is None:
            self._message_bus = get_message_bus()
        return self._message_bus

    def publish(self, event_id: str, is_retry: bool = False) -> PublishOutcome:
        """
        Deliver one outbox event.

        Args:
            event_id: Outbox event id
            is_retry: True when the job runner is retrying a failed attempt

        Returns:
            PublishOutcome: PUBLISHED, SKIPPED (nothing to claim) or PARKED

        Raises:
            RetryablePublishError: If publishing failed and may be retried
        """
        if is_retry:
            self._reset_failed(event_id)

        claimed = self._claim(event_id)
        if claimed is None:
            logger.info(f"Outbox event {event_id} already published, in flight or not found; skipping")
            return PublishOutcome.SKIPPED

        topic = get_topic_for_event(claimed.event_type)
        try:
            with LatencyTimer(self.metrics):
                self.message_bus.publish(topic, claimed.aggregate_id, claimed.payload)
        except Exception as e:
            retry_count = self._mark_failed(event_id, str(e))
            self.metrics.increment_counter(METRIC_EVENTS_FAILED)
            logger.error(f"Failed to publish {event_id} ({claimed.event_type}) to {topic}: {e}", exc_info=True)

            if retry_count < self.max_retries:
                raise RetryablePublishError(event_id, retry_count, e) from e

            self.metrics.increment_counter(METRIC_EVENTS_PARKED)
            logger.error(f"Max retries reached for {event_id} after {retry_count} attempts; event parked")
            return PublishOutcome.PARKED

        self._mark_published(event_id)
        self.metrics.increment_counter(METRIC_EVENTS_PUBLISHED)
        logger.info(f"Published {event_id} ({claimed.event_type}) to {topic}")
        return PublishOutcome.PUBLISHED

    def _reset_failed(self, event_id: str) -> bool:
        with self.database.transaction() as session:
            result = session.execute(
                update(OutboxEntry)
                .where(
                    OutboxEntry.event_id == event_id,
                    OutboxEntry.status == OutboxStatus.FAILED.value,
                    OutboxEntry.retry_count < self.max_retries,
                )
                .values(status=OutboxStatus.PENDING.value, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
        if result.rowcount == 1:
            logger.debug(f"Reset failed outbox event {event_id} to pending for retry")
            return True
        return False

    def _claim(self, event_id: str) -> Optional[ClaimedEvent]:
        with self.database.transaction() as session:
            result = session.execute(
                update(OutboxEntry)
                .where(OutboxEntry.event_id == event_id, OutboxEntry.status == OutboxStatus.PENDING.value)
                .values(status=OutboxStatus.PUBLISHING.value, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            entry = session.scalars(select(OutboxEntry).where(OutboxEntry.event_id == event_id)).one()
            return ClaimedEvent(
                event_id=entry.event_id,
                event_type=entry.event_type,
                aggregate_id=entry.aggregate_id,
                payload=entry.payload,
                retry_count=entry.retry_count,
            )

    def _mark_published(self, event_id: str) -> None:
        now = _utcnow()
        with self.database.transaction() as session:
            result = session.execute(
                update(OutboxEntry)
                .where(OutboxEntry.event_id == event_id, OutboxEntry.status == OutboxStatus.PUBLISHING.value)
                .values(
                    status=OutboxStatus.PUBLISHED.value,
                    published_at=now,
                    updated_at=now,
                    error_message=None,
                )
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            # Recovered as stuck while we were publishing; it will go out again
            logger.warning(f"Outbox event {event_id} was no longer publishing when marked published")

    def _mark_failed(self, event_id: str, error_message: str) -> int:
        with self.database.transaction() as session:
            session.execute(
                update(OutboxEntry)
                .where(OutboxEntry.event_id == event_id, OutboxEntry.status == OutboxStatus.PUBLISHING.value)
                .values(
                    status=OutboxStatus.FAILED.value,
                    error_message=error_message,
                    retry_count=OutboxEntry.retry_count + 1,
                    updated_at=_utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            return session.scalar(select(OutboxEntry.retry_count).where(OutboxEntry.event_id == event_id)) or 0


# Global worker instance
_publisher_worker: Optional[PublisherWorker] = None


def get_publisher_worker() -> PublisherWorker:
    """Get the global publisher worker instance."""
    global _publisher_worker
    if _publisher_worker is None:
        _publisher_worker = PublisherWorker()
    return _publisher_worker
