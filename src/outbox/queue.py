"""
Delivery queue: enqueues one publish job per outbox event.

Jobs are Celery tasks submitted with ``task_id = event_id``. A Redis
``SET NX`` marker per event id suppresses duplicate submissions while a job
for that event is still outstanding; the marker is released when the job
finishes or when the scheduler recovers a stuck row, and expires after a TTL
otherwise.
"""

import logging
from typing import Iterable, Optional

import redis

from src.config import config

from .config import ENQUEUE_MARKER_PREFIX, ENQUEUE_MARKER_TTL_SECONDS
from .metrics import METRIC_JOBS_DEDUPLICATED, METRIC_JOBS_ENQUEUED, OutboxMetrics, get_metrics

logger = logging.getLogger(__name__)


class DeliveryQueue:
    """Idempotent enqueue of publish jobs keyed by event id."""

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        task=None,
        marker_ttl_seconds: Optional[int] = None,
        metrics: Optional[OutboxMetrics] = None,
    ):
        """
        Initialize the queue.

        Args:
            redis_client: Redis client for markers (built from the broker URL if not provided)
            task: Celery task to submit (defaults to ``src.tasks.publish_outbox_event``)
            marker_ttl_seconds: Lifetime of a dedup marker
            metrics: Metrics collector (uses global if not provided)
        """
        self._redis = redis_client
        self._task = task
        self.marker_ttl_seconds = marker_ttl_seconds or ENQUEUE_MARKER_TTL_SECONDS
        self.metrics = metrics or get_metrics()

    @property
    def redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.Redis.from_url(config["celery"]["broker_url"])
        return self._redis

    @property
    def task(self):
        if self._task is None:
            from src.tasks import publish_outbox_event

            self._task = publish_outbox_event
        return self._task

    @staticmethod
    def marker_key(event_id: str) -> str:
        return f"{ENQUEUE_MARKER_PREFIX}{event_id}"

    def enqueue(self, event_id: str) -> bool:
        """
        Submit a publish job for an event unless one is already outstanding.

        Returns:
            bool: True if a job was submitted, False if suppressed as duplicate
        """
        key = self.marker_key(event_id)
        if not self.redis.set(key, "1", nx=True, ex=self.marker_ttl_seconds):
            logger.debug(f"Publish job for {event_id} already queued, skipping")
            self.metrics.increment_counter(METRIC_JOBS_DEDUPLICATED)
            return False

        try:
            self.task.apply_async(args=[event_id], task_id=event_id)
        except Exception:
            # Let the next sweep try again
            self.redis.delete(key)
            raise

        self.metrics.increment_counter(METRIC_JOBS_ENQUEUED)
        logger.debug(f"Queued publish job for {event_id}")
        return True

    def enqueue_many(self, event_ids: Iterable[str]) -> int:
        """Enqueue several events; returns how many jobs were submitted."""
        return sum(1 for event_id in event_ids if self.enqueue(event_id))

    def release(self, event_id: str) -> None:
        """Drop the dedup marker so the event can be enqueued again."""
        self.redis.delete(self.marker_key(event_id))


# Global queue instance
_delivery_queue: Optional[DeliveryQueue] = None


def get_delivery_queue() -> DeliveryQueue:
    """Get the global delivery queue instance."""
    global _delivery_queue
    if _delivery_queue is None:
        _delivery_queue = DeliveryQueue()
    return _delivery_queue
