"""
Delivery scheduler for the outbox.

Three duties, each on its own asyncio ticker:

- ``sweep_pending``: enqueue publish jobs for recent pending rows.
- ``recover_stuck``: put rows stuck in ``publishing`` back to ``pending``,
  likewise retryable ``failed`` rows whose retry job never came, then refresh
  the backlog gauges.
- ``cleanup_published``: delete published rows past the retention window.

Each duty holds its own non-blocking lock, so a duty invoked while the same
duty is still running returns immediately instead of piling up. Database work
runs in worker threads.
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select, update

from src.persistence.database import Database, get_database
from src.persistence.models import OutboxEntry, OutboxStatus

from .config import (
    BACKOFF_MAX_DELAY_SECONDS,
    CLEANUP_INTERVAL,
    MAX_RETRIES,
    PENDING_BATCH_SIZE,
    PENDING_POLL_INTERVAL,
    PENDING_STALENESS_SECONDS,
    RETENTION_HOURS,
    STUCK_BATCH_SIZE,
    STUCK_POLL_INTERVAL,
    STUCK_THRESHOLD_SECONDS,
)
from .metrics import (
    BACKLOG_PARKED,
    BACKLOG_PENDING,
    BACKLOG_PUBLISHING,
    BACKLOG_RETRYING,
    METRIC_EVENTS_CLEANED,
    METRIC_EVENTS_RECOVERED,
    METRIC_RETRIES_RECOVERED,
    OutboxMetrics,
    get_metrics,
)
from .parked_events import ParkedEventsManager
from .queue import DeliveryQueue, get_delivery_queue

logger = logging.getLogger(__name__)

SWEEP_PENDING = "sweep_pending"
RECOVER_STUCK = "recover_stuck"
CLEANUP_PUBLISHED = "cleanup_published"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DutyState:
    """Bookkeeping for one scheduler duty."""

    def __init__(self, name: str, interval: float):
        self.name = name
        self.interval = interval
        self.lock = threading.Lock()
        self.runs = 0
        self.skipped = 0
        self.errors = 0
        self.last_run_at: Optional[datetime] = None
        self.last_result: Optional[int] = None
        self.last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interval_seconds": self.interval,
            "in_flight": self.lock.locked(),
            "runs": self.runs,
            "skipped": self.skipped,
            "errors": self.errors,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_result": self.last_result,
            "last_error": self.last_error,
        }


class DeliveryScheduler:
    """
    Periodically sweeps, recovers and cleans the outbox table.

    The duty methods are synchronous and can be called directly; ``start``
    runs them on tickers.
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        queue: Optional[DeliveryQueue] = None,
        pending_interval: float = PENDING_POLL_INTERVAL,
        stuck_interval: float = STUCK_POLL_INTERVAL,
        cleanup_interval: float = CLEANUP_INTERVAL,
        pending_staleness_seconds: int = PENDING_STALENESS_SECONDS,
        stuck_threshold_seconds: int = STUCK_THRESHOLD_SECONDS,
        retention_hours: int = RETENTION_HOURS,
        pending_batch_size: int = PENDING_BATCH_SIZE,
        stuck_batch_size: int = STUCK_BATCH_SIZE,
        max_retries: int = MAX_RETRIES,
        retry_grace_seconds: float = BACKOFF_MAX_DELAY_SECONDS,
        metrics: Optional[OutboxMetrics] = None,
    ):
        self._database = database
        self._queue = queue
        self.pending_staleness = timedelta(seconds=pending_staleness_seconds)
        self.stuck_threshold = timedelta(seconds=stuck_threshold_seconds)
        self.retention = timedelta(hours=retention_hours)
        self.pending_batch_size = pending_batch_size
        self.stuck_batch_size = stuck_batch_size
        self.max_retries = max_retries
        # A retry job fires at most the largest backoff after the failure
        self.lost_retry_threshold = self.stuck_threshold + timedelta(seconds=retry_grace_seconds)
        self.metrics = metrics or get_metrics()

        self.duties: Dict[str, DutyState] = {
            SWEEP_PENDING: DutyState(SWEEP_PENDING, pending_interval),
            RECOVER_STUCK: DutyState(RECOVER_STUCK, stuck_interval),
            CLEANUP_PUBLISHED: DutyState(CLEANUP_PUBLISHED, cleanup_interval),
        }
        self._tasks: List[asyncio.Task] = []
        self.is_running = False
        self.started_at: Optional[datetime] = None

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

    def _run_exclusive(self, name: str, duty: Callable[[], int]) -> Optional[int]:
        state = self.duties[name]
        if not state.lock.acquire(blocking=False):
            state.skipped += 1
            logger.debug(f"{name} already running, skipping")
            return None

        try:
            result = duty()
            state.last_result = result
            state.last_error = None
            return result
        except Exception as e:
            state.errors += 1
            state.last_error = str(e)
            raise
        finally:
            state.runs += 1
            state.last_run_at = _utcnow()
            state.lock.release()

    # Duties
    def sweep_pending(self) -> Optional[int]:
        """
        Enqueue jobs for pending rows touched within the staleness bound.

        Returns:
            int: Jobs submitted, or None if a sweep was already running
        """
        return self._run_exclusive(SWEEP_PENDING, self._sweep_pending)

    def _sweep_pending(self) -> int:
        cutoff = _utcnow() - self.pending_staleness
        with self.database.transaction() as session:
            event_ids = session.scalars(
                select(OutboxEntry.event_id)
                .where(OutboxEntry.status == OutboxStatus.PENDING.value, OutboxEntry.updated_at > cutoff)
                .order_by(OutboxEntry.created_at.asc(), OutboxEntry.id.asc())
                .limit(self.pending_batch_size)
            ).all()

        if not event_ids:
            return 0

        logger.info(f"Found {len(event_ids)} pending outbox events")
        submitted = 0
        for event_id in event_ids:
            try:
                if self.queue.enqueue(event_id):
                    submitted += 1
            except Exception as e:
                logger.error(f"Failed to queue outbox event {event_id}: {e}", exc_info=True)
        return submitted

    def recover_stuck(self) -> Optional[int]:
        """
        Reset rows stuck in ``publishing`` past the threshold to ``pending``.

        Also resets retryable ``failed`` rows untouched for longer than the
        threshold plus the largest backoff: their retry job was lost. Both
        become fresh pending rows for the next sweep. Finishes by refreshing
        the backlog gauges.

        Returns:
            int: Rows reset, or None if a recovery was already running
        """
        return self._run_exclusive(RECOVER_STUCK, self._recover_stuck)

    def _recover_stuck(self) -> int:
        now = _utcnow()
        # A worker died mid-publish: that attempt counts against the budget
        stuck = self._reset_to_pending(
            now,
            OutboxEntry.status == OutboxStatus.PUBLISHING.value,
            OutboxEntry.updated_at < now - self.stuck_threshold,
            bump_retry_count=True,
        )
        # The failure was already counted when the row was marked failed
        lost_retries = self._reset_to_pending(
            now,
            OutboxEntry.status == OutboxStatus.FAILED.value,
            OutboxEntry.retry_count < self.max_retries,
            OutboxEntry.updated_at < now - self.lost_retry_threshold,
            bump_retry_count=False,
        )

        for event_id in stuck:
            logger.warning(f"Reset stuck outbox event {event_id} to pending")
        for event_id in lost_retries:
            logger.warning(f"Reset failed outbox event {event_id} to pending; its retry never ran")
        for event_id in stuck + lost_retries:
            try:
                self.queue.release(event_id)
            except Exception as e:
                logger.error(f"Failed to release enqueue marker for {event_id}: {e}")

        if stuck:
            self.metrics.increment_counter(METRIC_EVENTS_RECOVERED, len(stuck))
        if lost_retries:
            self.metrics.increment_counter(METRIC_RETRIES_RECOVERED, len(lost_retries))

        self.refresh_backlog()
        return len(stuck) + len(lost_retries)

    def _reset_to_pending(self, now: datetime, *criteria, bump_retry_count: bool) -> List[str]:
        values = {"status": OutboxStatus.PENDING.value, "updated_at": now}
        if bump_retry_count:
            values["retry_count"] = OutboxEntry.retry_count + 1

        reset: List[str] = []
        with self.database.transaction() as session:
            event_ids = session.scalars(
                select(OutboxEntry.event_id)
                .where(*criteria)
                .order_by(OutboxEntry.updated_at.asc())
                .limit(self.stuck_batch_size)
            ).all()

            for event_id in event_ids:
                result = session.execute(
                    update(OutboxEntry)
                    .where(OutboxEntry.event_id == event_id, *criteria)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    reset.append(event_id)
        return reset

    def refresh_backlog(self) -> Dict[str, int]:
        """
        Count undelivered rows per state into the backlog gauges.

        ``retrying`` is failed rows with budget left; ``parked`` is failed rows
        that exhausted it.
        """
        with self.database.transaction() as session:
            by_status = dict(
                session.execute(
                    select(OutboxEntry.status, func.count())
                    .where(OutboxEntry.status != OutboxStatus.PUBLISHED.value)
                    .group_by(OutboxEntry.status)
                ).all()
            )
        parked = ParkedEventsManager(
            database=self.database, queue=self._queue, max_retries=self.max_retries
        ).count_parked()

        backlog = {
            BACKLOG_PENDING: by_status.get(OutboxStatus.PENDING.value, 0),
            BACKLOG_PUBLISHING: by_status.get(OutboxStatus.PUBLISHING.value, 0),
            BACKLOG_RETRYING: by_status.get(OutboxStatus.FAILED.value, 0) - parked,
            BACKLOG_PARKED: parked,
        }
        self.metrics.set_backlog(backlog)
        if parked:
            logger.warning(f"{parked} parked outbox events awaiting replay")
        return backlog

    def cleanup_published(self) -> Optional[int]:
        """
        Delete published rows older than the retention window.

        Returns:
            int: Rows deleted, or None if a cleanup was already running
        """
        return self._run_exclusive(CLEANUP_PUBLISHED, self._cleanup_published)

    def _cleanup_published(self) -> int:
        cutoff = _utcnow() - self.retention
        with self.database.transaction() as session:
            result = session.execute(
                delete(OutboxEntry)
                .where(OutboxEntry.status == OutboxStatus.PUBLISHED.value, OutboxEntry.published_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        deleted = result.rowcount or 0
        if deleted > 0:
            self.metrics.increment_counter(METRIC_EVENTS_CLEANED, deleted)
            logger.info(f"Cleaned up {deleted} published outbox events")
        return deleted

    # Lifecycle
    async def _ticker(self, name: str, duty: Callable[[], Optional[int]]):
        interval = self.duties[name].interval
        logger.info(f"Ticker {name} started (every {interval}s)")
        while self.is_running:
            try:
                await asyncio.to_thread(duty)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scheduler duty {name} failed: {e}", exc_info=True)
            await asyncio.sleep(interval)

    async def start(self):
        """Start the three tickers."""
        if self.is_running:
            logger.warning("Delivery scheduler is already running")
            return

        logger.info("Starting delivery scheduler...")
        self.is_running = True
        self.started_at = _utcnow()
        self._tasks = [
            asyncio.create_task(self._ticker(SWEEP_PENDING, self.sweep_pending)),
            asyncio.create_task(self._ticker(RECOVER_STUCK, self.recover_stuck)),
            asyncio.create_task(self._ticker(CLEANUP_PUBLISHED, self.cleanup_published)),
        ]
        logger.info("Delivery scheduler started")

    async def stop(self):
        """Cancel the tickers and wait for them to finish."""
        if not self.is_running:
            return

        logger.info("Stopping delivery scheduler...")
        self.is_running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Delivery scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        """
        Get scheduler status.

        Returns:
            Dict: Running flag, uptime, per-duty bookkeeping and a metrics
            snapshot
        """
        uptime_seconds = None
        if self.started_at and self.is_running:
            uptime_seconds = (_utcnow() - self.started_at).total_seconds()

        return {
            "is_running": self.is_running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "uptime_seconds": uptime_seconds,
            "duties": {name: state.to_dict() for name, state in self.duties.items()},
            "metrics": self.metrics.snapshot(),
        }
