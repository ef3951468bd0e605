"""
In-process metrics for the outbox pipeline.

Counters are bumped by the writer, queue, publisher and scheduler. The
backlog gauges (rows per delivery state, parked rows included) are refreshed
by the scheduler's recovery duty, and a snapshot of everything is part of
``DeliveryScheduler.get_status()``.
"""

import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Deque, Dict, Optional

# Counters
METRIC_EVENTS_WRITTEN = "outbox_events_written"
METRIC_JOBS_ENQUEUED = "outbox_jobs_enqueued"
METRIC_JOBS_DEDUPLICATED = "outbox_jobs_deduplicated"
METRIC_EVENTS_PUBLISHED = "outbox_events_published"
METRIC_EVENTS_FAILED = "outbox_events_failed"
METRIC_EVENTS_PARKED = "outbox_events_parked"
METRIC_EVENTS_RECOVERED = "outbox_events_recovered"
METRIC_RETRIES_RECOVERED = "outbox_lost_retries_recovered"
METRIC_EVENTS_CLEANED = "outbox_events_cleaned"

# Backlog gauges
BACKLOG_PENDING = "pending"
BACKLOG_PUBLISHING = "publishing"
BACKLOG_RETRYING = "retrying"
BACKLOG_PARKED = "parked"
BACKLOG_STATES = (BACKLOG_PENDING, BACKLOG_PUBLISHING, BACKLOG_RETRYING, BACKLOG_PARKED)


class OutboxMetrics:
    """Counters, backlog gauges and a sliding window of publish latencies."""

    def __init__(self, latency_window: int = 1000):
        self.counters: Dict[str, int] = defaultdict(int)
        self.backlog: Dict[str, int] = {}
        self.backlog_updated_at: Optional[datetime] = None
        self.latencies_ms: Deque[float] = deque(maxlen=latency_window)
        self.started_at = datetime.now(timezone.utc)

    def increment_counter(self, name: str, value: int = 1):
        self.counters[name] += value

    def get_counter(self, name: str) -> int:
        return self.counters.get(name, 0)

    def record_latency(self, elapsed_ms: float):
        self.latencies_ms.append(elapsed_ms)

    def latency_stats(self) -> Dict[str, float]:
        """
        Publish latency over the window.

        Returns:
            Dict: count, min, max, avg, p50 and p95 in milliseconds
        """
        if not self.latencies_ms:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p50": 0, "p95": 0}

        ordered = sorted(self.latencies_ms)
        count = len(ordered)
        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p50": ordered[int(count * 0.50)],
            "p95": ordered[min(int(count * 0.95), count - 1)],
        }

    def set_backlog(self, counts: Dict[str, int]):
        """Replace the backlog gauges; states missing from ``counts`` read as zero."""
        self.backlog = {state: int(counts.get(state, 0)) for state in BACKLOG_STATES}
        self.backlog_updated_at = datetime.now(timezone.utc)

    def get_backlog(self, state: str) -> int:
        return self.backlog.get(state, 0)

    def snapshot(self) -> Dict:
        return {
            "uptime_seconds": (datetime.now(timezone.utc) - self.started_at).total_seconds(),
            "counters": dict(self.counters),
            "backlog": dict(self.backlog),
            "backlog_updated_at": self.backlog_updated_at.isoformat() if self.backlog_updated_at else None,
            "publish_latency_ms": self.latency_stats(),
        }


_metrics: OutboxMetrics = OutboxMetrics()


def get_metrics() -> OutboxMetrics:
    """Get the process-wide metrics instance."""
    return _metrics


class LatencyTimer:
    """Records the wall time of its block as a publish latency, even on error."""

    def __init__(self, metrics: Optional[OutboxMetrics] = None):
        self.metrics = metrics or get_metrics()
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.metrics.record_latency((time.monotonic() - self.start_time) * 1000)
