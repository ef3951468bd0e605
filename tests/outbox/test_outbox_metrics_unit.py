"""
Unit tests for the outbox metrics collector.
"""

import pytest

from src.outbox.metrics import (
    BACKLOG_PARKED,
    BACKLOG_PENDING,
    BACKLOG_RETRYING,
    METRIC_EVENTS_PUBLISHED,
    LatencyTimer,
    OutboxMetrics,
)


def test_counters():
    metrics = OutboxMetrics()
    metrics.increment_counter(METRIC_EVENTS_PUBLISHED)
    metrics.increment_counter(METRIC_EVENTS_PUBLISHED, 4)

    assert metrics.get_counter(METRIC_EVENTS_PUBLISHED) == 5
    assert metrics.get_counter("missing") == 0


def test_backlog_is_replaced_and_zero_filled():
    metrics = OutboxMetrics()
    metrics.set_backlog({BACKLOG_PENDING: 3, BACKLOG_PARKED: 1})
    metrics.set_backlog({BACKLOG_PARKED: 2})

    assert metrics.get_backlog(BACKLOG_PENDING) == 0
    assert metrics.get_backlog(BACKLOG_RETRYING) == 0
    assert metrics.get_backlog(BACKLOG_PARKED) == 2
    assert metrics.backlog_updated_at is not None


def test_latency_window_keeps_most_recent():
    metrics = OutboxMetrics(latency_window=1000)
    for value in range(1500):
        metrics.record_latency(value)

    stats = metrics.latency_stats()

    assert stats["count"] == 1000
    assert stats["min"] == 500
    assert stats["max"] == 1499


def test_empty_latency_stats():
    assert OutboxMetrics().latency_stats()["count"] == 0


def test_timer_records_even_on_error():
    metrics = OutboxMetrics()
    with pytest.raises(ConnectionError):
        with LatencyTimer(metrics):
            raise ConnectionError("broker unreachable")

    assert metrics.latency_stats()["count"] == 1


def test_snapshot():
    metrics = OutboxMetrics()
    metrics.increment_counter(METRIC_EVENTS_PUBLISHED)
    metrics.record_latency(12.5)

    snapshot = metrics.snapshot()

    assert snapshot["counters"] == {METRIC_EVENTS_PUBLISHED: 1}
    assert snapshot["backlog"] == {}
    assert snapshot["backlog_updated_at"] is None
    assert snapshot["publish_latency_ms"]["max"] == 12.5
    assert snapshot["uptime_seconds"] >= 0
