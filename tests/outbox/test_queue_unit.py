"""
Unit tests for the delivery queue's Redis dedup markers.
"""

from unittest.mock import MagicMock

import pytest

from src.outbox.metrics import METRIC_JOBS_DEDUPLICATED, METRIC_JOBS_ENQUEUED, OutboxMetrics
from src.outbox.queue import DeliveryQueue


@pytest.fixture
def redis_client():
    return MagicMock()


@pytest.fixture
def task():
    return MagicMock()


@pytest.fixture
def metrics():
    return OutboxMetrics()


@pytest.fixture
def queue(redis_client, task, metrics):
    return DeliveryQueue(redis_client=redis_client, task=task, marker_ttl_seconds=120, metrics=metrics)


class TestDeliveryQueue:
    """Test enqueue, duplicate suppression and marker release."""

    def test_enqueue_submits_job_keyed_by_event_id(self, queue, redis_client, task, metrics):
        redis_client.set.return_value = True

        assert queue.enqueue("e-1") is True

        redis_client.set.assert_called_once_with("outbox:enqueued:e-1", "1", nx=True, ex=120)
        task.apply_async.assert_called_once_with(args=["e-1"], task_id="e-1")
        assert metrics.get_counter(METRIC_JOBS_ENQUEUED) == 1

    def test_duplicate_enqueue_suppressed(self, queue, redis_client, task, metrics):
        """An outstanding marker means no second job."""
        redis_client.set.return_value = None

        assert queue.enqueue("e-1") is False

        task.apply_async.assert_not_called()
        assert metrics.get_counter(METRIC_JOBS_DEDUPLICATED) == 1

    def test_submit_failure_releases_marker(self, queue, redis_client, task):
        """If the broker rejects the job the marker is dropped and the error raised."""
        redis_client.set.return_value = True
        task.apply_async.side_effect = ConnectionError("broker down")

        with pytest.raises(ConnectionError):
            queue.enqueue("e-1")

        redis_client.delete.assert_called_once_with("outbox:enqueued:e-1")

    def test_enqueue_many_counts_submitted(self, queue, redis_client, task):
        redis_client.set.side_effect = [True, None, True]

        assert queue.enqueue_many(["e-1", "e-2", "e-3"]) == 2
        assert task.apply_async.call_count == 2

    def test_release(self, queue, redis_client):
        queue.release("e-9")
        redis_client.delete.assert_called_once_with("outbox:enqueued:e-9")
