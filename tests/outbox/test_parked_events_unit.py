"""
Unit tests for listing and replaying parked outbox events.
"""

from datetime import timedelta

import pytest

from src.outbox.parked_events import ParkedEventsManager
from src.persistence.models import OutboxStatus


@pytest.fixture
def manager(database, fake_queue):
    return ParkedEventsManager(database=database, queue=fake_queue, max_retries=3)


@pytest.fixture
def parked(add_outbox_row):
    def _park(event_type="invitation.completed", age=timedelta(0)):
        return add_outbox_row(
            status=OutboxStatus.FAILED.value,
            retry_count=3,
            event_type=event_type,
            error_message="broker unavailable",
            age=age,
        )

    return _park


class TestParkedEventsManager:
    """Test parked-event queries and replay."""

    def test_lists_only_parked_rows(self, manager, parked, add_outbox_row):
        """Retryable failures are not parked."""
        older = parked(age=timedelta(hours=2))
        newer = parked(event_type="invitation.expired")
        add_outbox_row(status=OutboxStatus.FAILED.value, retry_count=1)
        add_outbox_row()

        events = manager.get_parked_events()

        assert [e.event_id for e in events] == [older, newer]
        assert manager.count_parked() == 2
        assert events[0].error_message == "broker unavailable"
        assert events[0].to_dict()["error"] == {"message": "broker unavailable"}

    def test_filters_by_type_and_limit(self, manager, parked):
        parked()
        expired = parked(event_type="invitation.expired")
        parked()

        assert [e.event_id for e in manager.get_parked_events(event_type="invitation.expired")] == [expired]
        assert len(manager.get_parked_events(max_count=2)) == 2

    def test_replay_resets_and_enqueues(self, manager, parked, fake_queue, get_outbox_row):
        """Replay gives the row a fresh retry budget and queues it again."""
        event_id = parked()

        assert manager.replay_parked_event(event_id) is True

        row = get_outbox_row(event_id)
        assert row.status == OutboxStatus.PENDING.value
        assert row.retry_count == 0
        assert row.error_message is None
        assert fake_queue.released == [event_id]
        assert fake_queue.enqueued == [event_id]
        assert manager.count_parked() == 0

    def test_replay_of_non_parked_event(self, manager, add_outbox_row, fake_queue):
        event_id = add_outbox_row(status=OutboxStatus.PUBLISHED.value, published_age=timedelta(0))

        assert manager.replay_parked_event(event_id) is False
        assert manager.replay_parked_event("missing") is False
        assert fake_queue.enqueued == []

    def test_replay_all(self, manager, parked, fake_queue):
        first = parked(age=timedelta(minutes=5))
        second = parked()

        assert manager.replay_all() == 2
        assert fake_queue.enqueued == [first, second]
