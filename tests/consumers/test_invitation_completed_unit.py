"""
Unit tests for the invitation.completed consumer.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from kafka import TopicPartition
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from src.consumers.idempotency import IdempotencyGuard
from src.consumers.invitation_completed import InvalidMessageError, InvitationCompletedConsumer
from src.events.envelope import IntegrationEnvelope
from src.events.invitation_events import CompletedReason, InvitationCompletedData
from src.persistence.models import ProcessedEvent


def completed_payload():
    data = InvitationCompletedData(
        invitation_id="i-1",
        candidate_id="c-1",
        template_id="t-1",
        template_title="Backend Engineer",
        company_name="Acme",
        reason=CompletedReason.MANUAL,
        answered=1,
        total=1,
        completed_at=datetime(2026, 5, 1, tzinfo=timezone.utc),
        questions=[{"id": "q1", "text": "Why?", "type": "text", "order": 0}],
        responses=[
            {"id": "r1", "question_id": "q1", "question_index": 0, "response_type": "text", "text": "Because", "duration": 9}
        ],
    )
    return data.model_dump(mode="json")


def wire(event_type="invitation.completed", event_id="e-1", payload=None):
    return IntegrationEnvelope(
        event_id=event_id,
        event_type=event_type,
        version=1,
        source="interview-service",
        payload=completed_payload() if payload is None else payload,
    ).to_wire()


@pytest.fixture
def callback():
    return MagicMock()


@pytest.fixture
def consumer(database, callback):
    guard = IdempotencyGuard(database=database, service_name="ai-analysis-service")
    return InvitationCompletedConsumer(guard=guard, on_completed=callback)


class TestHandleMessage:
    """Test message handling."""

    def test_completed_event_runs_callback(self, consumer, callback):
        assert consumer.handle_message(wire()) is True

        data = callback.call_args.args[0]
        assert isinstance(data, InvitationCompletedData)
        assert data.template_title == "Backend Engineer"
        assert data.responses[0].text == "Because"

    def test_accepts_bytes(self, consumer, callback):
        assert consumer.handle_message(json.dumps(wire()).encode("utf-8")) is True
        callback.assert_called_once()

    def test_redelivery_is_skipped(self, consumer, callback, database):
        """The same event id is applied once."""
        consumer.handle_message(wire())
        assert consumer.handle_message(json.dumps(wire())) is False
        callback.assert_called_once()

        with database.transaction() as session:
            rows = session.scalars(select(ProcessedEvent).where(ProcessedEvent.event_id == "e-1")).all()
        assert len(rows) == 1

    def test_other_event_types_ignored(self, consumer, callback):
        assert consumer.handle_message(wire(event_type="invitation.started", payload={})) is False
        callback.assert_not_called()

    def test_null_message(self, consumer, callback):
        assert consumer.handle_message(None) is False
        callback.assert_not_called()

    def test_invalid_envelope(self, consumer):
        with pytest.raises(InvalidMessageError, match="Invalid event envelope"):
            consumer.handle_message({"eventType": "invitation.completed"})

    def test_invalid_payload_is_not_marked(self, consumer, callback):
        """A payload that fails validation can be retried after a fix."""
        with pytest.raises(PydanticValidationError):
            consumer.handle_message(wire(payload={"invitation_id": "i-1"}))

        callback.assert_not_called()
        assert not consumer.guard.is_processed("e-1")


class TestRunLoop:
    """Test the poll loop against a mocked KafkaConsumer."""

    @staticmethod
    def record(offset, value, topic="t", partition=0):
        return MagicMock(value=value, topic=topic, partition=partition, offset=offset)

    @staticmethod
    def run_once(consumer, kafka, batches):
        def poll(timeout_ms):
            consumer.stop()
            return batches

        kafka.poll.side_effect = poll
        consumer.run(consumer=kafka)

    def test_commits_after_each_handled_message(self, consumer, callback):
        kafka = MagicMock()
        records = [
            self.record(1, json.dumps(wire(event_id="e-1")).encode("utf-8")),
            self.record(2, json.dumps(wire(event_id="e-2")).encode("utf-8")),
        ]

        self.run_once(consumer, kafka, {"tp": records})

        assert kafka.commit.call_count == 2
        assert callback.call_count == 2
        kafka.seek.assert_not_called()
        kafka.close.assert_called_once()

    def test_malformed_message_is_committed_past(self, consumer, callback):
        """A message that can never be parsed does not block its partition."""
        kafka = MagicMock()
        records = [self.record(1, b"{}"), self.record(2, b"not json"), self.record(3, json.dumps(wire()))]

        self.run_once(consumer, kafka, {"tp": records})

        assert kafka.commit.call_count == 3
        kafka.seek.assert_not_called()
        callback.assert_called_once()

    def test_failed_message_rewinds_partition(self, consumer, callback):
        """Nothing after a failed message is handled or committed on its partition."""
        callback.side_effect = [RuntimeError("analysis backend down"), None]
        kafka = MagicMock()
        records = [
            self.record(1, json.dumps(wire(event_id="e-1"))),
            self.record(2, json.dumps(wire(event_id="e-2"))),
        ]

        self.run_once(consumer, kafka, {"tp": records})

        kafka.seek.assert_called_once_with(TopicPartition("t", 0), 1)
        kafka.commit.assert_not_called()
        callback.assert_called_once()
        assert not consumer.guard.is_processed("e-1")
        assert not consumer.guard.is_processed("e-2")

    def test_failed_message_is_handled_on_redelivery(self, consumer, callback):
        callback.side_effect = [RuntimeError("analysis backend down"), None]
        kafka = MagicMock()
        message = self.record(1, json.dumps(wire(event_id="e-1")))

        self.run_once(consumer, kafka, {"tp": [message]})
        self.run_once(consumer, kafka, {"tp": [message]})

        assert callback.call_count == 2
        kafka.commit.assert_called_once()
        assert consumer.guard.is_processed("e-1")

    def test_database_outage_rewinds_partition(self, consumer, callback):
        kafka = MagicMock()
        consumer.guard = MagicMock()
        consumer.guard.process_safely.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))

        self.run_once(consumer, kafka, {"tp": [self.record(7, json.dumps(wire()))]})

        kafka.seek.assert_called_once_with(TopicPartition("t", 0), 7)
        kafka.commit.assert_not_called()

    def test_other_partitions_keep_going(self, consumer, callback):
        callback.side_effect = [RuntimeError("analysis backend down"), None]
        kafka = MagicMock()
        batches = {
            "tp0": [self.record(1, json.dumps(wire(event_id="e-1")), partition=0)],
            "tp1": [self.record(4, json.dumps(wire(event_id="e-2")), partition=1)],
        }

        self.run_once(consumer, kafka, batches)

        kafka.seek.assert_called_once_with(TopicPartition("t", 0), 1)
        kafka.commit.assert_called_once()
        assert consumer.guard.is_processed("e-2")
