"""
Unit tests for the domain event envelope and the integration wire envelope.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.events.envelope import (
    AggregateType,
    EventEnvelope,
    IntegrationEnvelope,
    generate_correlation_id,
    generate_event_id,
)


class TestEventEnvelope:
    """Test EventEnvelope validation."""

    def test_defaults(self):
        event = EventEnvelope(
            event_type="invitation.started",
            aggregate_type=AggregateType.INVITATION,
            aggregate_id=str(uuid.uuid4()),
            version=1,
            data={},
        )

        uuid.UUID(event.event_id)
        assert event.occurred_at.tzinfo == timezone.utc
        assert event.aggregate_type == "Invitation"

    def test_occurred_at_converted_to_utc(self):
        """Non-UTC offsets are normalized."""
        plus_two = timezone(timedelta(hours=2))
        event = EventEnvelope(
            event_type="invitation.started",
            aggregate_type=AggregateType.INVITATION,
            aggregate_id=str(uuid.uuid4()),
            version=1,
            occurred_at=datetime(2026, 1, 1, 12, 0, tzinfo=plus_two),
            data={},
        )
        assert event.occurred_at == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_naive_occurred_at_rejected(self):
        with pytest.raises(PydanticValidationError):
            EventEnvelope(
                event_type="invitation.started",
                aggregate_type=AggregateType.INVITATION,
                aggregate_id=str(uuid.uuid4()),
                version=1,
                occurred_at=datetime(2026, 1, 1),
                data={},
            )

    def test_aggregate_id_must_be_uuid(self):
        with pytest.raises(PydanticValidationError, match="valid UUID"):
            EventEnvelope(
                event_type="invitation.started",
                aggregate_type=AggregateType.INVITATION,
                aggregate_id="not-a-uuid",
                version=1,
                data={},
            )


class TestIntegrationEnvelope:
    """Test the camelCase wire envelope."""

    def test_to_wire_uses_camel_case(self):
        envelope = IntegrationEnvelope(
            event_id="e-1",
            event_type="invitation.completed",
            version=1,
            source="interview-service",
            payload={"invitation_id": "i-1"},
        )

        wire = envelope.to_wire()

        assert set(wire) == {"eventId", "eventType", "timestamp", "version", "source", "payload"}
        assert wire["eventId"] == "e-1"
        assert isinstance(wire["timestamp"], int)
        assert wire["timestamp"] > 1_600_000_000_000

    def test_from_wire(self):
        envelope = IntegrationEnvelope.from_wire(
            {
                "eventId": "e-2",
                "eventType": "invitation.expired",
                "timestamp": 1,
                "version": 1,
                "source": "interview-service",
                "payload": {},
            }
        )
        assert envelope.event_id == "e-2"
        assert envelope.event_type == "invitation.expired"

    def test_from_wire_rejects_missing_event_id(self):
        with pytest.raises(PydanticValidationError):
            IntegrationEnvelope.from_wire({"eventType": "x", "version": 1, "source": "s"})


def test_generated_ids_are_unique_uuids():
    ids = {generate_event_id() for _ in range(10)} | {generate_correlation_id()}
    assert len(ids) == 11
    for value in ids:
        uuid.UUID(value)
