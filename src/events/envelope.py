"""
Event envelope and metadata models.

Two shapes live here:

- ``EventEnvelope``: the in-process domain event raised by an aggregate. It
  carries the aggregate identity and version so the caller can persist the
  aggregate and then drain its events.
- ``IntegrationEnvelope``: the stable wire format written to the outbox and
  published to the message bus
  (``{eventId, eventType, timestamp, version, source, payload}``).
"""

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class ActorType(str, Enum):
    """Type of actor that initiated the event."""

    HUMAN = "human"
    SYSTEM = "system"


class AggregateType(str, Enum):
    """Type of aggregate the event belongs to."""

    INVITATION = "Invitation"


class Actor(BaseModel):
    """Information about who/what initiated the event."""

    user_id: Optional[str] = None
    display: Optional[str] = None
    actor_type: ActorType

    class Config:
        """Pydantic configuration."""

        use_enum_values = True


class EventEnvelope(BaseModel):
    """
    Domain event raised by an aggregate.

    Events are appended to the aggregate's uncommitted list and returned to
    the caller; they are drained only after the aggregate has been persisted.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique event identifier (UUIDv4)")
    event_type: str = Field(..., description="Type of event (e.g., invitation.started)")
    aggregate_type: AggregateType = Field(..., description="Type of aggregate")
    aggregate_id: str = Field(..., description="UUID of the aggregate instance")
    version: int = Field(..., ge=0, description="Version number of the aggregate after this event")
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="When the event occurred (UTC)"
    )
    data: Dict[str, Any] = Field(..., description="Event-specific data payload")
    actor: Optional[Actor] = Field(None, description="Who/what initiated this event")
    correlation_id: Optional[str] = Field(None, description="Groups related events from one user action")

    @field_validator("occurred_at")
    @classmethod
    def occurred_at_must_be_utc(cls, v):
        """Ensure occurred_at is timezone-aware and in UTC."""
        if v.tzinfo is None:
            raise ValueError("occurred_at must be timezone-aware")
        if v.tzinfo != timezone.utc:
            v = v.astimezone(timezone.utc)
        return v

    @field_validator("aggregate_id")
    @classmethod
    def aggregate_id_must_be_valid_uuid(cls, v):
        """Validate that aggregate_id is a valid UUID."""
        try:
            uuid.UUID(v)
        except ValueError:
            raise ValueError("aggregate_id must be a valid UUID")
        return v

    class Config:
        """Pydantic configuration."""

        use_enum_values = True


class IntegrationEnvelope(BaseModel):
    """
    Wire envelope stored in the outbox payload column and published to the bus.

    Field names are snake_case in Python and camelCase on the wire.
    """

    event_id: str = Field(..., alias="eventId")
    event_type: str = Field(..., alias="eventType")
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000), description="Epoch milliseconds")
    version: int = Field(..., ge=1)
    source: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        """Pydantic configuration."""

        populate_by_name = True

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the camelCase wire dictionary."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "IntegrationEnvelope":
        """Parse a wire dictionary (as received from the bus)."""
        return cls.model_validate(data)


def generate_event_id() -> str:
    """
    Generate a new event ID using UUIDv4.

    Returns:
        str: A new UUID as a string
    """
    return str(uuid.uuid4())


def generate_correlation_id() -> str:
    """
    Generate a new correlation ID for grouping related events.

    Returns:
        str: A new UUID as a string
    """
    return str(uuid.uuid4())
