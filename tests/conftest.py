"""
Shared fixtures: a throwaway SQLite database, an in-memory delivery queue and
a recording message bus.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from sqlalchemy import select

from src.outbox.message_bus import MessageBus
from src.persistence.database import Database
from src.persistence.models import OutboxEntry, OutboxStatus


class FakeDeliveryQueue:
    """Records enqueued event ids and suppresses duplicates like the Redis marker does."""

    def __init__(self):
        self.enqueued: List[str] = []
        self.released: List[str] = []
        self._markers: Set[str] = set()
        self.error: Optional[Exception] = None

    def enqueue(self, event_id: str) -> bool:
        if self.error is not None:
            raise self.error
        if event_id in self._markers:
            return False
        self._markers.add(event_id)
        self.enqueued.append(event_id)
        return True

    def enqueue_many(self, event_ids) -> int:
        return sum(1 for event_id in event_ids if self.enqueue(event_id))

    def release(self, event_id: str) -> None:
        self._markers.discard(event_id)
        self.released.append(event_id)


class RecordingMessageBus(MessageBus):
    """Keeps published messages in memory; can be told to fail."""

    def __init__(self):
        self.published: List[Tuple[str, str, Dict[str, Any]]] = []
        self.error: Optional[Exception] = None

    def publish(self, topic: str, key: str, value: Dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.published.append((topic, key, value))


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite database with all tables created."""
    db = Database(f"sqlite:///{tmp_path / 'interview.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def fake_queue():
    return FakeDeliveryQueue()


@pytest.fixture
def message_bus():
    return RecordingMessageBus()


@pytest.fixture
def add_outbox_row(database):
    """Insert an outbox row directly; returns its event id."""

    def _add(
        event_id: Optional[str] = None,
        status: str = OutboxStatus.PENDING.value,
        event_type: str = "invitation.started",
        aggregate_id: str = "00000000-0000-0000-0000-000000000001",
        retry_count: int = 0,
        age: timedelta = timedelta(0),
        published_age: Optional[timedelta] = None,
        error_message: Optional[str] = None,
    ) -> str:
        event_id = event_id or str(uuid.uuid4())
        stamp = datetime.now(timezone.utc) - age
        with database.transaction() as session:
            session.add(
                OutboxEntry(
                    event_id=event_id,
                    aggregate_id=aggregate_id,
                    event_type=event_type,
                    payload={"eventId": event_id, "eventType": event_type, "payload": {}},
                    status=status,
                    retry_count=retry_count,
                    error_message=error_message,
                    created_at=stamp,
                    updated_at=stamp,
                    published_at=None if published_age is None else datetime.now(timezone.utc) - published_age,
                )
            )
        return event_id

    return _add


@pytest.fixture
def get_outbox_row(database):
    """Fetch an outbox row by event id (None if deleted)."""

    def _get(event_id: str) -> Optional[OutboxEntry]:
        with database.transaction() as session:
            return session.scalars(select(OutboxEntry).where(OutboxEntry.event_id == event_id)).one_or_none()

    return _get
