"""
Consumer-side idempotency guard.

Records which events a service has handled in the ``processed_events``
ledger. The ledger's unique ``(event_id, service_name)`` constraint with an
insert-if-absent write is the only concurrency primitive.

Check, handler and mark are separate steps, so a crash between handler and
mark lets the event through again on redelivery: handlers must be safe to
repeat.
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.config import config
from src.persistence.database import Database, get_database
from src.persistence.models import ProcessedEvent

logger = logging.getLogger(__name__)

_LEDGER_KEY = ["event_id", "service_name"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_payload_hash(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    """sha256 of the canonical JSON form of a payload."""
    if payload is None:
        return None
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class IdempotencyGuard:
    """Processed-event ledger operations."""

    def __init__(self, database: Optional[Database] = None, service_name: Optional[str] = None):
        """
        Initialize the guard.

        Args:
            database: Database holding the ledger (uses global if not provided)
            service_name: Default consuming service name
        """
        self._database = database
        self.service_name = service_name or config["idempotency"]["service_name"]

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = get_database()
        return self._database

    def is_processed(self, event_id: str, service_name: Optional[str] = None) -> bool:
        service_name = service_name or self.service_name
        with self.database.transaction() as session:
            found = session.scalar(
                select(ProcessedEvent.id).where(
                    ProcessedEvent.event_id == event_id, ProcessedEvent.service_name == service_name
                )
            )
        return found is not None

    def mark_processed(
        self,
        event_id: str,
        event_type: str,
        service_name: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Record an event as processed by a service.

        Returns:
            bool: True if this call's insert won, False if the event was
            already recorded
        """
        values = {
            "event_id": event_id,
            "event_type": event_type,
            "service_name": service_name or self.service_name,
            "payload_hash": compute_payload_hash(payload),
            "processed_at": _utcnow(),
        }
        with self.database.transaction() as session:
            inserted = self._insert_if_absent(session, values)

        if inserted:
            logger.debug(f"Event {event_id} marked as processed by {values['service_name']}")
        else:
            logger.debug(f"Event {event_id} already marked as processed by {values['service_name']}")
        return inserted

    @staticmethod
    def _insert_if_absent(session: Session, values: Dict[str, Any]) -> bool:
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(ProcessedEvent).values(**values).on_conflict_do_nothing(index_elements=_LEDGER_KEY)
        elif dialect == "sqlite":
            stmt = sqlite_insert(ProcessedEvent).values(**values).on_conflict_do_nothing(index_elements=_LEDGER_KEY)
        else:
            try:
                with session.begin_nested():
                    session.execute(insert(ProcessedEvent).values(**values))
                return True
            except IntegrityError:
                return False

        return session.execute(stmt).rowcount == 1

    def process_safely(
        self,
        event_id: str,
        event_type: str,
        service_name: Optional[str],
        payload: Dict[str, Any],
        handler: Callable[[Dict[str, Any]], Any],
    ) -> bool:
        """
        Run ``handler(payload)`` unless the event was already processed by
        this service, then record it.

        Returns:
            bool: True if the handler ran, False if the event was skipped
        """
        service_name = service_name or self.service_name
        if self.is_processed(event_id, service_name):
            logger.info(f"Skipping duplicate event {event_id} ({event_type}) for {service_name}")
            return False

        handler(payload)

        if not self.mark_processed(event_id, event_type, service_name, payload):
            logger.info(f"Event {event_id} was marked as processed concurrently by another {service_name} instance")
        return True

    def cleanup_old_events(self, retention_days: Optional[int] = None) -> int:
        """
        Delete ledger rows older than the retention window.

        Returns:
            int: Rows deleted
        """
        if retention_days is None:
            retention_days = config["idempotency"]["retention_days"]
        cutoff = _utcnow() - timedelta(days=retention_days)

        with self.database.transaction() as session:
            result = session.execute(
                delete(ProcessedEvent)
                .where(ProcessedEvent.processed_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        deleted = result.rowcount or 0
        logger.info(f"Cleaned up {deleted} processed events older than {retention_days} days")
        return deleted
