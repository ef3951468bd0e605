"""
Relational persistence: engine/session management and table definitions.
"""

from .database import Base, Database, DatabaseManager, UTCDateTime, get_database
from .models import InvitationModel, OutboxEntry, OutboxStatus, ProcessedEvent, ResponseModel

__all__ = [
    "Base",
    "Database",
    "DatabaseManager",
    "UTCDateTime",
    "get_database",
    "InvitationModel",
    "ResponseModel",
    "OutboxEntry",
    "OutboxStatus",
    "ProcessedEvent",
]
