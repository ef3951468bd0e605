"""
src/persistence/models.py

Table definitions: invitations with their responses, the transactional
outbox, and the consumer-side processed-event ledger.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutboxStatus(str, Enum):
    """Delivery status of an outbox row."""

    PENDING = "pending"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"


class InvitationModel(Base):
    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    template_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    candidate_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    invited_by: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    allow_pause: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    show_timer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    completed_reason: Mapped[Optional[str]] = mapped_column(String(20))
    # Optimistic concurrency token, equals the aggregate version after the last save
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    responses: Mapped[List["ResponseModel"]] = relationship(
        back_populates="invitation",
        cascade="all, delete-orphan",
        order_by="ResponseModel.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"InvitationModel(id={self.id!r}, status={self.status!r}, version={self.version})"


class ResponseModel(Base):
    __tablename__ = "invitation_responses"
    __table_args__ = (UniqueConstraint("invitation_id", "question_id", name="uq_response_invitation_question"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    invitation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invitations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Submission order within the invitation
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    question_id: Mapped[str] = mapped_column(String(36), nullable=False)
    question_index: Mapped[int] = mapped_column(Integer, nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    response_type: Mapped[str] = mapped_column(String(10), nullable=False)
    text_answer: Mapped[Optional[str]] = mapped_column(Text)
    code_answer: Mapped[Optional[str]] = mapped_column(Text)
    video_url: Mapped[Optional[str]] = mapped_column(String(2000))
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    invitation: Mapped[InvitationModel] = relationship(back_populates="responses")


class OutboxEntry(Base):
    """One integration event awaiting (or done with) delivery."""

    __tablename__ = "outbox"
    __table_args__ = (
        Index("ix_outbox_status_updated_at", "status", "updated_at"),
        Index("ix_outbox_status_published_at", "status", "published_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=OutboxStatus.PENDING.value)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    # Stamped on every status change
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    published_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    def __repr__(self) -> str:
        return (
            f"OutboxEntry(event_id={self.event_id!r}, event_type={self.event_type!r}, "
            f"status={self.status!r}, retry_count={self.retry_count})"
        )


class ProcessedEvent(Base):
    """Consumer-side ledger row: one per (event, consuming service)."""

    __tablename__ = "processed_events"
    __table_args__ = (
        UniqueConstraint("event_id", "service_name", name="uq_processed_event_service"),
        Index("ix_processed_events_processed_at", "processed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    service_name: Mapped[str] = mapped_column(String(100), nullable=False)
    payload_hash: Mapped[Optional[str]] = mapped_column(String(64))
    processed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
