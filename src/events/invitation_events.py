"""
Invitation aggregate domain events.

Defines the status and reason enums of the invitation lifecycle, the event
type names, and the data payloads carried by each event.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class InvitationStatus(str, Enum):
    """Possible status values for an invitation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"

    def can_be_started(self) -> bool:
        return self is InvitationStatus.PENDING

    def can_submit_response(self) -> bool:
        return self is InvitationStatus.IN_PROGRESS

    def can_be_completed(self) -> bool:
        return self is InvitationStatus.IN_PROGRESS

    def is_finished(self) -> bool:
        """Completed and expired are terminal."""
        return self in (InvitationStatus.COMPLETED, InvitationStatus.EXPIRED)


class CompletedReason(str, Enum):
    """Why an invitation was completed."""

    MANUAL = "manual"
    AUTO_TIMEOUT = "auto_timeout"
    EXPIRED = "expired"


class ResponseType(str, Enum):
    """Kind of answer a response carries."""

    TEXT = "text"
    CODE = "code"
    VIDEO = "video"


# Event type names (also used as outbox event types and for topic routing)
INVITATION_CREATED = "invitation.created"
INVITATION_STARTED = "invitation.started"
RESPONSE_SUBMITTED = "invitation.response.submitted"
INVITATION_COMPLETED = "invitation.completed"
INVITATION_EXPIRED = "invitation.expired"
INVITATION_ACTIVITY = "invitation.activity"


class QuestionData(BaseModel):
    """Template question as carried in the completion event."""

    id: str
    text: str
    type: str
    order: int = Field(..., ge=0)
    time_limit: Optional[int] = Field(None, description="Seconds allowed for the question")


class InvitationCreatedData(BaseModel):
    """Data payload for invitation.created."""

    invitation_id: str
    template_id: str
    candidate_id: str
    company_name: str
    invited_by: str
    expires_at: datetime
    total_questions: int
    allow_pause: bool
    show_timer: bool


class InvitationStartedData(BaseModel):
    """Data payload for invitation.started."""

    invitation_id: str
    candidate_id: str
    template_id: str
    started_at: datetime


class ResponseSubmittedData(BaseModel):
    """Data payload for invitation.response.submitted."""

    invitation_id: str
    response_id: str
    question_id: str
    response_type: ResponseType
    answered: int
    total: int
    submitted_at: datetime


class CompletedResponseData(BaseModel):
    """A single response as carried in the completion event."""

    id: str
    question_id: str
    question_index: int
    response_type: ResponseType
    text: str = ""
    duration: int


class InvitationCompletedData(BaseModel):
    """
    Data payload for invitation.completed.

    This is the integration payload for the analysis service, so it carries
    the full question list and every response.
    """

    invitation_id: str
    candidate_id: str
    template_id: str
    template_title: Optional[str] = None
    company_name: str
    reason: CompletedReason
    answered: int
    total: int
    completed_at: datetime
    language: str = "en"
    questions: List[QuestionData] = Field(default_factory=list)
    responses: List[CompletedResponseData] = Field(default_factory=list)


class InvitationExpiredData(BaseModel):
    """Data payload for invitation.expired."""

    invitation_id: str
    candidate_id: str
    previous_status: InvitationStatus
    expired_at: datetime


class InvitationActivityData(BaseModel):
    """Data payload for invitation.activity (heartbeat)."""

    invitation_id: str
    last_activity_at: datetime
