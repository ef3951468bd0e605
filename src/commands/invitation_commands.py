"""
Invitation commands.

Commands for creating invitations and driving them through the interview
lifecycle.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from src.events.invitation_events import CompletedReason, QuestionData, ResponseType

from . import Command


class CreateInvitationCommand(Command):
    """Command to invite a candidate to an interview template."""

    template_id: str = Field(..., description="Template the interview is based on")
    candidate_id: str = Field(..., description="Invited candidate")
    company_name: str = Field(..., description="Company shown to the candidate")
    invited_by: str = Field(..., description="HR user who sent the invitation")
    expires_at: datetime = Field(..., description="When the invitation expires (timezone-aware)")
    total_questions: int = Field(..., description="Number of questions in the template")
    allow_pause: bool = Field(True, description="Whether the candidate may pause")
    show_timer: bool = Field(True, description="Whether the timer is shown")
    invitation_id: Optional[str] = Field(None, description="Invitation id (generated if omitted)")


class StartInvitationCommand(Command):
    """Command for the candidate to start the interview."""

    invitation_id: str = Field(..., description="Invitation to start")
    user_id: str = Field(..., description="User starting the interview")


class SubmitResponseCommand(Command):
    """Command to submit an answer to one question."""

    invitation_id: str = Field(..., description="Invitation being answered")
    user_id: str = Field(..., description="User submitting the answer")
    question_id: str = Field(..., description="Question answered")
    question_index: int = Field(..., description="Zero-based position of the question")
    question_text: str = Field(..., description="Question text at the time of answering")
    response_type: ResponseType = Field(..., description="Kind of answer")
    duration: int = Field(..., description="Seconds spent on the answer")
    text_answer: Optional[str] = None
    code_answer: Optional[str] = None
    video_url: Optional[str] = None


class CompleteInvitationCommand(Command):
    """Command to complete the interview (candidate or system)."""

    invitation_id: str = Field(..., description="Invitation to complete")
    user_id: Optional[str] = Field(None, description="Candidate id; None for system completion")
    reason: CompletedReason = Field(CompletedReason.MANUAL, description="Why the interview completes")
    questions: List[QuestionData] = Field(..., min_length=1, description="Template questions for analysis")
    template_title: Optional[str] = Field(None, description="Template title for the analysis service")
    language: str = Field("en", description="Interview language")


class ExpireInvitationCommand(Command):
    """Command to force an invitation to expired."""

    invitation_id: str = Field(..., description="Invitation to expire")


class RecordActivityCommand(Command):
    """Heartbeat from the candidate's interview session."""

    invitation_id: str = Field(..., description="Invitation in progress")
    user_id: str = Field(..., description="User sending the heartbeat")
