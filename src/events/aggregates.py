"""
Aggregate root base class and the Invitation aggregate.

The Invitation enforces the interview lifecycle:

    pending -> in_progress -> completed | expired
    pending -> expired

Every mutating method validates, changes state, appends a domain event to the
uncommitted list and returns that event. Callers persist the aggregate first
and only then drain the events with ``get_uncommitted_events()`` followed by
``mark_events_as_committed()``.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .envelope import Actor, AggregateType, EventEnvelope
from .exceptions import (
    AccessDeniedError,
    DuplicateResponseError,
    ExpiredError,
    IncompleteError,
    InvalidStateError,
    ValidationError,
)
from .invitation_events import (
    INVITATION_ACTIVITY,
    INVITATION_COMPLETED,
    INVITATION_CREATED,
    INVITATION_EXPIRED,
    INVITATION_STARTED,
    RESPONSE_SUBMITTED,
    CompletedReason,
    CompletedResponseData,
    InvitationActivityData,
    InvitationCompletedData,
    InvitationCreatedData,
    InvitationExpiredData,
    InvitationStartedData,
    InvitationStatus,
    QuestionData,
    ResponseSubmittedData,
)
from .response import Response


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AggregateRoot:
    """
    Base class for aggregates that raise domain events.

    Provides version tracking and uncommitted event management. ``version``
    counts the events ever raised by the aggregate; -1 means nothing has
    happened yet.
    """

    aggregate_type: AggregateType

    def __init__(self, aggregate_id: str):
        """
        Initialize a new aggregate root.

        Args:
            aggregate_id: Unique identifier for this aggregate instance
        """
        self.aggregate_id = aggregate_id
        self.version = -1
        self._uncommitted_events: List[EventEnvelope] = []

    def get_uncommitted_events(self) -> List[EventEnvelope]:
        """
        Get the list of uncommitted events.

        Returns:
            List[EventEnvelope]: Events that haven't been drained yet
        """
        return self._uncommitted_events.copy()

    def mark_events_as_committed(self) -> None:
        """Mark all uncommitted events as committed (clear the list)."""
        self._uncommitted_events.clear()

    def _add_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        actor: Optional[Actor] = None,
        correlation_id: Optional[str] = None,
    ) -> EventEnvelope:
        """
        Record a new event in the uncommitted events list.

        Args:
            event_type: Type of event being added
            data: Event-specific data payload (JSON-ready)
            actor: Who/what initiated this event
            correlation_id: Groups related events from one user action

        Returns:
            EventEnvelope: The created event
        """
        event = EventEnvelope(
            event_type=event_type,
            aggregate_type=self.aggregate_type,
            aggregate_id=self.aggregate_id,
            version=self.version + 1,
            data=data,
            actor=actor,
            correlation_id=correlation_id,
        )
        self._uncommitted_events.append(event)
        self.version = event.version
        return event


class Invitation(AggregateRoot):
    """
    Invitation aggregate: one candidate's run through one interview template.

    Owns its responses. Immutable after creation: template, candidate,
    company, inviter, expiry, question count and the pause/timer settings.
    """

    aggregate_type = AggregateType.INVITATION

    def __init__(self, aggregate_id: str):
        """Initialize an empty Invitation; use ``create`` or ``reconstitute``."""
        super().__init__(aggregate_id)
        self.template_id: Optional[str] = None
        self.candidate_id: Optional[str] = None
        self.company_name: Optional[str] = None
        self.invited_by: Optional[str] = None
        self.expires_at: Optional[datetime] = None
        self.total_questions: int = 0
        self.allow_pause: bool = True
        self.show_timer: bool = True
        self.status: InvitationStatus = InvitationStatus.PENDING
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.last_activity_at: Optional[datetime] = None
        self.completed_reason: Optional[CompletedReason] = None
        self._responses: List[Response] = []
        self.created_at: Optional[datetime] = None
        self.updated_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.aggregate_id

    @property
    def responses(self) -> List[Response]:
        """Responses in submission order (a copy)."""
        return list(self._responses)

    # Factories
    @classmethod
    def create(
        cls,
        template_id: str,
        candidate_id: str,
        company_name: str,
        invited_by: str,
        expires_at: datetime,
        total_questions: int,
        allow_pause: bool = True,
        show_timer: bool = True,
        invitation_id: Optional[str] = None,
        actor: Optional[Actor] = None,
        correlation_id: Optional[str] = None,
    ) -> "Invitation":
        """
        Create a new pending invitation and raise ``invitation.created``.

        Raises:
            ValidationError: If a required field is missing or blank, the
                expiry is not in the future, there are no questions,
                or a given invitation id is not a UUID
        """
        if not template_id:
            raise ValidationError("Template ID is required", field="template_id")
        if not candidate_id:
            raise ValidationError("Candidate ID is required", field="candidate_id")
        if not company_name or not company_name.strip():
            raise ValidationError("Company name is required", field="company_name")
        if not invited_by:
            raise ValidationError("Inviter ID is required", field="invited_by")
        if expires_at is None:
            raise ValidationError("Expiration date is required", field="expires_at")
        if expires_at.tzinfo is None:
            raise ValidationError("Expiration date must be timezone-aware", field="expires_at")

        now = _utcnow()
        if expires_at <= now:
            raise ValidationError("Expiration date must be in the future", field="expires_at")
        if total_questions is None or total_questions < 1:
            raise ValidationError("Template must have at least one question", field="total_questions")
        if invitation_id is not None:
            try:
                uuid.UUID(invitation_id)
            except (AttributeError, TypeError, ValueError):
                raise ValidationError("Invitation ID must be a valid UUID", field="invitation_id")

        invitation = cls(invitation_id or str(uuid.uuid4()))
        invitation.template_id = template_id
        invitation.candidate_id = candidate_id
        invitation.company_name = company_name.strip()
        invitation.invited_by = invited_by
        invitation.expires_at = expires_at
        invitation.total_questions = total_questions
        invitation.allow_pause = allow_pause
        invitation.show_timer = show_timer
        invitation.status = InvitationStatus.PENDING
        invitation.created_at = now
        invitation.updated_at = now

        data = InvitationCreatedData(
            invitation_id=invitation.id,
            template_id=template_id,
            candidate_id=candidate_id,
            company_name=invitation.company_name,
            invited_by=invited_by,
            expires_at=expires_at,
            total_questions=total_questions,
            allow_pause=allow_pause,
            show_timer=show_timer,
        )
        invitation._add_event(
            INVITATION_CREATED, data.model_dump(mode="json"), actor=actor, correlation_id=correlation_id
        )
        return invitation

    @classmethod
    def reconstitute(
        cls,
        invitation_id: str,
        version: int,
        template_id: str,
        candidate_id: str,
        company_name: str,
        invited_by: str,
        expires_at: datetime,
        total_questions: int,
        status: InvitationStatus,
        allow_pause: bool = True,
        show_timer: bool = True,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        last_activity_at: Optional[datetime] = None,
        completed_reason: Optional[CompletedReason] = None,
        responses: Optional[Sequence[Response]] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> "Invitation":
        """Rebuild an invitation from persisted state without raising events."""
        invitation = cls(invitation_id)
        invitation.version = version
        invitation.template_id = template_id
        invitation.candidate_id = candidate_id
        invitation.company_name = company_name
        invitation.invited_by = invited_by
        invitation.expires_at = expires_at
        invitation.total_questions = total_questions
        invitation.status = InvitationStatus(status)
        invitation.allow_pause = allow_pause
        invitation.show_timer = show_timer
        invitation.started_at = started_at
        invitation.completed_at = completed_at
        invitation.last_activity_at = last_activity_at
        invitation.completed_reason = CompletedReason(completed_reason) if completed_reason else None
        invitation._responses = list(responses or [])
        invitation.created_at = created_at
        invitation.updated_at = updated_at
        return invitation

    # Queries
    def is_expired(self) -> bool:
        return _utcnow() > self.expires_at

    def is_candidate(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.candidate_id == user_id

    def is_inviter(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.invited_by == user_id

    def can_be_accessed_by(self, user_id: str, is_admin: bool = False) -> bool:
        if is_admin:
            return True
        return self.is_candidate(user_id) or self.is_inviter(user_id)

    def get_progress(self) -> Dict[str, int]:
        """Answered/total counts and a rounded integer percentage."""
        answered = len(self._responses)
        total = self.total_questions
        percentage = int(answered * 100 / total + 0.5) if total > 0 else 0
        return {"answered": answered, "total": total, "percentage": percentage}

    def is_all_questions_answered(self) -> bool:
        return len(self._responses) >= self.total_questions

    def get_response_by_question_id(self, question_id: str) -> Optional[Response]:
        for response in self._responses:
            if response.question_id == question_id:
                return response
        return None

    def get_answered_question_ids(self) -> List[str]:
        return [r.question_id for r in self._responses]

    # Commands
    def start(self, user_id: str, **envelope_kwargs) -> EventEnvelope:
        """
        Start the interview.

        An expired invitation is moved to ``expired`` (and an
        ``invitation.expired`` event is recorded) before ExpiredError is
        raised, so the caller should persist the aggregate in that case.

        Raises:
            AccessDeniedError: If user_id is not the candidate
            ExpiredError: If the invitation is past its expiry
            InvalidStateError: If the invitation is not pending

        Returns:
            EventEnvelope: The invitation.started event
        """
        if not self.is_candidate(user_id):
            raise AccessDeniedError("Only the invited candidate can start this interview")

        if self.is_expired():
            if not self.status.is_finished():
                self._expire(**envelope_kwargs)
            raise ExpiredError("This invitation has expired")

        if not self.status.can_be_started():
            raise InvalidStateError(
                "Interview can only be started from pending status", current_status=self.status.value
            )

        now = _utcnow()
        self.status = InvitationStatus.IN_PROGRESS
        self.started_at = now
        self.last_activity_at = now
        self.updated_at = now

        data = InvitationStartedData(
            invitation_id=self.id,
            candidate_id=self.candidate_id,
            template_id=self.template_id,
            started_at=now,
        )
        return self._add_event(INVITATION_STARTED, data.model_dump(mode="json"), **envelope_kwargs)

    def submit_response(self, user_id: str, response: Response, **envelope_kwargs) -> EventEnvelope:
        """
        Submit a response to a question.

        Raises:
            AccessDeniedError: If user_id is not the candidate
            ExpiredError: If the invitation is past its expiry
            InvalidStateError: If the interview is not in progress
            DuplicateResponseError: If the question was already answered

        Returns:
            EventEnvelope: The invitation.response.submitted event
        """
        if not self.is_candidate(user_id):
            raise AccessDeniedError("Only the invited candidate can submit responses")

        if self.is_expired():
            raise ExpiredError("Cannot submit response to expired invitation")

        if not self.status.can_submit_response():
            raise InvalidStateError(
                "Can only submit responses when interview is in progress", current_status=self.status.value
            )

        if self.get_response_by_question_id(response.question_id) is not None:
            raise DuplicateResponseError(response.question_id)

        now = _utcnow()
        self._responses.append(response)
        self.last_activity_at = now
        self.updated_at = now

        data = ResponseSubmittedData(
            invitation_id=self.id,
            response_id=response.id,
            question_id=response.question_id,
            response_type=response.response_type,
            answered=len(self._responses),
            total=self.total_questions,
            submitted_at=response.submitted_at,
        )
        return self._add_event(RESPONSE_SUBMITTED, data.model_dump(mode="json"), **envelope_kwargs)

    def complete(
        self,
        user_id: Optional[str],
        reason: CompletedReason = CompletedReason.MANUAL,
        questions: Optional[Sequence[QuestionData]] = None,
        template_title: Optional[str] = None,
        language: str = "en",
        **envelope_kwargs,
    ) -> EventEnvelope:
        """
        Complete the interview.

        Manual completion is candidate-initiated and requires every question
        to be answered. ``auto_timeout`` and ``expired`` are system-initiated
        (user_id is None) and complete with whatever answers exist.

        Raises:
            AccessDeniedError: On manual completion by anyone but the candidate
            InvalidStateError: If the interview is not in progress
            IncompleteError: On manual completion with unanswered questions

        Returns:
            EventEnvelope: The invitation.completed event
        """
        reason = CompletedReason(reason)

        if reason is CompletedReason.MANUAL and not self.is_candidate(user_id):
            raise AccessDeniedError("Only the invited candidate can complete this interview")

        if not self.status.can_be_completed():
            raise InvalidStateError(
                "Interview can only be completed when in progress", current_status=self.status.value
            )

        answered = len(self._responses)
        if reason is CompletedReason.MANUAL and answered < self.total_questions:
            raise IncompleteError(answered, self.total_questions)

        now = _utcnow()
        self.status = InvitationStatus.COMPLETED
        self.completed_at = now
        self.completed_reason = reason
        self.updated_at = now

        data = InvitationCompletedData(
            invitation_id=self.id,
            candidate_id=self.candidate_id,
            template_id=self.template_id,
            template_title=template_title,
            company_name=self.company_name,
            reason=reason,
            answered=answered,
            total=self.total_questions,
            completed_at=now,
            language=language,
            questions=list(questions or []),
            responses=[
                CompletedResponseData(
                    id=r.id,
                    question_id=r.question_id,
                    question_index=r.question_index,
                    response_type=r.response_type,
                    text=r.get_answer() or "",
                    duration=r.duration,
                )
                for r in self._responses
            ],
        )
        return self._add_event(INVITATION_COMPLETED, data.model_dump(mode="json"), **envelope_kwargs)

    def mark_as_expired(self, **envelope_kwargs) -> Optional[EventEnvelope]:
        """
        Force the invitation to ``expired``.

        Returns:
            EventEnvelope: The invitation.expired event, or None if the
            invitation was already completed or expired
        """
        if self.status.is_finished():
            return None
        return self._expire(**envelope_kwargs)

    def update_last_activity(self, **envelope_kwargs) -> EventEnvelope:
        """Heartbeat: re-stamp last_activity_at."""
        now = _utcnow()
        self.last_activity_at = now
        self.updated_at = now

        data = InvitationActivityData(invitation_id=self.id, last_activity_at=now)
        return self._add_event(INVITATION_ACTIVITY, data.model_dump(mode="json"), **envelope_kwargs)

    def _expire(self, **envelope_kwargs) -> EventEnvelope:
        previous_status = self.status
        now = _utcnow()
        self.status = InvitationStatus.EXPIRED
        self.updated_at = now

        data = InvitationExpiredData(
            invitation_id=self.id,
            candidate_id=self.candidate_id,
            previous_status=previous_status,
            expired_at=now,
        )
        return self._add_event(INVITATION_EXPIRED, data.model_dump(mode="json"), **envelope_kwargs)

    def to_dict(self) -> Dict[str, Any]:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "template_id": self.template_id,
            "candidate_id": self.candidate_id,
            "company_name": self.company_name,
            "invited_by": self.invited_by,
            "status": self.status.value,
            "allow_pause": self.allow_pause,
            "show_timer": self.show_timer,
            "expires_at": _iso(self.expires_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "last_activity_at": _iso(self.last_activity_at),
            "completed_reason": self.completed_reason.value if self.completed_reason else None,
            "responses": [r.to_dict() for r in self._responses],
            "total_questions": self.total_questions,
            "progress": self.get_progress(),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
