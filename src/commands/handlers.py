"""
Command handler implementations.

Every use case follows the same flow:

1. Load the invitation (or create it).
2. Call the aggregate method; it validates and raises a domain event.
3. In one transaction, save the aggregate and write one outbox row per
   integration event.
4. After commit, drain the events from the aggregate and schedule publishing.

Database work is synchronous and runs in a worker thread.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from src.events.aggregates import Invitation
from src.events.envelope import EventEnvelope, generate_correlation_id
from src.events.exceptions import AccessDeniedError, DomainError, ValidationError
from src.events.repository import InvitationRepository, get_invitation_repository
from src.events.response import Response
from src.outbox.config import is_integration_event
from src.outbox.writer import OutboxMessage, OutboxWriter, get_outbox_writer
from src.persistence.database import Database, get_database

from . import Command, CommandExecutionError, CommandHandler, CommandResult
from .invitation_commands import (
    CompleteInvitationCommand,
    CreateInvitationCommand,
    ExpireInvitationCommand,
    RecordActivityCommand,
    StartInvitationCommand,
    SubmitResponseCommand,
)

logger = logging.getLogger(__name__)


class InvitationCommandHandler(CommandHandler):
    """Handles invitation commands."""

    def __init__(
        self,
        database: Optional[Database] = None,
        repository: Optional[InvitationRepository] = None,
        outbox: Optional[OutboxWriter] = None,
    ):
        """
        Initialize the handler.

        Args:
            database: Database (uses global if not provided)
            repository: Invitation repository (uses global if not provided)
            outbox: Outbox writer (uses global if not provided)
        """
        self.database = database or get_database()
        self.repository = repository or get_invitation_repository()
        self.outbox = outbox or get_outbox_writer()

    async def handle(self, command: Command) -> CommandResult:
        """
        Handle an invitation command.

        Args:
            command: Invitation command to handle

        Returns:
            CommandResult: Result of command execution
        """
        if isinstance(command, CreateInvitationCommand):
            handler = self._handle_create
        elif isinstance(command, StartInvitationCommand):
            handler = self._handle_start
        elif isinstance(command, SubmitResponseCommand):
            handler = self._handle_submit_response
        elif isinstance(command, CompleteInvitationCommand):
            handler = self._handle_complete
        elif isinstance(command, ExpireInvitationCommand):
            handler = self._handle_expire
        elif isinstance(command, RecordActivityCommand):
            handler = self._handle_record_activity
        else:
            raise ValidationError(f"Unknown command type: {type(command)}")

        try:
            return await asyncio.to_thread(handler, command)
        except DomainError:
            raise
        except Exception as e:
            logger.error(f"Failed to execute {type(command).__name__}: {e}", exc_info=True)
            raise CommandExecutionError(f"Failed to execute {type(command).__name__}: {e}", original_error=e)

    # Use cases
    def _handle_create(self, command: CreateInvitationCommand) -> CommandResult:
        invitation = Invitation.create(
            template_id=command.template_id,
            candidate_id=command.candidate_id,
            company_name=command.company_name,
            invited_by=command.invited_by,
            expires_at=command.expires_at,
            total_questions=command.total_questions,
            allow_pause=command.allow_pause,
            show_timer=command.show_timer,
            invitation_id=command.invitation_id,
            actor=command.actor,
            correlation_id=self._correlation_id(command),
        )
        events, event_ids = self._commit(invitation)

        logger.info(f"Created invitation {invitation.id} for candidate {invitation.candidate_id}")
        return self._result(invitation, events, event_ids, "Invitation created successfully")

    def _handle_start(self, command: StartInvitationCommand) -> CommandResult:
        invitation, events, event_ids = self._load_and_apply(
            command.invitation_id,
            lambda inv: inv.start(command.user_id, **self._envelope_kwargs(command)),
        )
        logger.info(f"Invitation {invitation.id} started by {command.user_id}")
        return self._result(invitation, events, event_ids, "Interview started")

    def _handle_submit_response(self, command: SubmitResponseCommand) -> CommandResult:
        def apply(invitation: Invitation) -> EventEnvelope:
            response = Response.create(
                question_id=command.question_id,
                question_index=command.question_index,
                question_text=command.question_text,
                response_type=command.response_type,
                duration=command.duration,
                text_answer=command.text_answer,
                code_answer=command.code_answer,
                video_url=command.video_url,
            )
            return invitation.submit_response(command.user_id, response, **self._envelope_kwargs(command))

        invitation, events, event_ids = self._load_and_apply(command.invitation_id, apply)
        progress = invitation.get_progress()
        logger.info(
            f"Response to question {command.question_id} submitted for invitation {invitation.id} "
            f"({progress['answered']}/{progress['total']})"
        )
        return self._result(invitation, events, event_ids, "Response submitted")

    def _handle_complete(self, command: CompleteInvitationCommand) -> CommandResult:
        invitation, events, event_ids = self._load_and_apply(
            command.invitation_id,
            lambda inv: inv.complete(
                command.user_id,
                reason=command.reason,
                questions=command.questions,
                template_title=command.template_title,
                language=command.language,
                **self._envelope_kwargs(command),
            ),
        )
        logger.info(f"Invitation {invitation.id} completed (reason: {command.reason.value})")
        return self._result(invitation, events, event_ids, "Interview completed")

    def _handle_expire(self, command: ExpireInvitationCommand) -> CommandResult:
        invitation, events, event_ids = self._load_and_apply(
            command.invitation_id,
            lambda inv: inv.mark_as_expired(**self._envelope_kwargs(command)),
        )
        if events:
            logger.info(f"Invitation {invitation.id} expired")
            return self._result(invitation, events, event_ids, "Invitation expired")
        return self._result(invitation, events, event_ids, f"Invitation already {invitation.status.value}")

    def _handle_record_activity(self, command: RecordActivityCommand) -> CommandResult:
        def apply(invitation: Invitation) -> EventEnvelope:
            if not invitation.is_candidate(command.user_id):
                raise AccessDeniedError("Only the invited candidate can report activity")
            return invitation.update_last_activity(**self._envelope_kwargs(command))

        invitation, events, event_ids = self._load_and_apply(command.invitation_id, apply)
        logger.debug(f"Recorded activity for invitation {invitation.id}")
        return self._result(invitation, events, event_ids, "Activity recorded")

    # Unit of work
    def _load_and_apply(
        self, invitation_id: str, apply: Callable[[Invitation], Optional[EventEnvelope]]
    ) -> Tuple[Invitation, List[EventEnvelope], List[str]]:
        """
        Load, mutate and persist one invitation.

        A domain error raised after the aggregate already recorded an event
        (an expired invitation being started) is re-raised only after that
        transition has been saved.

        Raises:
            InvitationNotFoundError: If the invitation does not exist
            DomainError: If the aggregate rejects the change
        """
        deferred_error: Optional[DomainError] = None
        with self.database.transaction() as session:
            invitation = self.repository.load(session, invitation_id)
            try:
                apply(invitation)
            except DomainError as e:
                if not invitation.get_uncommitted_events():
                    raise
                deferred_error = e
            event_ids = self._persist(session, invitation)

        events = self._drain(invitation, event_ids)
        if deferred_error is not None:
            logger.info(f"Invitation {invitation.id} moved to {invitation.status.value} before rejecting command")
            raise deferred_error
        return invitation, events, event_ids

    def _commit(self, invitation: Invitation) -> Tuple[List[EventEnvelope], List[str]]:
        with self.database.transaction() as session:
            event_ids = self._persist(session, invitation)
        return self._drain(invitation, event_ids), event_ids

    def _persist(self, session: Session, invitation: Invitation) -> List[str]:
        self.repository.save(session, invitation)
        messages = [
            OutboxMessage.from_domain_event(event)
            for event in invitation.get_uncommitted_events()
            if is_integration_event(event.event_type)
        ]
        return self.outbox.save_events_in_transaction(session, messages)

    def _drain(self, invitation: Invitation, event_ids: List[str]) -> List[EventEnvelope]:
        events = invitation.get_uncommitted_events()
        invitation.mark_events_as_committed()
        self.outbox.schedule_publishing(event_ids)
        return events

    # Helpers
    @staticmethod
    def _correlation_id(command: Command) -> str:
        return command.correlation_id or generate_correlation_id()

    def _envelope_kwargs(self, command: Command) -> dict:
        return {"actor": command.actor, "correlation_id": self._correlation_id(command)}

    @staticmethod
    def _result(
        invitation: Invitation, events: List[EventEnvelope], event_ids: List[str], message: str
    ) -> CommandResult:
        return CommandResult(
            aggregate_id=invitation.id,
            version=invitation.version,
            event_count=len(events),
            outbox_event_ids=event_ids,
            status=invitation.status.value,
            message=message,
        )
