"""
Repository for the Invitation aggregate.

Maps aggregates to the relational tables and back, with optimistic
concurrency control on the persisted ``version`` column. All methods work on
the caller's session so that saving the aggregate and writing its outbox rows
happen in one transaction.
"""

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from src.persistence.models import InvitationModel, ResponseModel

from .aggregates import Invitation
from .exceptions import ConcurrencyError, InvitationNotFoundError
from .response import Response

logger = logging.getLogger(__name__)


class InvitationRepository:
    """Loads and saves Invitation aggregates."""

    def get(self, session: Session, invitation_id: str) -> Optional[Invitation]:
        """
        Load an invitation.

        Args:
            session: Active database session
            invitation_id: UUID of the invitation

        Returns:
            Invitation: The reconstituted aggregate, or None if not found
        """
        row = session.get(InvitationModel, invitation_id)
        if row is None:
            logger.debug(f"Invitation {invitation_id} not found")
            return None
        return self._to_aggregate(row)

    def load(self, session: Session, invitation_id: str) -> Invitation:
        """
        Load an invitation that must exist.

        Raises:
            InvitationNotFoundError: If no invitation has this id
        """
        invitation = self.get(session, invitation_id)
        if invitation is None:
            raise InvitationNotFoundError(invitation_id)
        return invitation

    def exists(self, session: Session, invitation_id: str) -> bool:
        return session.scalar(select(InvitationModel.id).where(InvitationModel.id == invitation_id)) is not None

    def save(self, session: Session, invitation: Invitation, expected_version: Optional[int] = None) -> None:
        """
        Persist the aggregate state on the caller's session.

        The uncommitted events are left on the aggregate; the caller drains
        them once the transaction has committed.

        Args:
            session: Active database session (transaction owned by the caller)
            invitation: Aggregate to save
            expected_version: Version the row must have; defaults to the
                version the aggregate was loaded at

        Raises:
            ConcurrencyError: If the row was changed (or created) concurrently
        """
        uncommitted = invitation.get_uncommitted_events()
        if not uncommitted:
            logger.debug(f"No uncommitted events for invitation {invitation.id}")
            return

        if expected_version is None:
            expected_version = invitation.version - len(uncommitted)

        if expected_version < 0:
            self._insert(session, invitation)
        else:
            self._update(session, invitation, expected_version)

        logger.debug(
            f"Saved invitation {invitation.id} with {len(uncommitted)} events, "
            f"version {expected_version} -> {invitation.version}"
        )

    def _insert(self, session: Session, invitation: Invitation) -> None:
        if self.exists(session, invitation.id):
            raise ConcurrencyError(f"Invitation {invitation.id} already exists", expected_version=-1, actual_version=None)

        row = InvitationModel(id=invitation.id)
        self._copy_state(row, invitation)
        row.created_at = invitation.created_at
        row.responses = [self._response_row(invitation.id, i, r) for i, r in enumerate(invitation.responses)]
        session.add(row)
        session.flush()

    def _update(self, session: Session, invitation: Invitation, expected_version: int) -> None:
        values = {
            "status": invitation.status.value,
            "started_at": invitation.started_at,
            "completed_at": invitation.completed_at,
            "last_activity_at": invitation.last_activity_at,
            "completed_reason": invitation.completed_reason.value if invitation.completed_reason else None,
            "version": invitation.version,
            "updated_at": invitation.updated_at,
        }
        result = session.execute(
            update(InvitationModel)
            .where(InvitationModel.id == invitation.id, InvitationModel.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = session.scalar(select(InvitationModel.version).where(InvitationModel.id == invitation.id))
            raise ConcurrencyError(
                f"Invitation {invitation.id} was modified concurrently "
                f"(expected version {expected_version}, found {actual})",
                expected_version=expected_version,
                actual_version=actual,
            )

        # Responses are append-only
        last_position = session.scalar(
            select(func.max(ResponseModel.position)).where(ResponseModel.invitation_id == invitation.id)
        )
        next_position = 0 if last_position is None else last_position + 1
        for response in invitation.responses[next_position:]:
            session.add(self._response_row(invitation.id, next_position, response))
            next_position += 1
        session.flush()

    @staticmethod
    def _copy_state(row: InvitationModel, invitation: Invitation) -> None:
        row.template_id = invitation.template_id
        row.candidate_id = invitation.candidate_id
        row.company_name = invitation.company_name
        row.invited_by = invitation.invited_by
        row.status = invitation.status.value
        row.allow_pause = invitation.allow_pause
        row.show_timer = invitation.show_timer
        row.total_questions = invitation.total_questions
        row.expires_at = invitation.expires_at
        row.started_at = invitation.started_at
        row.completed_at = invitation.completed_at
        row.last_activity_at = invitation.last_activity_at
        row.completed_reason = invitation.completed_reason.value if invitation.completed_reason else None
        row.version = invitation.version
        row.updated_at = invitation.updated_at

    @staticmethod
    def _response_row(invitation_id: str, position: int, response: Response) -> ResponseModel:
        return ResponseModel(
            id=response.id,
            invitation_id=invitation_id,
            position=position,
            question_id=response.question_id,
            question_index=response.question_index,
            question_text=response.question_text,
            response_type=response.response_type.value,
            text_answer=response.text_answer,
            code_answer=response.code_answer,
            video_url=response.video_url,
            duration=response.duration,
            submitted_at=response.submitted_at,
        )

    @staticmethod
    def _to_aggregate(row: InvitationModel) -> Invitation:
        responses = [
            Response(
                response_id=r.id,
                question_id=r.question_id,
                question_index=r.question_index,
                question_text=r.question_text,
                response_type=r.response_type,
                duration=r.duration,
                submitted_at=r.submitted_at,
                text_answer=r.text_answer,
                code_answer=r.code_answer,
                video_url=r.video_url,
            )
            for r in row.responses
        ]
        return Invitation.reconstitute(
            invitation_id=row.id,
            version=row.version,
            template_id=row.template_id,
            candidate_id=row.candidate_id,
            company_name=row.company_name,
            invited_by=row.invited_by,
            expires_at=row.expires_at,
            total_questions=row.total_questions,
            status=row.status,
            allow_pause=row.allow_pause,
            show_timer=row.show_timer,
            started_at=row.started_at,
            completed_at=row.completed_at,
            last_activity_at=row.last_activity_at,
            completed_reason=row.completed_reason,
            responses=responses,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


# Global repository instance
_global_repository: Optional[InvitationRepository] = None


def get_invitation_repository() -> InvitationRepository:
    """
    Get the global InvitationRepository instance.

    Returns:
        InvitationRepository: Shared repository instance
    """
    global _global_repository
    if _global_repository is None:
        _global_repository = InvitationRepository()
    return _global_repository
