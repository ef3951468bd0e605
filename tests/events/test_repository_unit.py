"""
Unit tests for InvitationRepository against a SQLite database.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from src.events.aggregates import Invitation
from src.events.exceptions import ConcurrencyError, InvitationNotFoundError
from src.events.invitation_events import InvitationStatus, ResponseType
from src.events.repository import InvitationRepository, get_invitation_repository
from src.events.response import Response
from src.persistence.models import InvitationModel, ResponseModel

CANDIDATE = "candidate-1"


def make_invitation(total_questions=2):
    return Invitation.create(
        template_id=str(uuid.uuid4()),
        candidate_id=CANDIDATE,
        company_name="Acme",
        invited_by="recruiter-1",
        expires_at=datetime.now(timezone.utc) + timedelta(days=7),
        total_questions=total_questions,
    )


def make_response(question_id, index):
    return Response.create(
        question_id=question_id,
        question_index=index,
        question_text=f"Question {question_id}?",
        response_type=ResponseType.CODE,
        duration=12,
        code_answer="print('hi')",
    )


def save_and_drain(database, repository, invitation):
    with database.transaction() as session:
        repository.save(session, invitation)
    invitation.mark_events_as_committed()


@pytest.fixture
def repository():
    return InvitationRepository()


class TestInvitationRepository:
    """Test loading and saving invitations."""

    def test_insert_and_load_round_trip(self, database, repository):
        """A new invitation is inserted at version 0 and loads back equal."""
        invitation = make_invitation()
        save_and_drain(database, repository, invitation)

        with database.transaction() as session:
            loaded = repository.load(session, invitation.id)
            row = session.get(InvitationModel, invitation.id)
            assert row.version == 0

        assert loaded.id == invitation.id
        assert loaded.version == 0
        assert loaded.status == InvitationStatus.PENDING
        assert loaded.expires_at == invitation.expires_at
        assert loaded.expires_at.tzinfo is not None
        assert loaded.get_uncommitted_events() == []

    def test_update_appends_responses_in_order(self, database, repository):
        """Responses are appended with increasing positions across saves."""
        invitation = make_invitation()
        save_and_drain(database, repository, invitation)

        with database.transaction() as session:
            loaded = repository.load(session, invitation.id)
            loaded.start(CANDIDATE)
            loaded.submit_response(CANDIDATE, make_response("q1", 0))
            repository.save(session, loaded)
        loaded.mark_events_as_committed()

        with database.transaction() as session:
            again = repository.load(session, invitation.id)
            again.submit_response(CANDIDATE, make_response("q2", 1))
            repository.save(session, again)

        with database.transaction() as session:
            final = repository.load(session, invitation.id)
            positions = session.query(ResponseModel.position).order_by(ResponseModel.position).all()

        assert final.version == 3
        assert final.status == InvitationStatus.IN_PROGRESS
        assert [r.question_id for r in final.responses] == ["q1", "q2"]
        assert final.responses[0].code_answer == "print('hi')"
        assert [p for (p,) in positions] == [0, 1]

    def test_save_without_events_is_noop(self, database, repository):
        """Nothing is written when the aggregate has no uncommitted events."""
        invitation = make_invitation()
        invitation.mark_events_as_committed()

        with database.transaction() as session:
            repository.save(session, invitation)
            assert not repository.exists(session, invitation.id)

    def test_stale_version_raises_concurrency_error(self, database, repository):
        """Two writers from the same version: the second loses."""
        invitation = make_invitation()
        save_and_drain(database, repository, invitation)

        with database.transaction() as session:
            first = repository.load(session, invitation.id)
        with database.transaction() as session:
            second = repository.load(session, invitation.id)

        first.start(CANDIDATE)
        with database.transaction() as session:
            repository.save(session, first)

        second.mark_as_expired()
        with pytest.raises(ConcurrencyError) as exc_info:
            with database.transaction() as session:
                repository.save(session, second)

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1

        with database.transaction() as session:
            assert repository.load(session, invitation.id).status == InvitationStatus.IN_PROGRESS

    def test_duplicate_insert_raises_concurrency_error(self, database, repository):
        """Creating an invitation whose id already exists is a conflict."""
        invitation = make_invitation()
        save_and_drain(database, repository, invitation)

        duplicate = Invitation.create(
            template_id=invitation.template_id,
            candidate_id=CANDIDATE,
            company_name="Acme",
            invited_by="recruiter-1",
            expires_at=invitation.expires_at,
            total_questions=2,
            invitation_id=invitation.id,
        )
        with pytest.raises(ConcurrencyError):
            with database.transaction() as session:
                repository.save(session, duplicate)

    def test_get_missing_returns_none(self, database, repository):
        with database.transaction() as session:
            assert repository.get(session, str(uuid.uuid4())) is None

    def test_load_missing_raises(self, database, repository):
        """load() raises a NOT_FOUND domain error."""
        missing = str(uuid.uuid4())
        with pytest.raises(InvitationNotFoundError) as exc_info:
            with database.transaction() as session:
                repository.load(session, missing)
        assert exc_info.value.invitation_id == missing
        assert exc_info.value.kind.http_status == 404


def test_get_invitation_repository_is_singleton():
    assert get_invitation_repository() is get_invitation_repository()
