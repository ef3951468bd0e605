"""
Unit tests for the error hierarchy and its kinds.
"""

import pytest

from src.events.exceptions import (
    AccessDeniedError,
    ConcurrencyError,
    DomainError,
    DuplicateResponseError,
    ErrorKind,
    ExpiredError,
    IncompleteError,
    InvalidStateError,
    InvitationNotFoundError,
    RetryablePublishError,
    ValidationError,
)


@pytest.mark.parametrize(
    "error, kind, status",
    [
        (ValidationError("bad", field="x"), ErrorKind.VALIDATION, 422),
        (InvalidStateError("bad", current_status="pending"), ErrorKind.VALIDATION, 422),
        (ExpiredError(), ErrorKind.VALIDATION, 422),
        (IncompleteError(1, 3), ErrorKind.VALIDATION, 422),
        (AccessDeniedError("no"), ErrorKind.ACCESS_DENIED, 403),
        (InvitationNotFoundError("i-1"), ErrorKind.NOT_FOUND, 404),
        (DuplicateResponseError("q1"), ErrorKind.CONFLICT, 409),
        (ConcurrencyError("stale", expected_version=1, actual_version=2), ErrorKind.CONFLICT, 409),
        (RetryablePublishError("e-1", 1, RuntimeError("down")), ErrorKind.INFRASTRUCTURE, 503),
    ],
)
def test_error_kinds(error, kind, status):
    """Every error carries its kind and the matching HTTP status."""
    assert isinstance(error, DomainError)
    assert error.kind == kind
    assert error.kind.http_status == status


def test_incomplete_error_message():
    error = IncompleteError(2, 5)
    assert str(error) == "All questions must be answered before completing. Answered: 2/5"


def test_retryable_publish_error_keeps_cause():
    cause = ConnectionError("broker down")
    error = RetryablePublishError("e-1", 2, cause)

    assert error.original_error is cause
    assert error.retry_count == 2
    assert "broker down" in error.message
