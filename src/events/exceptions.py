"""
Domain and infrastructure exceptions for the invitation core.

Every error carries an explicit ErrorKind chosen where it is raised, so callers
(HTTP layer, job runner) can map it to a response category without looking at
the message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Category of a domain error."""

    VALIDATION = "validation"
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INFRASTRUCTURE = "infrastructure"

    @property
    def http_status(self) -> int:
        """HTTP status code conventionally used for this kind."""
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INFRASTRUCTURE: 503,
}


class DomainError(Exception):
    """Base class for all errors raised by the invitation core."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class ValidationError(DomainError):
    """Raised when input data violates an aggregate or entity invariant."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, ErrorKind.VALIDATION)
        self.field = field


class InvalidStateError(DomainError):
    """Raised when an operation is not allowed in the current status."""

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, ErrorKind.VALIDATION)
        self.current_status = current_status


class ExpiredError(DomainError):
    """Raised when an operation is attempted after the invitation expired."""

    def __init__(self, message: str = "This invitation has expired"):
        super().__init__(message, ErrorKind.VALIDATION)


class IncompleteError(DomainError):
    """Raised on manual completion while questions are still unanswered."""

    def __init__(self, answered: int, total: int):
        super().__init__(
            f"All questions must be answered before completing. Answered: {answered}/{total}",
            ErrorKind.VALIDATION,
        )
        self.answered = answered
        self.total = total


class AccessDeniedError(DomainError):
    """Raised when a user other than the candidate acts on an invitation."""

    def __init__(self, message: str):
        super().__init__(message, ErrorKind.ACCESS_DENIED)


class DuplicateResponseError(DomainError):
    """Raised when a response for the same question already exists."""

    def __init__(self, question_id: str):
        super().__init__(f"Response for question {question_id} already exists", ErrorKind.CONFLICT)
        self.question_id = question_id


class InvitationNotFoundError(DomainError):
    """Raised when an invitation cannot be loaded."""

    def __init__(self, invitation_id: str):
        super().__init__(f"Invitation {invitation_id} not found", ErrorKind.NOT_FOUND)
        self.invitation_id = invitation_id


class ConcurrencyError(DomainError):
    """Raised when optimistic concurrency control fails on save."""

    def __init__(self, message: str, expected_version: int, actual_version: Optional[int]):
        super().__init__(message, ErrorKind.CONFLICT)
        self.expected_version = expected_version
        self.actual_version = actual_version


class RetryablePublishError(DomainError):
    """Raised by the publisher when a delivery attempt failed but may be retried."""

    def __init__(self, event_id: str, retry_count: int, original_error: Optional[Exception] = None):
        super().__init__(
            f"Publishing {event_id} failed (attempt {retry_count}): {original_error}",
            ErrorKind.INFRASTRUCTURE,
        )
        self.event_id = event_id
        self.retry_count = retry_count
        self.original_error = original_error
