"""
Response entity owned by the Invitation aggregate.

A response is created once per question submission and never changes after
that. Payload requirements depend on the response type.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .exceptions import ValidationError
from .invitation_events import ResponseType

MAX_TEXT_ANSWER_LENGTH = 10_000
MAX_CODE_ANSWER_LENGTH = 50_000
MAX_VIDEO_URL_LENGTH = 2_000


class Response:
    """An answer to one interview question."""

    def __init__(
        self,
        response_id: str,
        question_id: str,
        question_index: int,
        question_text: str,
        response_type: ResponseType,
        duration: int,
        submitted_at: datetime,
        text_answer: Optional[str] = None,
        code_answer: Optional[str] = None,
        video_url: Optional[str] = None,
    ):
        self.id = response_id
        self.question_id = question_id
        self.question_index = question_index
        self.question_text = question_text
        self.response_type = ResponseType(response_type)
        self.text_answer = text_answer
        self.code_answer = code_answer
        self.video_url = video_url
        self.duration = duration
        self.submitted_at = submitted_at
        self._validate()

    def _validate(self) -> None:
        if not self.question_id:
            raise ValidationError("Question ID is required", field="question_id")

        if not self.question_text or not self.question_text.strip():
            raise ValidationError("Question text cannot be empty", field="question_text")

        if self.question_index < 0:
            raise ValidationError("Question index must be non-negative", field="question_index")

        if self.duration < 0:
            raise ValidationError("Duration cannot be negative", field="duration")

        if self.response_type is ResponseType.TEXT:
            if not self.text_answer or not self.text_answer.strip():
                raise ValidationError("Text answer is required for text response type", field="text_answer")
            if len(self.text_answer) > MAX_TEXT_ANSWER_LENGTH:
                raise ValidationError(
                    f"Text answer cannot exceed {MAX_TEXT_ANSWER_LENGTH} characters", field="text_answer"
                )

        elif self.response_type is ResponseType.CODE:
            if not self.code_answer or not self.code_answer.strip():
                raise ValidationError("Code answer is required for code response type", field="code_answer")
            if len(self.code_answer) > MAX_CODE_ANSWER_LENGTH:
                raise ValidationError(
                    f"Code answer cannot exceed {MAX_CODE_ANSWER_LENGTH} characters", field="code_answer"
                )

        elif self.response_type is ResponseType.VIDEO:
            # Video upload is not available yet, so the URL is optional
            if self.video_url and len(self.video_url) > MAX_VIDEO_URL_LENGTH:
                raise ValidationError(
                    f"Video URL cannot exceed {MAX_VIDEO_URL_LENGTH} characters", field="video_url"
                )

    @classmethod
    def create(
        cls,
        question_id: str,
        question_index: int,
        question_text: str,
        response_type: ResponseType,
        duration: int,
        text_answer: Optional[str] = None,
        code_answer: Optional[str] = None,
        video_url: Optional[str] = None,
        response_id: Optional[str] = None,
    ) -> "Response":
        """Create a new response stamped with the current time."""
        return cls(
            response_id=response_id or str(uuid.uuid4()),
            question_id=question_id,
            question_index=question_index,
            question_text=question_text,
            response_type=response_type,
            duration=duration,
            submitted_at=datetime.now(timezone.utc),
            text_answer=text_answer,
            code_answer=code_answer,
            video_url=video_url,
        )

    def get_answer(self) -> Optional[str]:
        """Answer content for the response type."""
        if self.response_type is ResponseType.TEXT:
            return self.text_answer
        if self.response_type is ResponseType.CODE:
            return self.code_answer
        return self.video_url

    def has_content(self) -> bool:
        return bool(self.get_answer())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question_id": self.question_id,
            "question_index": self.question_index,
            "question_text": self.question_text,
            "response_type": self.response_type.value,
            "text_answer": self.text_answer,
            "code_answer": self.code_answer,
            "video_url": self.video_url,
            "duration": self.duration,
            "submitted_at": self.submitted_at.isoformat(),
        }

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Response) and other.id == self.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"Response(id={self.id!r}, question_id={self.question_id!r}, type={self.response_type.value})"
