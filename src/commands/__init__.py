"""
Command infrastructure for the invitation use cases.

Commands represent user (or system) intent and are dispatched to command
handlers, which load the aggregate, apply the change, persist it together
with its outbox rows, and schedule delivery.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, Field

from src.events.envelope import Actor
from src.events.exceptions import DomainError, ErrorKind


class Command(BaseModel):
    """Base class for all commands."""

    correlation_id: Optional[str] = Field(None, description="Correlation ID for tracking related operations")
    actor: Optional[Actor] = Field(None, description="Who/what initiated this command")

    class Config:
        """Pydantic configuration."""

        arbitrary_types_allowed = True


class CommandResult(BaseModel):
    """Result of command execution."""

    aggregate_id: str = Field(..., description="ID of the aggregate that was modified")
    version: int = Field(..., description="Version of the aggregate after command execution")
    event_count: int = Field(..., description="Number of domain events raised")
    outbox_event_ids: List[str] = Field(default_factory=list, description="Outbox rows written for delivery")
    status: Optional[str] = Field(None, description="Invitation status after the command")
    success: bool = Field(default=True, description="Whether command executed successfully")
    message: Optional[str] = Field(None, description="Optional message about the result")


class CommandHandler(ABC):
    """Base class for command handlers."""

    @abstractmethod
    async def handle(self, command: Command) -> CommandResult:
        """
        Handle a command and return the result.

        Raises:
            DomainError: If a business rule rejects the command
            CommandExecutionError: If execution fails for another reason
        """
        pass


class CommandExecutionError(DomainError):
    """Raised when command execution fails for a non-domain reason."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message, ErrorKind.INFRASTRUCTURE)
        self.original_error = original_error
