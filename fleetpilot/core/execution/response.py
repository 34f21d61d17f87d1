"""The orchestrator's output contract."""

from __future__ import annotations

from pydantic import BaseModel, Field

from fleetpilot.core.conversation.models import PendingAction
from fleetpilot.core.execution.models import ExecutionResult


class ExecutionResponse(BaseModel):
    """Result of processing one operator input.

    Attributes:
        executed: Whether a command ran (or an informational answer was given).
        result: The execution result, if anything ran.
        pending_actions: Actions awaiting confirmation, numbered from 1.
        message: Human-readable message for the operator.
        needs_user_input: Whether the operator must answer before anything runs.
        missing_parameters: Parameters the operator still has to supply.
    """

    executed: bool
    result: ExecutionResult | None = None
    pending_actions: list[PendingAction] = Field(default_factory=list)
    message: str
    needs_user_input: bool = False
    missing_parameters: list[str] | None = None
