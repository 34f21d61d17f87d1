"""Conversation-state data models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from fleetpilot.core.execution.models import ExecutionResult
from fleetpilot.core.intent.models import CommandAnalysis, Safety


class PendingAction(BaseModel):
    """A captured command awaiting the operator's confirmation.

    Attributes:
        id: Short unique identifier.
        label: Short description shown to the operator, e.g. ``"stop all"``.
        command: Full command line that will run on confirmation.
        analysis: The analysis the action was built from; it is re-mapped
            on confirmation so the fleet snapshot is fresh.
        safety: Effective safety tier (after target escalation).
    """

    id: str = Field(default_factory=lambda: f"action_{uuid.uuid4().hex[:8]}")
    label: str
    command: str
    analysis: CommandAnalysis
    safety: Safety


class Turn(BaseModel):
    """One operator input and what came of it.

    Attributes:
        input: Raw text the operator typed.
        analysis: The analysis the turn acted on.
        result: Execution result, if anything ran.
        mentioned_target: Target referenced by the turn, resolved once
            when the turn is recorded.
        timestamp: When the turn was recorded.
    """

    input: str
    analysis: CommandAnalysis
    result: ExecutionResult | None = None
    mentioned_target: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
