"""Data models for command mapping and execution."""

from __future__ import annotations

from pydantic import BaseModel, Field

from fleetpilot.core.intent.models import Safety


class ManagedCommandSpec(BaseModel):
    """A concrete, validated fleet command built from an analysis.

    Attributes:
        verb: Primary action, e.g. ``"restart"`` or ``"logs"``.
        args: Positional arguments; the target (when any) follows the verb.
        description: Human-readable description.
        safety: Base safety tier before target-based escalation.
        requires_target: Whether the command operates on a named target.
        available_targets: Fleet snapshot taken while mapping; ``None`` when
            the snapshot could not be fetched.
    """

    verb: str
    args: list[str] = Field(default_factory=list)
    description: str = ""
    safety: Safety = Safety.SAFE
    requires_target: bool = False
    available_targets: list[str] | None = None

    @property
    def target(self) -> str | None:
        return self.args[0] if self.args else None

    @property
    def command_line(self) -> str:
        return " ".join([self.verb, *self.args])


class ExecutionResult(BaseModel):
    """Outcome of running one command against the fleet backend."""

    success: bool
    message: str
    output: str | None = None
    error: str | None = None
    command: str | None = None


class ExecutionOptions(BaseModel):
    """Per-call switches for :meth:`ExecutionOrchestrator.process_command`.

    Attributes:
        auto_mode: Session-wide auto-execute toggle.
        skip_confirmation: Per-call equivalent of ``auto_mode``; the
            dangerous tier is still never auto-executed.
        selection: 1-based pending action to run on confirmation.
    """

    auto_mode: bool = False
    skip_confirmation: bool = False
    selection: int | None = None

