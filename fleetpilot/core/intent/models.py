"""Data models produced by the intent analyzer.

:class:`CommandAnalysis` is the structured reading of one free-text input.
It is created by :class:`~fleetpilot.core.intent.analyzer.IntentAnalyzer`,
adjusted once by the context-enhancement pass, and then treated as
read-only by the mapper and orchestrator.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class Safety(str, Enum):
    """Safety tier governing auto-execute eligibility."""

    SAFE = "safe"
    CAUTION = "caution"
    DANGEROUS = "dangerous"


class AnalysisParameters(BaseModel):
    """Parameters the analyzer found (or expected) in the input."""

    target: str | None = None
    required: list[str] = Field(default_factory=list)
    optional: list[str] = Field(default_factory=list)
    provided: dict = Field(default_factory=dict)


class CommandAnalysis(BaseModel):
    """Structured interpretation of an operator's request.

    Attributes:
        intent: Intent tag, e.g. ``"restart_process"`` or ``"info_request"``.
        target_command: Human-readable command the intent corresponds to.
        parameters: Target and parameter bookkeeping.
        confidence: Analyzer confidence in ``[0, 1]``.
        safety: Safety tier reported for the action.
        missing_params: Names of parameters still needed.
        language: Detected input language.
        original_input: The raw text that was analysed.
        needs_confirmation: Whether the action should be confirmed.
        can_auto_execute: Whether the analyzer considers it auto-executable.
    """

    intent: str = "unknown"
    target_command: str = ""
    parameters: AnalysisParameters = Field(default_factory=AnalysisParameters)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    safety: Safety = Safety.SAFE
    missing_params: list[str] = Field(default_factory=list)
    language: str = "Unknown"
    original_input: str = ""
    needs_confirmation: bool = True
    can_auto_execute: bool = False

    @property
    def target(self) -> str | None:
        return self.parameters.target


class ConversationContext(BaseModel):
    """Snapshot of the conversation used for reference resolution."""

    last_mentioned_target: str | None = None
    previous_commands: list[str] = Field(default_factory=list)
    recent_targets: list[str] = Field(default_factory=list)
    last_response: str | None = None
