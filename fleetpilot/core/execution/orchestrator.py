"""Execution orchestrator.

:class:`ExecutionOrchestrator` is the single entry point the session loop
calls once it has an analysis for the operator's input.  It branches on the
intent:

* ``execute_pending`` runs the selected pending action and clears the slot;
* ``cancel_pending`` clears the slot;
* ``info_request`` answers from live fleet data (via the model when one is
  configured, rule templates otherwise);
* anything else is mapped, validated and passed through the auto-execute
  gate, which either runs it or parks it as a pending action.

Exactly one turn is recorded per call, and no exception escapes
:meth:`ExecutionOrchestrator.process_command`.
"""

from __future__ import annotations

from fleetpilot.core.conversation.models import PendingAction
from fleetpilot.core.conversation.state import ConversationState
from fleetpilot.core.diagnostics.error_analyzer import ErrorAnalysis, ErrorAnalyzer
from fleetpilot.core.execution.live_context import (
    build_live_context,
    fallback_answer,
    wants_error_analysis,
)
from fleetpilot.core.execution.mapper import BATCH_TARGETS, LOG_LINES, CommandMapper
from fleetpilot.core.execution.models import (
    ExecutionOptions,
    ExecutionResult,
    ManagedCommandSpec,
)
from fleetpilot.core.execution.response import ExecutionResponse
from fleetpilot.core.intent.models import CommandAnalysis, Safety
from fleetpilot.core.intent.prompts.assistant import ASSISTANT_SYSTEM_PROMPT
from fleetpilot.fleet.base import FleetBackend
from fleetpilot.fleet.models import Target
from fleetpilot.utils.exceptions import (
    InvalidTargetError,
    LLMError,
    MissingParameterError,
    NoPendingActionError,
)
from fleetpilot.utils.logging import get_logger

logger = get_logger("execution.orchestrator")

AUTO_SAFE_CONFIDENCE = 0.7
AUTO_CAUTION_CONFIDENCE = 0.8

MISSING_TARGET = "process name or target"


class ExecutionOrchestrator:
    """Top-level state machine tying analysis, mapping and execution together.

    Parameters
    ----------
    fleet:
        Fleet backend used for live context.
    mapper:
        Command mapper that validates and executes commands.
    conversation:
        Conversation state holding history and the pending slot.
    llm_client:
        Optional :class:`~fleetpilot.core.llm.client.LLMClient` used to answer
        informational questions.
    error_analyzer:
        Optional :class:`ErrorAnalyzer` for log diagnostics in answers.
    """

    def __init__(
        self,
        fleet: FleetBackend,
        mapper: CommandMapper,
        conversation: ConversationState,
        llm_client=None,
        error_analyzer: ErrorAnalyzer | None = None,
    ) -> None:
        self.fleet = fleet
        self.mapper = mapper
        self.conversation = conversation
        self.llm = llm_client
        self.error_analyzer = error_analyzer

    async def process_command(
        self,
        raw_text: str,
        analysis: CommandAnalysis,
        options: ExecutionOptions | None = None,
    ) -> ExecutionResponse:
        """Process one operator input.  Never raises."""
        options = options or ExecutionOptions()
        logger.info(
            "process_command",
            intent=analysis.intent,
            target=analysis.target,
            auto_mode=options.auto_mode,
        )

        turn_analysis = analysis
        try:
            if analysis.intent == "execute_pending":
                response, turn_analysis = await self._execute_pending(analysis, options)
            elif analysis.intent == "cancel_pending":
                response = self._cancel_pending()
            elif analysis.intent == "info_request":
                response = await self._answer_info(raw_text, analysis)
            else:
                response = await self._handle_action(analysis, options)
        except Exception as exc:
            logger.error("process_command_failed", intent=analysis.intent, error=str(exc))
            response = _error_response(f"Failed to process command: {exc}")

        await self._record_turn(raw_text, turn_analysis, response.result)
        return response

    # ------------------------------------------------------------------
    # Pending actions
    # ------------------------------------------------------------------

    async def _execute_pending(
        self,
        analysis: CommandAnalysis,
        options: ExecutionOptions,
    ) -> tuple[ExecutionResponse, CommandAnalysis]:
        pending = self.conversation.get_pending_actions()
        if not pending:
            return ExecutionResponse(
                executed=False,
                message=str(NoPendingActionError()),
            ), analysis

        number = 1 if options.selection is None else options.selection
        action = self.conversation.get_action_by_number(number)
        if action is None:
            return ExecutionResponse(
                executed=False,
                pending_actions=pending,
                message=f"No pending action number {number}. Choose 1-{len(pending)}.",
                needs_user_input=True,
            ), analysis

        self.conversation.clear_pending_actions()
        spec = await self.mapper.map_to_command(action.analysis)
        if spec is None:
            return _error_response(f"Failed to map action: {action.analysis.intent}"), action.analysis
        self.mapper.resolve_target(spec)

        logger.info("pending_action_confirmed", action_id=action.id, label=action.label)
        result = await self.mapper.execute_command(spec)
        return ExecutionResponse(
            executed=True,
            result=result,
            message=_execution_message(result),
        ), action.analysis

    def _cancel_pending(self) -> ExecutionResponse:
        pending = self.conversation.get_pending_actions()
        if not pending:
            return ExecutionResponse(executed=False, message="Nothing to cancel.")
        self.conversation.clear_pending_actions()
        logger.info("pending_actions_cancelled", count=len(pending))
        labels = ", ".join(action.label for action in pending)
        return ExecutionResponse(executed=False, message=f"Cancelled: {labels}")

    # ------------------------------------------------------------------
    # Informational questions
    # ------------------------------------------------------------------

    async def _answer_info(self, raw_text: str, analysis: CommandAnalysis) -> ExecutionResponse:
        question = analysis.original_input or raw_text
        targets, snapshot_error = await self._snapshot()

        error_analysis = None
        if wants_error_analysis(question):
            error_analysis = await self._analyze_errors()

        context = build_live_context(question, targets, error_analysis)
        if snapshot_error:
            context = f"Error retrieving fleet data: {snapshot_error}\n\n{context}"
        summary = self.conversation.context_summary()
        if summary:
            context = f"{summary}\n\n{context}"

        answer = None
        if self.llm is not None and self.llm.is_configured():
            try:
                answer = await self.llm.query_with_history(
                    question,
                    self.conversation.get_messages_for_llm(),
                    context=context,
                    system=ASSISTANT_SYSTEM_PROMPT,
                )
            except LLMError as exc:
                logger.warning("llm_answer_failed_falling_back", error=str(exc))
        if not answer or not answer.strip():
            answer = fallback_answer(question, targets)

        result = ExecutionResult(success=True, message=answer.strip(), command="info_request")
        return ExecutionResponse(executed=True, result=result, message=result.message)

    async def _snapshot(self) -> tuple[list[Target], str | None]:
        try:
            return await self.fleet.list(), None
        except Exception as exc:
            logger.error("live_snapshot_failed", error=str(exc))
            return [], str(exc)

    async def _analyze_errors(self) -> ErrorAnalysis | None:
        if self.error_analyzer is None:
            return None
        try:
            logs = await self.fleet.error_logs(None, LOG_LINES)
            return await self.error_analyzer.analyze(logs)
        except Exception as exc:
            logger.warning("error_analysis_failed", error=str(exc))
            return None

    # ------------------------------------------------------------------
    # Actionable commands
    # ------------------------------------------------------------------

    async def _handle_action(
        self,
        analysis: CommandAnalysis,
        options: ExecutionOptions,
    ) -> ExecutionResponse:
        spec = await self.mapper.map_to_command(analysis)
        if spec is None:
            return _error_response(f"Unknown command: {analysis.intent}")

        try:
            self.validate(spec)
        except MissingParameterError as exc:
            return _missing_target_response(spec, exc)
        except InvalidTargetError as exc:
            return _invalid_target_response(spec, exc)
        self.mapper.resolve_target(spec)

        if self.should_auto_execute(analysis, spec, options):
            result = await self.mapper.execute_command(spec)
            return ExecutionResponse(
                executed=True,
                result=result,
                message=_execution_message(result),
            )

        action = self.create_pending_action(analysis, spec)
        self.conversation.set_pending_actions([action])
        logger.info("pending_action_created", label=action.label, safety=action.safety.value)
        return ExecutionResponse(
            executed=False,
            pending_actions=[action],
            message=_confirmation_message(action, spec),
            needs_user_input=True,
        )

    def validate(self, spec: ManagedCommandSpec) -> None:
        """Raise when *spec* lacks a required target or names an unknown one."""
        target = spec.target
        if spec.requires_target and not target:
            raise MissingParameterError([MISSING_TARGET])
        if target and not self.mapper.validate_target(spec, target):
            raise InvalidTargetError(target, self.mapper.suggest_target(spec, target))

    def should_auto_execute(
        self,
        analysis: CommandAnalysis,
        spec: ManagedCommandSpec,
        options: ExecutionOptions,
    ) -> bool:
        """The auto-execute gate.  Dangerous commands always need confirmation."""
        if not (options.auto_mode or options.skip_confirmation):
            return False

        target = spec.target
        effective = self.mapper.get_safety_level(spec, target)
        if effective == Safety.DANGEROUS:
            return False

        if analysis.can_auto_execute:
            return True
        if effective == Safety.SAFE and analysis.confidence >= AUTO_SAFE_CONFIDENCE:
            return True
        return (
            effective == Safety.CAUTION
            and analysis.confidence >= AUTO_CAUTION_CONFIDENCE
            and bool(target)
            and target.lower() not in BATCH_TARGETS
        )

    def create_pending_action(
        self,
        analysis: CommandAnalysis,
        spec: ManagedCommandSpec,
    ) -> PendingAction:
        target = spec.target
        label = f"{spec.verb} {target}" if target else spec.verb
        stored = analysis.model_copy(deep=True)
        if spec.requires_target and target:
            stored.parameters.target = target
        return PendingAction(
            label=label,
            command=spec.command_line,
            analysis=stored,
            safety=self.mapper.get_safety_level(spec, target),
        )

    # ------------------------------------------------------------------
    # Turn bookkeeping
    # ------------------------------------------------------------------

    async def _record_turn(
        self,
        raw_text: str,
        analysis: CommandAnalysis,
        result: ExecutionResult | None,
    ) -> None:
        try:
            await self.conversation.add_turn(raw_text, analysis, result)
        except Exception as exc:
            logger.error("turn_record_failed", error=str(exc))


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------

def _error_response(message: str) -> ExecutionResponse:
    return ExecutionResponse(executed=False, message=message)


def _missing_target_response(
    spec: ManagedCommandSpec,
    exc: MissingParameterError,
) -> ExecutionResponse:
    message = f"Which process should I {spec.verb}?"
    if spec.available_targets:
        message += f" Available: {', '.join(spec.available_targets)}"
    return ExecutionResponse(
        executed=False,
        message=message,
        needs_user_input=True,
        missing_parameters=exc.missing,
    )


def _invalid_target_response(
    spec: ManagedCommandSpec,
    exc: InvalidTargetError,
) -> ExecutionResponse:
    message = f"{exc}: no such process."
    if exc.suggestion:
        message += f' Did you mean "{exc.suggestion}"?'
    elif spec.available_targets:
        message += f" Available: {', '.join(spec.available_targets)}"
    return ExecutionResponse(
        executed=False,
        message=message,
        needs_user_input=True,
    )


def _confirmation_message(action: PendingAction, spec: ManagedCommandSpec) -> str:
    lines = [
        f"{spec.description}: {action.label}",
        f"Safety: {action.safety.value}",
    ]
    if action.safety == Safety.DANGEROUS:
        lines.append("This action is dangerous and always needs confirmation.")
    lines.append("1. " + action.label)
    lines.append('Reply "yes" or "1" to run it, "no" to cancel.')
    return "\n".join(lines)


def _execution_message(result: ExecutionResult) -> str:
    if result.output:
        return f"{result.message}\n{result.output}"
    return result.message
