"""Intent analysis module.

Turns an operator's free text into a :class:`CommandAnalysis`.  The model
is asked for a strict JSON reading of the request; whatever comes back is
validated field by field into the closed record, never trusted as-is.

The gate booleans (``can_auto_execute`` / ``needs_confirmation``) are always
recomputed locally from confidence, safety and missing parameters, so a
model that claims a dangerous action is auto-executable cannot make it so.
When no model is configured, or anything goes wrong, a low-confidence
``unknown`` analysis is returned instead of raising.
"""

from __future__ import annotations

from fleetpilot.core.intent.models import (
    AnalysisParameters,
    CommandAnalysis,
    ConversationContext,
    Safety,
)
from fleetpilot.core.intent.prompts.analysis import ANALYSIS_TEMPLATE, CONTEXT_HEADER
from fleetpilot.core.llm.parsing import parse_json_object
from fleetpilot.utils.exceptions import LLMError, MalformedInferenceResponseError
from fleetpilot.utils.logging import get_logger

logger = get_logger("intent.analyzer")

AUTO_EXECUTE_MIN_CONFIDENCE = 0.7
CONFIRMATION_CONFIDENCE = 0.8

FALLBACK_CONFIDENCE = 0.1

# Entries of ``missing_params`` satisfied by a resolved target.
_TARGET_PARAM_NAMES = {"target", "process_name", "process name", "process", "name"}


class IntentAnalyzer:
    """Analyses free text into a :class:`CommandAnalysis`.

    Parameters
    ----------
    llm_client:
        An optional :class:`~fleetpilot.core.llm.client.LLMClient`.  When
        ``None`` (or not configured) every call returns the fallback analysis.
    available_targets:
        Names of the managed targets, embedded in the prompt so the model can
        resolve "my server" to a real name.
    """

    def __init__(self, llm_client=None, available_targets: list[str] | None = None):
        self.llm = llm_client
        self.available_targets: list[str] = list(available_targets or [])

    def set_available_targets(self, names: list[str]) -> None:
        self.available_targets = list(names)

    async def analyze(
        self,
        text: str,
        context: ConversationContext | None = None,
    ) -> CommandAnalysis:
        """Analyse *text* and return a :class:`CommandAnalysis`.  Never raises."""
        if self.llm is None or not self.llm.is_configured():
            return self.fallback_analysis(text)

        prompt = self.build_prompt(text, context)
        try:
            response = await self.llm.query(prompt)
            analysis = self.parse_response(response, text)
        except (LLMError, MalformedInferenceResponseError) as exc:
            logger.warning("llm_analysis_failed_falling_back", error=str(exc))
            return self.fallback_analysis(text)
        except Exception as exc:
            logger.error("llm_analysis_unexpected_error", error=str(exc))
            return self.fallback_analysis(text)

        analysis = self.enhance_with_context(analysis, context)
        logger.info(
            "intent_analyzed",
            intent=analysis.intent,
            target=analysis.parameters.target,
            confidence=analysis.confidence,
            safety=analysis.safety.value,
        )
        return analysis

    # ----- prompt -------------------------------------------------------------

    def build_prompt(self, text: str, context: ConversationContext | None = None) -> str:
        return ANALYSIS_TEMPLATE.format(
            user_input=text,
            context_block=self._context_block(context),
        )

    def _context_block(self, context: ConversationContext | None) -> str:
        lines: list[str] = []
        if self.available_targets:
            lines.append(f"- AVAILABLE PROCESSES: {', '.join(self.available_targets)}")
            lines.append('- When the user says "my server/app", resolve to one of these names')
        if context is not None:
            if context.last_mentioned_target:
                lines.append(f'- Last mentioned process: "{context.last_mentioned_target}"')
            if context.recent_targets:
                lines.append(f"- Recent processes: {', '.join(context.recent_targets)}")
            if context.previous_commands:
                lines.append(f"- Previous commands: {', '.join(context.previous_commands[-3:])}")
        if not lines:
            return ""
        return "\n".join([CONTEXT_HEADER, *lines]) + "\n"

    # ----- parsing --------------------------------------------------------------

    def parse_response(self, response: str, original_input: str) -> CommandAnalysis:
        """Validate a raw model response into a :class:`CommandAnalysis`.

        Raises :class:`MalformedInferenceResponseError` when no JSON object
        can be recovered.
        """
        try:
            data = parse_json_object(response)
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError subclass.
            raise MalformedInferenceResponseError(str(exc), raw=response[:500]) from exc

        intent = data.get("intent")
        intent = intent.strip().lower() if isinstance(intent, str) and intent.strip() else "unknown"

        target_command = data.get("targetCommand", data.get("target_command", ""))
        if not isinstance(target_command, str):
            target_command = ""

        missing = data.get("missingParams", data.get("missing_params"))

        language = data.get("language")
        if not isinstance(language, str) or not language:
            language = "Unknown"

        return CommandAnalysis(
            intent=intent,
            target_command=target_command,
            parameters=_normalize_parameters(data.get("parameters")),
            confidence=_normalize_confidence(data.get("confidence")),
            safety=_normalize_safety(data.get("safety")),
            missing_params=_string_list(missing),
            language=language,
            original_input=original_input,
            needs_confirmation=_bool_or(data.get("needsConfirmation"), True),
            can_auto_execute=_bool_or(data.get("canAutoExecute"), False),
        )

    # ----- context enhancement ------------------------------------------------

    @staticmethod
    def enhance_with_context(
        analysis: CommandAnalysis,
        context: ConversationContext | None = None,
    ) -> CommandAnalysis:
        """Fill a missing target from context and recompute the gate booleans."""
        params = analysis.parameters
        if not params.target and context is not None and context.last_mentioned_target:
            params.target = context.last_mentioned_target
            params.provided["target"] = context.last_mentioned_target
            analysis.missing_params = [
                p for p in analysis.missing_params
                if p.strip().lower() not in _TARGET_PARAM_NAMES
            ]

        analysis.can_auto_execute = (
            not analysis.missing_params
            and analysis.confidence >= AUTO_EXECUTE_MIN_CONFIDENCE
            and analysis.safety != Safety.DANGEROUS
        )
        analysis.needs_confirmation = (
            analysis.safety == Safety.DANGEROUS
            or analysis.confidence < CONFIRMATION_CONFIDENCE
            or bool(analysis.missing_params)
        )
        return analysis

    @staticmethod
    def fallback_analysis(text: str) -> CommandAnalysis:
        """Low-confidence analysis used whenever the model cannot help."""
        return CommandAnalysis(
            intent="unknown",
            target_command="",
            parameters=AnalysisParameters(),
            confidence=FALLBACK_CONFIDENCE,
            safety=Safety.SAFE,
            missing_params=[],
            language="Unknown",
            original_input=text,
            needs_confirmation=True,
            can_auto_execute=False,
        )


# ---------------------------------------------------------------------------
# Field normalisers
# ---------------------------------------------------------------------------

def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _bool_or(value, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _normalize_confidence(value) -> float:
    # bool is an int subclass; "true" is not a confidence.
    if isinstance(value, bool):
        return 0.0
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return max(0.0, min(1.0, confidence))


def _normalize_safety(value) -> Safety:
    """Map the reported tier onto :class:`Safety`; unrecognised values fail closed."""
    if isinstance(value, str):
        try:
            return Safety(value.strip().lower())
        except ValueError:
            pass
    logger.warning("unrecognized_safety_value", value=repr(value)[:50])
    return Safety.DANGEROUS


def _normalize_parameters(value) -> AnalysisParameters:
    if not isinstance(value, dict):
        return AnalysisParameters()

    target = value.get("target")
    if isinstance(target, str):
        target = target.strip()
        # Models sometimes echo the schema placeholder literally.
        if not target or target.lower() in {"null", "none", "process_name|all|null"}:
            target = None
    else:
        target = None

    provided = value.get("provided")
    if isinstance(provided, dict):
        provided = {k: v for k, v in provided.items() if isinstance(k, str)}
    else:
        provided = {}

    return AnalysisParameters(
        target=target,
        required=_string_list(value.get("required")),
        optional=_string_list(value.get("optional")),
        provided=provided,
    )
