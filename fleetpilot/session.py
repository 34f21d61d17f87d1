"""Session wiring.

Builds every component once from :class:`~fleetpilot.config.Settings` and
hands them to each other by construction.  The LLM client is optional: when
no usable key is configured the assistant runs on its deterministic
fallbacks.
"""

from __future__ import annotations

from fleetpilot.config import Settings
from fleetpilot.core.conversation.state import ConversationState
from fleetpilot.core.diagnostics.error_analyzer import ErrorAnalyzer
from fleetpilot.core.execution.mapper import CommandMapper
from fleetpilot.core.execution.models import ExecutionOptions
from fleetpilot.core.execution.orchestrator import ExecutionOrchestrator
from fleetpilot.core.execution.response import ExecutionResponse
from fleetpilot.core.intent.analyzer import IntentAnalyzer
from fleetpilot.core.intent.models import CommandAnalysis, Safety
from fleetpilot.core.llm.client import LLMClient
from fleetpilot.fleet.base import FleetBackend
from fleetpilot.fleet.memory import InMemoryFleet
from fleetpilot.fleet.pm2 import Pm2Fleet
from fleetpilot.utils.exceptions import LLMError
from fleetpilot.utils.logging import get_logger

logger = get_logger("session")


# ---------------------------------------------------------------------------
# LLM client (optional -- returns None when no API key is configured)
# ---------------------------------------------------------------------------

def resolve_api_key(settings: Settings) -> str:
    """Pick the API key for the configured provider.

    Resolution order:
      1. Provider-specific key (``ANTHROPIC_API_KEY``, ``OPENAI_API_KEY``,
         ``DEEPSEEK_API_KEY``)
      2. Generic ``LLM_API_KEY``
      3. Any non-empty provider-specific key
    """
    provider_keys: dict[str, str] = {
        "anthropic": settings.anthropic_api_key,
        "openai": settings.openai_api_key,
        "deepseek": settings.deepseek_api_key,
    }

    if provider_keys.get(settings.llm_provider):
        return provider_keys[settings.llm_provider]

    if settings.llm_api_key:
        return settings.llm_api_key

    for key in provider_keys.values():
        if key:
            return key

    return ""


def get_llm_client(settings: Settings) -> LLMClient | None:
    """Build an LLM client, or ``None`` when the provider needs a key and has none."""
    api_key = resolve_api_key(settings)
    provider = settings.llm_provider

    # Ollama runs locally and accepts any key.
    if not api_key and provider != "ollama":
        logger.info("llm_disabled", provider=provider, reason="no API key configured")
        return None

    try:
        return LLMClient(
            provider,
            api_key,
            settings.llm_model,
            base_url=settings.llm_base_url or None,
            timeout=settings.llm_timeout_seconds,
        )
    except LLMError as exc:
        logger.warning("llm_client_unavailable", provider=provider, error=str(exc))
        return None


def get_fleet(settings: Settings) -> FleetBackend:
    if settings.fleet_backend == "memory":
        return InMemoryFleet()
    return Pm2Fleet(settings.pm2_bin, timeout=settings.llm_timeout_seconds)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class AssistantSession:
    """One operator session: analyse each input, then hand it to the orchestrator.

    Inputs must be handled one at a time; the conversation state is not
    safe for overlapping turns.
    """

    def __init__(
        self,
        fleet: FleetBackend,
        analyzer: IntentAnalyzer,
        conversation: ConversationState,
        orchestrator: ExecutionOrchestrator,
        auto_mode: bool = False,
    ) -> None:
        self.fleet = fleet
        self.analyzer = analyzer
        self.conversation = conversation
        self.orchestrator = orchestrator
        self.auto_mode = auto_mode

    async def handle(self, text: str) -> ExecutionResponse:
        await self._refresh_targets()

        if self.conversation.is_numbered_selection(text):
            number = int(text.strip())
            analysis = CommandAnalysis(
                intent="execute_pending",
                confidence=1.0,
                safety=Safety.SAFE,
                original_input=text,
            )
            options = ExecutionOptions(auto_mode=self.auto_mode, selection=number)
            return await self.orchestrator.process_command(text, analysis, options)

        analysis = await self.analyzer.analyze(text, self.conversation.get_context())
        return await self.orchestrator.process_command(
            text,
            analysis,
            ExecutionOptions(auto_mode=self.auto_mode),
        )

    async def _refresh_targets(self) -> None:
        try:
            self.analyzer.set_available_targets(await self.fleet.target_names())
        except Exception as exc:
            logger.warning("target_refresh_failed", error=str(exc))


def build_session(settings: Settings, fleet: FleetBackend | None = None) -> AssistantSession:
    """Wire a complete :class:`AssistantSession` from *settings*."""
    llm = get_llm_client(settings)
    fleet = fleet if fleet is not None else get_fleet(settings)
    conversation = ConversationState(llm_client=llm)
    orchestrator = ExecutionOrchestrator(
        fleet=fleet,
        mapper=CommandMapper(fleet),
        conversation=conversation,
        llm_client=llm,
        error_analyzer=ErrorAnalyzer(llm),
    )
    logger.info(
        "session_built",
        llm_provider=settings.llm_provider if llm else None,
        fleet_backend=type(fleet).__name__,
        auto_mode=settings.auto_execute,
    )
    return AssistantSession(
        fleet=fleet,
        analyzer=IntentAnalyzer(llm_client=llm),
        conversation=conversation,
        orchestrator=orchestrator,
        auto_mode=settings.auto_execute,
    )
