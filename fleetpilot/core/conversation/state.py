"""Conversation state: turn history, reference resolution and the pending slot.

:class:`ConversationState` owns three things and is the only component that
mutates them:

* a bounded history of the last :data:`MAX_HISTORY` turns (oldest evicted
  first);
* a cached :class:`ConversationContext`, rebuilt after every recorded turn;
* a single pending-action slot.  Setting new pending actions replaces the
  previous set entirely; nothing ever accumulates.
"""

from __future__ import annotations

import re
from collections import deque
from datetime import datetime, timedelta, timezone

from fleetpilot.core.conversation.models import PendingAction, Turn
from fleetpilot.core.execution.models import ExecutionResult
from fleetpilot.core.intent.models import CommandAnalysis, ConversationContext
from fleetpilot.core.intent.prompts.extraction import TARGET_EXTRACTION_TEMPLATE
from fleetpilot.core.llm.models import ConversationMessage
from fleetpilot.core.llm.parsing import parse_json_array
from fleetpilot.utils.exceptions import LLMError
from fleetpilot.utils.logging import get_logger

logger = get_logger("conversation.state")

MAX_HISTORY = 10
RECENT_TARGET_TURNS = 5
PREVIOUS_COMMANDS = 3
LLM_HISTORY_TURNS = 5

BATCH_TARGETS = frozenset({"all", "everything"})

# ---------------------------------------------------------------------------
# Reference resolution tables
# ---------------------------------------------------------------------------

# Third-person references that point back at the last mentioned target.
PRONOUNS: dict[str, frozenset[str]] = {
    "en": frozenset({"it", "them", "that", "this"}),
    "fr": frozenset({"le", "la", "les", "lui", "eux"}),
    "es": frozenset({"lo", "la", "los", "las", "eso", "esa"}),
}

# Words that are never target names.  Covers articles, pronouns and
# politeness in English, French and Spanish, plus command verbs and generic
# nouns operators use in place of a name.
STOPWORDS: frozenset[str] = frozenset({
    # English
    "the", "and", "but", "for", "with", "from", "into", "onto", "about",
    "my", "your", "his", "her", "its", "our", "their", "all", "some", "any",
    "this", "that", "these", "those", "them", "they", "you", "please", "can",
    "could", "would", "should", "will", "now", "then", "again", "just", "too",
    "what", "which", "who", "why", "how", "when", "where", "are", "was", "were",
    "is", "not", "does", "did", "has", "have", "had", "let", "lets", "also",
    "everything", "every", "each", "one", "thanks", "thank", "okay", "yes",
    "doing", "going", "running", "working", "there", "here",
    # Command verbs
    "restart", "reboot", "stop", "start", "launch", "run", "kill", "reload",
    "delete", "remove", "show", "list", "display", "check", "get", "give",
    "tell", "see", "view", "status", "logs", "log", "errors", "error", "info",
    "monitor", "monit", "save", "describe", "health", "metrics",
    # Generic nouns
    "server", "servers", "app", "apps", "application", "applications",
    "process", "processes", "service", "services",
    # French
    "les", "des", "une", "mon", "mes", "ton", "tes", "son", "ses", "notre",
    "votre", "leur", "pour", "avec", "dans", "sur", "tous", "toutes", "tout",
    "moi", "lui", "eux", "merci", "oui", "non", "vous", "plait", "svp",
    "redémarre", "redémarrer", "redemarre", "arrête", "arrêter", "arrete",
    "lance", "lancer", "démarre", "démarrer", "affiche", "afficher", "montre",
    "serveur", "serveurs", "processus", "journaux",
    # Spanish
    "los", "las", "una", "unos", "unas", "mis", "tus", "sus", "para", "por",
    "con", "del", "todo", "todos", "todas", "eso", "esa", "ese", "favor",
    "gracias", "reinicia", "reiniciar", "detén", "deten", "detener", "inicia",
    "iniciar", "arranca", "muestra", "mostrar", "servidor", "servidores",
    "proceso", "procesos", "registros",
})

# Identifier-like tokens: letters/digits, with inner hyphens, underscores or
# dotted suffixes (api-server, worker_2, app.js).
_TOKEN_RE = re.compile(r"[^\W_][\w-]*(?:\.[^\W_][\w-]*)*")


class ConversationState:
    """Turn history, derived context, and the pending-action slot.

    Parameters
    ----------
    llm_client:
        Optional :class:`~fleetpilot.core.llm.client.LLMClient` used to
        extract target names; a regex tokenizer is used without it.
    max_history:
        Number of turns retained.
    """

    def __init__(self, llm_client=None, max_history: int = MAX_HISTORY) -> None:
        self.llm = llm_client
        self.max_history = max_history
        self._history: deque[Turn] = deque(maxlen=max_history)
        self._pending: list[PendingAction] = []
        self._context = ConversationContext()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def history(self) -> list[Turn]:
        return list(self._history)

    async def add_turn(
        self,
        input_text: str,
        analysis: CommandAnalysis,
        result: ExecutionResult | None = None,
    ) -> Turn:
        """Record a turn, evict beyond capacity, and rebuild the cached context."""
        turn = Turn(
            input=input_text,
            analysis=analysis,
            result=result,
            mentioned_target=await self._mentioned_target(analysis),
        )
        # deque(maxlen=...) drops the oldest entry on overflow.
        self._history.append(turn)
        self._context = self._build_context()
        logger.debug(
            "turn_recorded",
            intent=analysis.intent,
            mentioned_target=turn.mentioned_target,
            history_len=len(self._history),
        )
        return turn

    def get_context(self) -> ConversationContext:
        return self._context.model_copy(deep=True)

    def _build_context(self) -> ConversationContext:
        turns = list(self._history)

        last_mentioned = next(
            (t.mentioned_target for t in reversed(turns) if t.mentioned_target),
            None,
        )

        recent: list[str] = []
        for turn in turns[-RECENT_TARGET_TURNS:]:
            name = turn.mentioned_target
            if name and name.lower() not in BATCH_TARGETS and name not in recent:
                recent.append(name)

        last_response = None
        if turns and turns[-1].result is not None:
            last_response = turns[-1].result.message

        return ConversationContext(
            last_mentioned_target=last_mentioned,
            previous_commands=[t.input for t in turns[-PREVIOUS_COMMANDS:]],
            recent_targets=recent,
            last_response=last_response,
        )

    async def _mentioned_target(self, analysis: CommandAnalysis) -> str | None:
        target = analysis.parameters.target
        if target and target.lower() not in BATCH_TARGETS:
            return target
        names = await self.extract_target_names(analysis.original_input)
        return names[0] if names else None

    # ------------------------------------------------------------------
    # Reference resolution
    # ------------------------------------------------------------------

    async def extract_target_names(self, text: str) -> list[str]:
        """Return candidate target names mentioned in *text*.

        Uses the model when one is configured and falls back to the regex
        tokenizer when it is absent, fails, or returns something other than
        a JSON array.
        """
        if not text.strip():
            return []
        if self.llm is None or not self.llm.is_configured():
            return self.extract_target_names_fallback(text)

        try:
            response = await self.llm.query(TARGET_EXTRACTION_TEMPLATE.format(text=text))
            parsed = parse_json_array(response)
        except (LLMError, ValueError) as exc:
            logger.warning("llm_extraction_failed_falling_back", error=str(exc))
            return self.extract_target_names_fallback(text)

        return [name.strip() for name in parsed if isinstance(name, str) and name.strip()]

    @staticmethod
    def extract_target_names_fallback(text: str) -> list[str]:
        names: list[str] = []
        for token in _TOKEN_RE.findall(text):
            token = token.strip("-")
            if (
                len(token) > 2
                and not token.isdigit()
                and token.lower() not in STOPWORDS
                and token not in names
            ):
                names.append(token)
        return names

    @staticmethod
    def resolve_pronoun(token: str, context: ConversationContext) -> str | None:
        """Map a third-person reference to the last mentioned target."""
        word = token.strip().lower()
        if not any(word in table for table in PRONOUNS.values()):
            return None
        return context.last_mentioned_target or None

    # ------------------------------------------------------------------
    # Pending-action slot
    # ------------------------------------------------------------------

    def set_pending_actions(self, actions: list[PendingAction]) -> None:
        """Replace the pending slot with *actions*."""
        self._pending = list(actions)
        logger.debug("pending_actions_set", count=len(self._pending))

    def get_pending_actions(self) -> list[PendingAction]:
        return list(self._pending)

    def clear_pending_actions(self) -> None:
        self._pending = []

    def get_action_by_number(self, number: int) -> PendingAction | None:
        """Return the 1-based *number*-th pending action, or ``None``."""
        if number < 1 or number > len(self._pending):
            return None
        return self._pending[number - 1]

    def is_numbered_selection(self, text: str) -> bool:
        stripped = text.strip()
        if not stripped.isdecimal():
            return False
        return 1 <= int(stripped) <= len(self._pending)

    # ------------------------------------------------------------------
    # Views for prompts and diagnostics
    # ------------------------------------------------------------------

    def get_messages_for_llm(self) -> list[ConversationMessage]:
        """Chat history of recent informational exchanges."""
        messages: list[ConversationMessage] = []
        for turn in list(self._history)[-LLM_HISTORY_TURNS:]:
            if turn.analysis.intent != "info_request":
                continue
            messages.append(ConversationMessage(role="user", content=turn.input))
            if turn.result is not None and turn.result.message:
                messages.append(ConversationMessage(role="assistant", content=turn.result.message))
        return messages

    def context_summary(self) -> str:
        turns = list(self._history)[-PREVIOUS_COMMANDS:]
        if not turns:
            return ""
        lines = []
        for turn in turns:
            outcome = ""
            if turn.result is not None:
                outcome = " -> Success" if turn.result.success else " -> Failed"
            lines.append(f'User: "{turn.input}"{outcome}')
        return "Recent conversation:\n" + "\n".join(lines)

    def statistics(self) -> dict:
        total = len(self._history)
        successful = sum(1 for t in self._history if t.result is not None and t.result.success)
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=5)
        return {
            "total_turns": total,
            "success_rate": successful / total if total else 0.0,
            "recent_activity": sum(1 for t in self._history if t.timestamp >= cutoff),
        }
