"""Anthropic Claude provider for the LLM client abstraction.

Wraps the async ``anthropic`` SDK to expose the ``complete`` and
``complete_with_history`` interface expected by
:class:`~fleetpilot.core.llm.client.LLMClient`.
"""

from __future__ import annotations

from fleetpilot.core.llm.models import ConversationMessage
from fleetpilot.utils.exceptions import LLMError
from fleetpilot.utils.logging import get_logger

logger = get_logger("llm.anthropic")


class AnthropicProvider:
    """Provider implementation for Anthropic Claude models.

    Parameters
    ----------
    api_key:
        Anthropic API key.
    model:
        Model identifier, e.g. ``"claude-sonnet-4-20250514"``.
    """

    MAX_TOKENS = 1024

    def __init__(self, api_key: str, model: str):
        try:
            import anthropic
        except ImportError as exc:
            raise LLMError(
                "anthropic",
                "The 'anthropic' package is not installed. "
                "Install it with: pip install anthropic",
            ) from exc

        if not api_key:
            raise LLMError("anthropic", "API key is required but was empty.")

        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model

    async def complete(self, system: str, user: str) -> str:
        """Call Claude and return the assistant's text response."""
        return await self.complete_with_history(system, [], user)

    async def complete_with_history(
        self,
        system: str,
        history: list[ConversationMessage],
        user: str,
    ) -> str:
        """Call Claude with prior chat turns followed by *user*."""
        # System messages travel in the dedicated ``system`` parameter.
        messages = [
            {"role": m.role, "content": m.content}
            for m in history
            if m.role != "system"
        ]
        messages.append({"role": "user", "content": user})
        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=self.MAX_TOKENS,
                system=system,
                messages=messages,
            )
            if message.content and len(message.content) > 0:
                return message.content[0].text
            return ""
        except Exception as exc:
            logger.error("anthropic_complete_error", error=str(exc))
            raise LLMError("anthropic", str(exc)) from exc
