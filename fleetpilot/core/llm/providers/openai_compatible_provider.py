"""OpenAI and OpenAI-compatible provider for the LLM client abstraction.

Covers OpenAI itself (no ``base_url``) and any service exposing a compatible
``/chat/completions`` endpoint, including:
  - DeepSeek (``https://api.deepseek.com``)
  - Ollama (``http://localhost:11434/v1``)
  - Groq (``https://api.groq.com/openai/v1``)
  - Together AI (``https://api.together.xyz/v1``)
"""

from __future__ import annotations

from fleetpilot.core.llm.models import ConversationMessage
from fleetpilot.utils.exceptions import LLMError
from fleetpilot.utils.logging import get_logger

logger = get_logger("llm.openai_compatible")


class OpenAICompatibleProvider:
    """Provider for OpenAI and any OpenAI-compatible API endpoint.

    Parameters
    ----------
    api_key:
        API key.  Local services (e.g. Ollama) accept an empty key, which is
        replaced with ``"none"``; hosted OpenAI requires a real one.
    model:
        Model identifier.
    base_url:
        Base URL for the API, or ``None`` for api.openai.com.
    provider_name:
        Human-readable name used in log messages and error reports.
    """

    MAX_TOKENS = 1024

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        provider_name: str = "openai",
    ):
        try:
            import openai
        except ImportError as exc:
            raise LLMError(
                provider_name,
                "The 'openai' package is required. "
                "Install it with: pip install openai",
            ) from exc

        if not base_url and not api_key:
            raise LLMError(provider_name, "API key is required but was empty.")

        effective_key = api_key if api_key else "none"

        self.client = openai.AsyncOpenAI(api_key=effective_key, base_url=base_url)
        self.model = model
        self.provider_name = provider_name

    async def complete(self, system: str, user: str) -> str:
        """Call the remote API and return the assistant's text response."""
        return await self.complete_with_history(system, [], user)

    async def complete_with_history(
        self,
        system: str,
        history: list[ConversationMessage],
        user: str,
    ) -> str:
        """Call the remote API with prior chat turns followed by *user*."""
        messages = [{"role": "system", "content": system}]
        messages.extend({"role": m.role, "content": m.content} for m in history)
        messages.append({"role": "user", "content": user})
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.MAX_TOKENS,
                messages=messages,
            )
            choice = response.choices[0] if response.choices else None
            if choice and choice.message and choice.message.content:
                return choice.message.content
            return ""
        except Exception as exc:
            logger.error(
                "openai_compatible_complete_error",
                provider=self.provider_name,
                error=str(exc),
            )
            raise LLMError(self.provider_name, str(exc)) from exc
