"""High-level LLM client abstraction.

Provides the inference-backend interface the assistant consumes through a
single ``LLMClient`` class.  Supported providers:

  - ``anthropic``: Anthropic Claude
  - ``openai``: OpenAI GPT
  - ``deepseek``: DeepSeek (OpenAI-compatible at api.deepseek.com)
  - ``ollama``: Ollama local models (OpenAI-compatible at localhost:11434)
  - ``openai_compatible``: Any OpenAI-compatible API with a custom base_url

The concrete provider is selected once at construction time; callers receive
the client by injection rather than looking it up globally.  Every call is
bounded by ``timeout`` seconds and any failure surfaces as :class:`LLMError`.
"""

from __future__ import annotations

import asyncio

from fleetpilot.core.llm.models import ConversationMessage
from fleetpilot.utils.exceptions import LLMError
from fleetpilot.utils.logging import get_logger

# Well-known OpenAI-compatible providers and their default base URLs.
_KNOWN_COMPATIBLE_PROVIDERS: dict[str, str] = {
    "deepseek": "https://api.deepseek.com",
    "ollama": "http://localhost:11434/v1",
    "together": "https://api.together.xyz/v1",
    "groq": "https://api.groq.com/openai/v1",
    "moonshot": "https://api.moonshot.cn/v1",
    "siliconflow": "https://api.siliconflow.cn/v1",
}

DEFAULT_SYSTEM_PROMPT = (
    "You are the language-understanding component of a process-management "
    "assistant. Follow the output format requested in the user message exactly."
)

DEFAULT_TIMEOUT_SECONDS = 30.0


class LLMClient:
    """Unified LLM client that delegates to a provider-specific backend.

    Parameters
    ----------
    provider:
        Provider name: ``"anthropic"``, ``"openai"``, ``"deepseek"``,
        ``"ollama"``, ``"openai_compatible"``, or any key in the
        well-known providers registry.
    api_key:
        API key for the chosen provider.
    model:
        Model identifier (e.g. ``"claude-sonnet-4-20250514"``, ``"gpt-4o"``).
    base_url:
        Optional base URL.  Required for ``openai_compatible``; overrides the
        default for well-known compatible providers.
    timeout:
        Seconds to wait for a single completion before giving up.
    """

    def __init__(
        self,
        provider: str,
        api_key: str,
        model: str,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.logger = get_logger("llm")
        self._provider_client = self._init_provider()

    def _init_provider(self):
        """Instantiate the appropriate provider backend."""
        if self.provider == "anthropic":
            from fleetpilot.core.llm.providers.anthropic_provider import AnthropicProvider

            return AnthropicProvider(self.api_key, self.model)

        from fleetpilot.core.llm.providers.openai_compatible_provider import (
            OpenAICompatibleProvider,
        )

        if self.provider == "openai":
            if not self.api_key:
                raise LLMError("openai", "API key is required but was empty.")
            return OpenAICompatibleProvider(
                api_key=self.api_key,
                model=self.model,
                base_url=self.base_url,
                provider_name="openai",
            )

        if self.provider in _KNOWN_COMPATIBLE_PROVIDERS or self.provider == "openai_compatible":
            base_url = self.base_url or _KNOWN_COMPATIBLE_PROVIDERS.get(self.provider, "")
            if not base_url:
                raise LLMError(
                    self.provider,
                    "base_url is required for openai_compatible provider. "
                    "Set LLM_BASE_URL in your .env file.",
                )
            if self.provider == "deepseek" and not self.api_key:
                raise LLMError("deepseek", "API key is required but was empty.")
            return OpenAICompatibleProvider(
                api_key=self.api_key,
                model=self.model,
                base_url=base_url,
                provider_name=self.provider,
            )

        raise LLMError(
            self.provider,
            f"Unknown provider: {self.provider}. "
            f"Supported: anthropic, openai, "
            f"{', '.join(_KNOWN_COMPATIBLE_PROVIDERS.keys())}, openai_compatible",
        )

    def is_configured(self) -> bool:
        """Return ``True`` when a provider backend is ready to take requests."""
        return self._provider_client is not None

    async def query(
        self,
        prompt: str,
        context: str | None = None,
        system: str = DEFAULT_SYSTEM_PROMPT,
    ) -> str:
        """Send a single prompt and return the raw text response.

        Raises :class:`LLMError` on provider failures and timeouts.
        """
        system_text = self._with_context(system, context)
        self.logger.debug(
            "llm_query",
            provider=self.provider,
            model=self.model,
            prompt_len=len(prompt),
        )
        return await self._guarded(
            self._provider_client.complete(system_text, prompt),
        )

    async def query_with_history(
        self,
        prompt: str,
        history: list[ConversationMessage],
        context: str | None = None,
        system: str = DEFAULT_SYSTEM_PROMPT,
    ) -> str:
        """Send *prompt* after the prior chat *history*.

        Raises :class:`LLMError` on provider failures and timeouts.
        """
        system_text = self._with_context(system, context)
        self.logger.debug(
            "llm_query_with_history",
            provider=self.provider,
            model=self.model,
            history_len=len(history),
        )
        return await self._guarded(
            self._provider_client.complete_with_history(system_text, history, prompt),
        )

    # ----- internals ---------------------------------------------------------

    @staticmethod
    def _with_context(system: str, context: str | None) -> str:
        if context and context.strip():
            return f"{system}\n\nCONTEXT:\n{context}"
        return system

    async def _guarded(self, call) -> str:
        try:
            result = await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            self.logger.warning("llm_timeout", provider=self.provider, timeout=self.timeout)
            raise LLMError(self.provider, f"timed out after {self.timeout}s") from exc
        except LLMError:
            raise
        except Exception as exc:
            self.logger.error("llm_query_error", error=str(exc))
            raise LLMError(self.provider, str(exc)) from exc
        self.logger.debug("llm_query_success", response_len=len(result))
        return result
