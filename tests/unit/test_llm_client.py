"""Tests for LLM client multi-provider support."""
import asyncio

import pytest

from fleetpilot.core.llm.client import LLMClient
from fleetpilot.core.llm.models import ConversationMessage
from fleetpilot.core.llm.parsing import parse_json_array, parse_json_object, strip_code_fences
from fleetpilot.utils.exceptions import LLMError


class StubProvider:
    """Provider double recording what the client sends."""

    def __init__(self, reply="ok", delay=0.0, error=None):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.calls = []

    async def complete(self, system, user):
        return await self.complete_with_history(system, [], user)

    async def complete_with_history(self, system, history, user):
        self.calls.append((system, list(history), user))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


def _client_with(provider, timeout=5.0):
    client = LLMClient("ollama", "", "llama3", timeout=timeout)
    client._provider_client = provider
    return client


class TestLLMClientProviderSelection:
    """Verify that LLMClient correctly instantiates different providers."""

    @pytest.mark.parametrize("provider,model", [
        ("anthropic", "claude-sonnet-4-20250514"),
        ("openai", "gpt-4o"),
        ("deepseek", "deepseek-chat"),
    ])
    def test_hosted_providers_need_key(self, provider, model):
        with pytest.raises(LLMError, match="API key is required"):
            LLMClient(provider, "", model)

    def test_anthropic_with_key(self):
        client = LLMClient("anthropic", "test-key", "claude-sonnet-4-20250514")
        assert client.is_configured()

    def test_ollama_provider(self):
        """Ollama runs locally and does not need a key."""
        client = LLMClient("ollama", "", "llama3")
        assert client.provider == "ollama"
        assert client._provider_client is not None

    @pytest.mark.parametrize("provider", ["together", "groq", "moonshot", "siliconflow"])
    def test_known_compatible_providers(self, provider):
        client = LLMClient(provider, "test-key", "some-model")
        assert client.provider == provider
        assert client.is_configured()

    def test_openai_compatible_with_base_url(self):
        client = LLMClient(
            "openai_compatible", "test-key", "my-model",
            base_url="http://my-server:8080/v1",
        )
        assert client.provider == "openai_compatible"

    def test_openai_compatible_without_base_url_raises(self):
        with pytest.raises(LLMError, match="base_url is required"):
            LLMClient("openai_compatible", "test-key", "my-model")

    def test_unknown_provider_raises(self):
        with pytest.raises(LLMError, match="Unknown provider"):
            LLMClient("nonexistent", "key", "model")

    def test_custom_base_url_override(self):
        client = LLMClient("deepseek", "test-key", "deepseek-chat", base_url="http://proxy:9090/v1")
        assert client.provider == "deepseek"
        assert client.base_url == "http://proxy:9090/v1"


class TestQueries:
    @pytest.mark.asyncio
    async def test_context_appended_to_system(self):
        provider = StubProvider(reply="fine")
        client = _client_with(provider)
        answer = await client.query("how are my apps?", context="PROCESS NAMES: db", system="SYS")
        assert answer == "fine"
        system, history, user = provider.calls[0]
        assert system == "SYS\n\nCONTEXT:\nPROCESS NAMES: db"
        assert history == []
        assert user == "how are my apps?"

    @pytest.mark.asyncio
    async def test_blank_context_ignored(self):
        provider = StubProvider()
        await _client_with(provider).query("hi", context="   ", system="SYS")
        assert provider.calls[0][0] == "SYS"

    @pytest.mark.asyncio
    async def test_history_forwarded(self):
        provider = StubProvider()
        history = [
            ConversationMessage(role="user", content="how many apps?"),
            ConversationMessage(role="assistant", content="Two."),
        ]
        await _client_with(provider).query_with_history("which ones?", history)
        assert provider.calls[0][1] == history

    @pytest.mark.asyncio
    async def test_timeout_raises_llm_error(self):
        client = _client_with(StubProvider(delay=1.0), timeout=0.05)
        with pytest.raises(LLMError, match="timed out"):
            await client.query("slow")

    @pytest.mark.asyncio
    async def test_provider_exception_wrapped(self):
        client = _client_with(StubProvider(error=RuntimeError("connection reset")))
        with pytest.raises(LLMError, match="connection reset"):
            await client.query("hello")

    @pytest.mark.asyncio
    async def test_llm_error_passes_through(self):
        client = _client_with(StubProvider(error=LLMError("ollama", "model not pulled")))
        with pytest.raises(LLMError, match="model not pulled"):
            await client.query("hello")


class TestParsing:
    def test_strip_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('```\n[1]') == "[1]"

    def test_object_in_prose(self):
        assert parse_json_object('Here you go: {"a": 1} hope it helps') == {"a": 1}

    def test_object_rejects_array(self):
        with pytest.raises(ValueError):
            parse_json_object("[1, 2]")

    def test_array_with_fences(self):
        assert parse_json_array('```json\n["api", "db"]\n```') == ["api", "db"]

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_json_array("no names here")
