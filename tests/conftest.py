import json

import pytest

from fleetpilot.core.conversation.state import ConversationState
from fleetpilot.core.execution.mapper import CommandMapper
from fleetpilot.core.execution.orchestrator import ExecutionOrchestrator
from fleetpilot.core.intent.models import AnalysisParameters, CommandAnalysis, Safety
from fleetpilot.fleet.memory import InMemoryFleet
from fleetpilot.utils.exceptions import LLMError


class FakeLLM:
    """Scripted stand-in for ``LLMClient``.

    Responses are consumed in order; an ``Exception`` instance in the script
    is raised instead of returned.  Once the script runs out, ``default`` is
    returned.
    """

    def __init__(self, responses=None, default="", configured=True):
        self.responses = list(responses or [])
        self.default = default
        self.configured = configured
        self.queries: list[str] = []
        self.history_queries: list[dict] = []

    def is_configured(self) -> bool:
        return self.configured

    def _next(self):
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, Exception):
            raise item
        return item

    async def query(self, prompt, context=None, system=None):
        self.queries.append(prompt)
        return self._next()

    async def query_with_history(self, prompt, history, context=None, system=None):
        self.history_queries.append({
            "prompt": prompt,
            "history": list(history),
            "context": context,
            "system": system,
        })
        return self._next()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def failing_llm():
    return FakeLLM(default=LLMError("fake", "backend down"))


@pytest.fixture
def llm_json():
    """Serialize an analysis payload the way a model would answer."""
    def _dump(payload: dict, fenced: bool = False) -> str:
        text = json.dumps(payload)
        return f"```json\n{text}\n```" if fenced else text
    return _dump


@pytest.fixture
def fleet():
    return InMemoryFleet(["my-app", "db"])


@pytest.fixture
def make_analysis():
    def _make(
        intent="restart_process",
        target=None,
        confidence=0.95,
        safety=Safety.CAUTION,
        missing=None,
        text="",
        can_auto_execute=None,
    ):
        missing = list(missing or [])
        if can_auto_execute is None:
            can_auto_execute = (
                not missing and confidence >= 0.7 and safety != Safety.DANGEROUS
            )
        return CommandAnalysis(
            intent=intent,
            target_command=intent,
            parameters=AnalysisParameters(target=target),
            confidence=confidence,
            safety=safety,
            missing_params=missing,
            language="English",
            original_input=text,
            needs_confirmation=(
                safety == Safety.DANGEROUS or confidence < 0.8 or bool(missing)
            ),
            can_auto_execute=can_auto_execute,
        )
    return _make


@pytest.fixture
def conversation():
    return ConversationState()


@pytest.fixture
def orchestrator(fleet, conversation):
    return ExecutionOrchestrator(
        fleet=fleet,
        mapper=CommandMapper(fleet),
        conversation=conversation,
    )


@pytest.fixture
def make_llm():
    return FakeLLM
