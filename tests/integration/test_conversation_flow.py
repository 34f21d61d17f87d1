"""End-to-end conversation tests: model output -> analysis -> gate -> fleet."""
import json

import pytest

from fleetpilot.core.conversation.state import ConversationState
from fleetpilot.core.diagnostics.error_analyzer import ErrorAnalyzer
from fleetpilot.core.execution.mapper import CommandMapper
from fleetpilot.core.execution.orchestrator import ExecutionOrchestrator
from fleetpilot.core.intent.analyzer import IntentAnalyzer
from fleetpilot.fleet.memory import InMemoryFleet
from fleetpilot.fleet.models import LogLevel
from fleetpilot.session import AssistantSession


def analysis_reply(intent, target=None, safety="caution", confidence=0.95, missing=None):
    return json.dumps({
        "intent": intent,
        "targetCommand": intent,
        "parameters": {"target": target},
        "confidence": confidence,
        "safety": safety,
        "missingParams": missing or [],
        "language": "English",
        "needsConfirmation": False,
        "canAutoExecute": True,
    })


@pytest.fixture
def build(make_llm):
    """Wire a session whose analyzer and answerer are scripted separately."""
    def _build(analyses, answers=None, targets=("my-app", "db", "worker"), auto_mode=True):
        fleet = InMemoryFleet(list(targets))
        analyzer_llm = make_llm(responses=analyses)
        answer_llm = make_llm(responses=answers or [])
        conversation = ConversationState()
        orchestrator = ExecutionOrchestrator(
            fleet=fleet,
            mapper=CommandMapper(fleet),
            conversation=conversation,
            llm_client=answer_llm,
            error_analyzer=ErrorAnalyzer(),
        )
        session = AssistantSession(
            fleet=fleet,
            analyzer=IntentAnalyzer(llm_client=analyzer_llm),
            conversation=conversation,
            orchestrator=orchestrator,
            auto_mode=auto_mode,
        )
        return session, fleet, analyzer_llm, answer_llm
    return _build


@pytest.mark.asyncio
async def test_restart_runs_immediately(build):
    session, fleet, _, _ = build([analysis_reply("restart_process", "my-app")])
    response = await session.handle("restart my-app")
    assert response.executed is True
    assert fleet.calls_for("restart") == ["my-app"]
    assert "Restart processes completed successfully" in response.message


@pytest.mark.asyncio
async def test_stop_all_then_confirm(build):
    session, fleet, _, _ = build([
        analysis_reply("stop_process", "all", safety="dangerous"),
        analysis_reply("execute_pending", safety="safe", confidence=0.99),
    ])
    first = await session.handle("stop all")
    assert first.executed is False
    assert [a.label for a in first.pending_actions] == ["stop all"]
    assert fleet.calls_for("stop") == []

    second = await session.handle("yes")
    assert second.executed is True
    assert sorted(fleet.calls_for("stop")) == ["db", "my-app", "worker"]
    assert session.conversation.get_pending_actions() == []
    assert "3/3" in second.message


@pytest.mark.asyncio
async def test_numbered_confirmation_skips_model(build):
    session, fleet, analyzer_llm, _ = build([
        analysis_reply("delete_process", "db", safety="dangerous"),
    ])
    await session.handle("delete db")
    response = await session.handle("1")
    assert response.executed is True
    assert fleet.calls_for("delete") == ["db"]
    assert len(analyzer_llm.queries) == 1


@pytest.mark.asyncio
async def test_pronoun_follows_previous_target(build):
    session, fleet, analyzer_llm, _ = build([
        analysis_reply("show_logs", "worker", safety="safe"),
        analysis_reply("restart_process", None, missing=["process_name"]),
    ])
    await session.handle("show logs for worker")
    response = await session.handle("restart it")
    assert response.executed is True
    assert fleet.calls_for("restart") == ["worker"]
    assert 'Last mentioned process: "worker"' in analyzer_llm.queries[1]


@pytest.mark.asyncio
async def test_model_cannot_auto_run_dangerous(build):
    session, fleet, _, _ = build([
        analysis_reply("delete_process", "db", safety="caution", confidence=1.0),
    ])
    response = await session.handle("delete db")
    assert response.executed is False
    assert fleet.calls_for("delete") == []


@pytest.mark.asyncio
async def test_unknown_target_gets_suggestion(build):
    session, fleet, _, _ = build([analysis_reply("restart_process", "wroker")])
    response = await session.handle("restart wroker")
    assert response.needs_user_input is True
    assert 'Did you mean "worker"' in response.message
    assert fleet.calls == []


@pytest.mark.asyncio
async def test_manual_mode_parks_everything(build):
    session, fleet, _, _ = build(
        [analysis_reply("show_status", safety="safe", confidence=1.0)], auto_mode=False,
    )
    response = await session.handle("status")
    assert response.executed is False
    assert len(response.pending_actions) == 1


@pytest.mark.asyncio
async def test_question_answered_from_live_data(build):
    session, fleet, _, answer_llm = build(
        [analysis_reply("info_request", safety="safe")],
        answers=["worker is crashing on ECONNREFUSED."],
    )
    fleet.emit_log("worker", "Error: connect ECONNREFUSED 127.0.0.1:6379", LogLevel.ERROR)
    response = await session.handle("why does worker keep crashing?")
    assert response.message == "worker is crashing on ECONNREFUSED."
    context = answer_llm.history_queries[0]["context"]
    assert "PROCESS NAMES: my-app, db, worker" in context
    assert "Network connectivity issue" in context
    assert fleet.calls == []


@pytest.mark.asyncio
async def test_model_outage_degrades_to_unknown(build):
    session, fleet, _, _ = build(["this is not json"])
    response = await session.handle("restart my-app")
    assert response.executed is False
    assert fleet.calls == []
    assert len(session.conversation.history) == 1
