"""Tests for the execution orchestrator state machine."""
import pytest

from fleetpilot.core.conversation.state import ConversationState
from fleetpilot.core.diagnostics.error_analyzer import ErrorAnalyzer
from fleetpilot.core.execution.mapper import CommandMapper
from fleetpilot.core.execution.models import ExecutionOptions
from fleetpilot.core.execution.orchestrator import MISSING_TARGET, ExecutionOrchestrator
from fleetpilot.core.intent.models import Safety
from fleetpilot.core.intent.prompts.assistant import ASSISTANT_SYSTEM_PROMPT
from fleetpilot.fleet.memory import InMemoryFleet
from fleetpilot.fleet.models import LogLevel, Target, TargetStatus
from fleetpilot.utils.exceptions import LLMError

AUTO = ExecutionOptions(auto_mode=True)
MANUAL = ExecutionOptions(auto_mode=False)


def _stop_all(make_analysis):
    return make_analysis(
        intent="stop_process", target="all", confidence=0.95,
        safety=Safety.DANGEROUS, text="stop all",
    )


def _confirm(make_analysis, text="yes"):
    return make_analysis(intent="execute_pending", confidence=0.95, safety=Safety.SAFE, text=text)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_restart_auto_executes(self, orchestrator, fleet, make_analysis):
        analysis = make_analysis(target="my-app", confidence=0.95, text="restart my-app")
        response = await orchestrator.process_command("restart my-app", analysis, AUTO)
        assert response.executed is True
        assert response.result.success
        assert fleet.calls_for("restart") == ["my-app"]
        assert response.pending_actions == []

    @pytest.mark.asyncio
    async def test_stop_all_needs_confirmation(self, orchestrator, fleet, make_analysis):
        response = await orchestrator.process_command("stop all", _stop_all(make_analysis), AUTO)
        assert response.executed is False
        assert response.needs_user_input is True
        assert len(response.pending_actions) == 1
        action = response.pending_actions[0]
        assert "stop all" in action.label
        assert action.safety == Safety.DANGEROUS
        assert fleet.calls_for("stop") == []

    @pytest.mark.asyncio
    async def test_confirm_runs_batch_and_clears_slot(
        self, orchestrator, fleet, conversation, make_analysis,
    ):
        await orchestrator.process_command("stop all", _stop_all(make_analysis), AUTO)
        response = await orchestrator.process_command("yes", _confirm(make_analysis), AUTO)
        assert response.executed is True
        assert conversation.get_pending_actions() == []
        assert sorted(fleet.calls_for("stop")) == ["db", "my-app"]
        assert response.result.success


class TestGate:
    @pytest.mark.asyncio
    async def test_manual_mode_never_auto_executes(self, orchestrator, fleet, make_analysis):
        analysis = make_analysis(intent="show_status", safety=Safety.SAFE, confidence=1.0)
        response = await orchestrator.process_command("status", analysis, MANUAL)
        assert response.executed is False
        assert len(response.pending_actions) == 1

    @pytest.mark.asyncio
    async def test_skip_confirmation_acts_as_auto(self, orchestrator, fleet, make_analysis):
        analysis = make_analysis(target="db", confidence=0.9)
        options = ExecutionOptions(auto_mode=False, skip_confirmation=True)
        response = await orchestrator.process_command("restart db", analysis, options)
        assert response.executed is True
        assert fleet.calls_for("restart") == ["db"]

    @pytest.mark.asyncio
    async def test_skip_confirmation_keeps_dangerous_floor(self, orchestrator, fleet, make_analysis):
        analysis = make_analysis(
            intent="delete_process", target="db", confidence=1.0,
            safety=Safety.DANGEROUS, can_auto_execute=True,
        )
        options = ExecutionOptions(auto_mode=True, skip_confirmation=True)
        response = await orchestrator.process_command("delete db", analysis, options)
        assert response.executed is False
        assert fleet.calls_for("delete") == []

    @pytest.mark.asyncio
    async def test_registry_safety_beats_reported_safety(self, orchestrator, fleet, make_analysis):
        # The model claimed "safe" for a stop; the registry says dangerous.
        analysis = make_analysis(
            intent="stop_process", target="db", confidence=1.0,
            safety=Safety.SAFE, can_auto_execute=True,
        )
        response = await orchestrator.process_command("stop db", analysis, AUTO)
        assert response.executed is False
        assert fleet.calls_for("stop") == []

    @pytest.mark.asyncio
    async def test_restart_all_escalates(self, orchestrator, fleet, make_analysis):
        analysis = make_analysis(target="all", confidence=0.99, can_auto_execute=True)
        response = await orchestrator.process_command("restart all", analysis, AUTO)
        assert response.executed is False
        assert response.pending_actions[0].safety == Safety.DANGEROUS

    @pytest.mark.asyncio
    async def test_caution_below_threshold_waits(self, orchestrator, fleet, make_analysis):
        analysis = make_analysis(target="db", confidence=0.75, can_auto_execute=False)
        response = await orchestrator.process_command("restart db", analysis, AUTO)
        assert response.executed is False
        assert fleet.calls_for("restart") == []

    @pytest.mark.asyncio
    async def test_safe_intent_with_moderate_confidence(self, orchestrator, make_analysis):
        analysis = make_analysis(
            intent="show_list", safety=Safety.SAFE, confidence=0.7, can_auto_execute=False,
        )
        response = await orchestrator.process_command("list", analysis, AUTO)
        assert response.executed is True
        assert "my-app" in response.result.output

    @pytest.mark.asyncio
    async def test_safe_intent_low_confidence_waits(self, orchestrator, make_analysis):
        analysis = make_analysis(intent="show_list", safety=Safety.SAFE, confidence=0.5)
        response = await orchestrator.process_command("list?", analysis, AUTO)
        assert response.executed is False


class TestValidation:
    @pytest.mark.asyncio
    async def test_unknown_intent(self, orchestrator, conversation, make_analysis):
        response = await orchestrator.process_command(
            "blorp", make_analysis(intent="unknown", confidence=0.1), AUTO,
        )
        assert response.executed is False
        assert "Unknown command" in response.message
        assert len(conversation.history) == 1

    @pytest.mark.asyncio
    async def test_missing_target(self, orchestrator, fleet, make_analysis):
        response = await orchestrator.process_command("restart", make_analysis(target=None), AUTO)
        assert response.executed is False
        assert response.needs_user_input is True
        assert response.missing_parameters == [MISSING_TARGET]
        assert "my-app" in response.message
        assert fleet.calls == []

    @pytest.mark.asyncio
    async def test_invalid_target_with_suggestion(self, orchestrator, fleet, make_analysis):
        response = await orchestrator.process_command(
            "restart mapi", make_analysis(target="mapi"), AUTO,
        )
        assert response.executed is False
        assert response.needs_user_input is True
        assert "mapi" in response.message
        assert 'Did you mean "my-app"' in response.message
        assert fleet.calls == []

    @pytest.mark.asyncio
    async def test_invalid_target_lists_available(self, orchestrator, fleet, make_analysis):
        response = await orchestrator.process_command(
            "restart frontend", make_analysis(target="frontend"), AUTO,
        )
        assert response.executed is False
        assert response.needs_user_input is True
        assert "Did you mean" not in response.message
        assert "Available: my-app, db" in response.message
        assert fleet.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("spoken", ["myapp", "my_app", "My-App"])
    async def test_fuzzy_target_resolves_to_known_name(self, orchestrator, fleet, make_analysis, spoken):
        response = await orchestrator.process_command(
            f"restart {spoken}", make_analysis(target=spoken), AUTO,
        )
        assert response.executed is True
        assert fleet.calls_for("restart") == ["my-app"]
        assert response.result.success

    @pytest.mark.asyncio
    async def test_fuzzy_target_resolved_in_pending_action(
        self, orchestrator, fleet, conversation, make_analysis,
    ):
        response = await orchestrator.process_command(
            "stop my_app",
            make_analysis(intent="stop_process", target="my_app", safety=Safety.DANGEROUS),
            AUTO,
        )
        assert [a.label for a in response.pending_actions] == ["stop my-app"]
        assert conversation.get_pending_actions()[0].analysis.parameters.target == "my-app"

        confirmed = await orchestrator.process_command("yes", _confirm(make_analysis), AUTO)
        assert confirmed.executed is True
        assert fleet.calls_for("stop") == ["my-app"]

    @pytest.mark.asyncio
    async def test_snapshot_failure_defers_to_backend(self, conversation, make_analysis):
        class FlakyFleet(InMemoryFleet):
            async def target_names(self):
                raise RuntimeError("supervisor busy")

        fleet = FlakyFleet(["my-app"])
        orchestrator = ExecutionOrchestrator(fleet, CommandMapper(fleet), conversation)
        response = await orchestrator.process_command(
            "restart ghost", make_analysis(target="ghost"), AUTO,
        )
        assert response.executed is True
        assert response.result.success is False
        assert fleet.calls_for("restart") == ["ghost"]


class TestPending:
    @pytest.mark.asyncio
    async def test_confirm_with_nothing_pending(self, orchestrator, make_analysis):
        response = await orchestrator.process_command("yes", _confirm(make_analysis), AUTO)
        assert response.executed is False
        assert response.needs_user_input is False
        assert "No pending actions" in response.message

    @pytest.mark.asyncio
    async def test_new_pending_replaces_old(self, orchestrator, conversation, make_analysis):
        await orchestrator.process_command("stop all", _stop_all(make_analysis), AUTO)
        await orchestrator.process_command(
            "delete db",
            make_analysis(intent="delete_process", target="db", safety=Safety.DANGEROUS),
            AUTO,
        )
        labels = [a.label for a in conversation.get_pending_actions()]
        assert labels == ["delete db"]

    @pytest.mark.asyncio
    async def test_cancel(self, orchestrator, conversation, fleet, make_analysis):
        await orchestrator.process_command("stop all", _stop_all(make_analysis), AUTO)
        response = await orchestrator.process_command(
            "no", make_analysis(intent="cancel_pending", safety=Safety.SAFE), AUTO,
        )
        assert response.executed is False
        assert response.needs_user_input is False
        assert "stop all" in response.message
        assert conversation.get_pending_actions() == []
        follow_up = await orchestrator.process_command("yes", _confirm(make_analysis), AUTO)
        assert follow_up.executed is False
        assert fleet.calls_for("stop") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("selection", [0, -1, 2])
    async def test_selection_out_of_range(
        self, orchestrator, fleet, conversation, make_analysis, selection,
    ):
        await orchestrator.process_command("stop all", _stop_all(make_analysis), AUTO)
        response = await orchestrator.process_command(
            str(selection),
            _confirm(make_analysis, str(selection)),
            ExecutionOptions(auto_mode=True, selection=selection),
        )
        assert response.executed is False
        assert response.needs_user_input is True
        assert f"No pending action number {selection}" in response.message
        assert len(conversation.get_pending_actions()) == 1
        assert fleet.calls_for("stop") == []

    @pytest.mark.asyncio
    async def test_confirmed_failure_still_clears(self, orchestrator, fleet, conversation, make_analysis):
        fleet.fail("stop", "db", "refused")
        await orchestrator.process_command("stop all", _stop_all(make_analysis), AUTO)
        response = await orchestrator.process_command("yes", _confirm(make_analysis), AUTO)
        assert response.executed is True
        assert response.result.success is False
        assert sorted(fleet.calls_for("stop")) == ["db", "my-app"]
        assert conversation.get_pending_actions() == []

    @pytest.mark.asyncio
    async def test_confirm_uses_fresh_snapshot(self, orchestrator, fleet, make_analysis):
        await orchestrator.process_command("stop all", _stop_all(make_analysis), AUTO)
        fleet.targets["cache"] = Target(name="cache", status=TargetStatus.ONLINE)
        await orchestrator.process_command("yes", _confirm(make_analysis), AUTO)
        assert sorted(fleet.calls_for("stop")) == ["cache", "db", "my-app"]


class TestInformational:
    @pytest.mark.asyncio
    async def test_template_answer_without_llm(self, orchestrator, conversation, make_analysis):
        analysis = make_analysis(
            intent="info_request", safety=Safety.SAFE, text="how many processes do I have?",
        )
        response = await orchestrator.process_command("how many processes do I have?", analysis, MANUAL)
        assert response.executed is True
        assert response.needs_user_input is False
        assert response.pending_actions == []
        assert "2 total" in response.message
        assert conversation.get_pending_actions() == []

    @pytest.mark.asyncio
    async def test_llm_answer_with_live_context(self, fleet, conversation, make_llm, make_analysis):
        llm = make_llm(responses=["Both processes are healthy."])
        orchestrator = ExecutionOrchestrator(
            fleet, CommandMapper(fleet), conversation, llm_client=llm,
        )
        analysis = make_analysis(intent="info_request", safety=Safety.SAFE, text="how are my apps?")
        response = await orchestrator.process_command("how are my apps?", analysis, AUTO)
        assert response.message == "Both processes are healthy."
        call = llm.history_queries[0]
        assert call["prompt"] == "how are my apps?"
        assert call["system"] == ASSISTANT_SYSTEM_PROMPT
        assert "PROCESS NAMES: my-app, db" in call["context"]

    @pytest.mark.asyncio
    async def test_history_passed_to_llm(self, fleet, conversation, make_llm, make_analysis):
        llm = make_llm(responses=["You have 2.", "They are my-app and db."])
        orchestrator = ExecutionOrchestrator(
            fleet, CommandMapper(fleet), conversation, llm_client=llm,
        )
        first = make_analysis(intent="info_request", safety=Safety.SAFE, text="how many apps?")
        second = make_analysis(intent="info_request", safety=Safety.SAFE, text="which ones?")
        await orchestrator.process_command("how many apps?", first, AUTO)
        await orchestrator.process_command("which ones?", second, AUTO)
        history = llm.history_queries[1]["history"]
        assert [m.content for m in history] == ["how many apps?", "You have 2."]
        assert "Recent conversation" in llm.history_queries[1]["context"]

    @pytest.mark.asyncio
    async def test_llm_failure_uses_template(self, fleet, conversation, failing_llm, make_analysis):
        orchestrator = ExecutionOrchestrator(
            fleet, CommandMapper(fleet), conversation, llm_client=failing_llm,
        )
        analysis = make_analysis(
            intent="info_request", safety=Safety.SAFE, text="what are my processes?",
        )
        response = await orchestrator.process_command("what are my processes?", analysis, AUTO)
        assert response.executed is True
        assert "my-app (online)" in response.message

    @pytest.mark.asyncio
    async def test_error_diagnostics_included(self, fleet, conversation, make_llm, make_analysis):
        fleet.emit_log("db", "Error: connect ECONNREFUSED 127.0.0.1:5432", LogLevel.ERROR)
        llm = make_llm(responses=[LLMError("fake", "no diagnosis"), "db cannot reach postgres."])
        orchestrator = ExecutionOrchestrator(
            fleet, CommandMapper(fleet), conversation,
            llm_client=llm, error_analyzer=ErrorAnalyzer(llm),
        )
        analysis = make_analysis(intent="info_request", safety=Safety.SAFE, text="any errors?")
        await orchestrator.process_command("any errors?", analysis, AUTO)
        context = llm.history_queries[0]["context"]
        assert "RECENT ERROR ANALYSIS" in context
        assert "Connection Refused" in context

    @pytest.mark.asyncio
    async def test_fleet_down_still_answers(self, orchestrator, fleet, make_analysis):
        fleet.unavailable = True
        analysis = make_analysis(intent="info_request", safety=Safety.SAFE, text="status?")
        response = await orchestrator.process_command("status?", analysis, AUTO)
        assert response.executed is True
        assert response.message

    @pytest.mark.asyncio
    async def test_info_does_not_touch_pending(self, orchestrator, conversation, make_analysis):
        await orchestrator.process_command("stop all", _stop_all(make_analysis), AUTO)
        analysis = make_analysis(intent="info_request", safety=Safety.SAFE, text="what is pending?")
        await orchestrator.process_command("what is pending?", analysis, AUTO)
        assert len(conversation.get_pending_actions()) == 1


class TestBookkeeping:
    @pytest.mark.asyncio
    async def test_one_turn_per_call(self, orchestrator, conversation, make_analysis):
        inputs = [
            ("restart my-app", make_analysis(target="my-app", text="restart my-app")),
            ("stop all", _stop_all(make_analysis)),
            ("yes", _confirm(make_analysis)),
            ("restart", make_analysis(target=None)),
            ("blorp", make_analysis(intent="unknown")),
        ]
        for text, analysis in inputs:
            await orchestrator.process_command(text, analysis, AUTO)
        assert [t.input for t in conversation.history] == [text for text, _ in inputs]

    @pytest.mark.asyncio
    async def test_confirmation_turn_records_action_target(
        self, orchestrator, conversation, make_analysis,
    ):
        analysis = make_analysis(
            intent="delete_process", target="db", safety=Safety.DANGEROUS, text="delete db",
        )
        await orchestrator.process_command("delete db", analysis, AUTO)
        await orchestrator.process_command("yes", _confirm(make_analysis), AUTO)
        assert conversation.history[-1].analysis.intent == "delete_process"
        assert conversation.get_context().last_mentioned_target == "db"

    @pytest.mark.asyncio
    async def test_nothing_propagates(self, conversation, make_analysis):
        class BrokenMapper(CommandMapper):
            async def map_to_command(self, analysis):
                raise RuntimeError("registry exploded")

        fleet = InMemoryFleet(["my-app"])
        orchestrator = ExecutionOrchestrator(fleet, BrokenMapper(fleet), conversation)
        response = await orchestrator.process_command("restart my-app", make_analysis(), AUTO)
        assert response.executed is False
        assert "registry exploded" in response.message
        assert len(conversation.history) == 1

    @pytest.mark.asyncio
    async def test_default_options(self, orchestrator, make_analysis):
        response = await orchestrator.process_command("restart db", make_analysis(target="db"))
        assert response.executed is False
