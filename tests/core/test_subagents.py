"""Tests for sub-agent definitions and the orchestrator."""

import pytest

from taskpilot.adapters.llm.base import Purpose, ToolResultBlock
from taskpilot.adapters.workspace.memory import InMemoryWorkspace
from taskpilot.core.events import EventType
from taskpilot.core.loop import LoopController, RunBudget
from taskpilot.core.models import SubAgentError, SubAgentKind, SubAgentRequest
from taskpilot.core.modes import AgentMode
from taskpilot.core.subagents import SUB_AGENT_DEFINITIONS, SubAgentOrchestrator, get_definition
from tests.conftest import make_call, make_settings


def _parent(provider, workspace, settings=None, **kwargs) -> LoopController:
    settings = settings or make_settings()
    orchestrator = SubAgentOrchestrator(provider, workspace, settings)
    return LoopController(provider, workspace, settings=settings, sub_agents=orchestrator, **kwargs)


def _launch(kind: str, instruction: str = "investigate"):
    return make_call("launch_sub_agent", {"kind": kind, "instruction": instruction})


def _complete(summary: str = "done", **extra):
    return make_call("signal_completion", {"summary": summary, **extra})


class TestDefinitions:
    def test_every_kind_defined(self):
        assert set(SUB_AGENT_DEFINITIONS) == set(SubAgentKind)

    def test_no_definition_offers_launch(self):
        for definition in SUB_AGENT_DEFINITIONS.values():
            assert "launch_sub_agent" not in definition.tool_names

    def test_explore_is_read_only(self):
        definition = get_definition(SubAgentKind.EXPLORE)
        assert "write_file" not in definition.tool_names
        assert "edit_file" not in definition.tool_names
        assert definition.purpose == Purpose.GENERATION

    def test_plan_runs_in_planning_mode(self):
        definition = get_definition(SubAgentKind.PLAN)
        assert definition.mode == AgentMode.PLANNING
        assert "create_plan" in definition.tool_names


class TestSubAgentIsolation:
    """Only the sub-agent's summary reaches the parent history."""

    @pytest.mark.asyncio
    async def test_explore_sub_agent(self, provider):
        workspace = InMemoryWorkspace(files={"src/app.py": "print('hi')\n"})
        provider.add_tool_response([_launch("explore", "Where is the entry point?")])
        provider.add_tool_response([make_call("read_file", {"path": "src/app.py"})])
        provider.add_tool_response([_complete("Entry point is src/app.py")])
        provider.add_tool_response([_complete("answered")])

        parent = _parent(provider, workspace, run_id="parent")
        state = await parent.run("find the entry point")

        assert state.completed
        assert state.iteration == 2
        # Parent history: instruction, launch, its result, completion, its result
        assert len(parent.messages) == 5
        results = [b for b in parent.messages[2].blocks if isinstance(b, ToolResultBlock)]
        assert len(results) == 1
        assert "Entry point is src/app.py" in results[0].content
        assert "print('hi')" not in results[0].content

        child_call = provider.calls[1]
        assert child_call.purpose == Purpose.GENERATION
        assert child_call.system.startswith("You are an exploration sub-agent")
        assert child_call.tool_names == {
            "read_file",
            "list_directory",
            "glob_search",
            "grep_search",
            "run_command",
            "signal_completion",
        }
        # Child history starts fresh
        assert child_call.messages == [{"role": "user", "content": "Where is the entry point?"}]

    @pytest.mark.asyncio
    async def test_events(self, provider, memory_workspace):
        provider.add_tool_response([_launch("bash", "run the tests")])
        provider.add_tool_response([_complete("tests pass")])
        provider.add_tool_response([_complete()])

        parent = _parent(provider, memory_workspace, run_id="parent")
        await parent.run("task", budget=RunBudget(max_iterations=5))

        starts = [e for e in parent.events if e.type == EventType.SUB_AGENT_START]
        completes = [e for e in parent.events if e.type == EventType.SUB_AGENT_COMPLETE]
        assert len(starts) == 1
        assert starts[0].max_iterations == 4
        assert starts[0].sub_run_id.startswith("parent-sub-")
        assert completes[0].summary == "tests pass"
        assert completes[0].iterations_used == 1
        assert completes[0].terminal_reason == "completed"
        # Child lifecycle events stay out of the parent stream
        assert [e.type for e in parent.events].count(EventType.START) == 1

    @pytest.mark.asyncio
    async def test_files_merge_into_parent(self, provider, memory_workspace):
        provider.add_tool_response([_launch("general", "create util.py")])
        provider.add_tool_response([make_call("write_file", {"path": "util.py", "content": "x = 1"})])
        provider.add_tool_response([_complete("created util.py")])
        provider.add_tool_response([_complete()])

        state = await _parent(provider, memory_workspace).run("task")

        assert state.files_created == ["util.py"]
        assert memory_workspace.files["util.py"] == "x = 1"

    @pytest.mark.asyncio
    async def test_token_usage_rolls_up_to_parent(self, provider, memory_workspace):
        provider.add_tool_response([_launch("explore")], input_tokens=10, output_tokens=1)
        provider.add_tool_response([_complete("found it")], input_tokens=200, output_tokens=20)
        provider.add_tool_response([_complete()], input_tokens=30, output_tokens=3)

        state = await _parent(provider, memory_workspace).run("task")

        assert (state.input_tokens, state.output_tokens) == (240, 24)

    @pytest.mark.asyncio
    async def test_plan_sub_agent_returns_plan(self, provider, memory_workspace):
        provider.add_tool_response([_launch("plan", "plan the refactor")])
        provider.add_tool_response(
            [make_call("create_plan", {"planContent": "1. Split module", "estimatedIterations": 3})]
        )
        provider.add_tool_response([_complete()])

        parent = _parent(provider, memory_workspace)
        await parent.run("task")

        result = [b for b in parent.messages[2].blocks if isinstance(b, ToolResultBlock)][0]
        assert not result.is_error
        assert "1. Split module" in result.content
        assert provider.calls[1].purpose == Purpose.PLANNING

    @pytest.mark.asyncio
    async def test_unfinished_sub_agent(self, provider, memory_workspace):
        provider.add_tool_response([_launch("explore")])
        settings = make_settings(sub_agent_max_iterations=1)
        provider.add_text_response("hmm")
        provider.add_tool_response([_complete()])

        parent = _parent(provider, memory_workspace, settings=settings)
        state = await parent.run("task")

        assert state.completed
        result = [b for b in parent.messages[2].blocks if isinstance(b, ToolResultBlock)][0]
        assert result.is_error
        assert "Sub-agent stopped before completing" in result.content


class TestLimits:
    """Depth and budget limits."""

    @pytest.mark.asyncio
    async def test_no_budget_left(self, provider, memory_workspace):
        provider.add_tool_response([_launch("explore")])

        parent = _parent(provider, memory_workspace)
        state = await parent.run("task", budget=RunBudget(max_iterations=1))

        result = [b for b in parent.messages[2].blocks if isinstance(b, ToolResultBlock)][0]
        assert result.content == "Error: No iteration budget left for a sub-agent"
        assert provider.call_count == 1
        assert state.iteration == 1

    @pytest.mark.asyncio
    async def test_depth_limit(self, provider, memory_workspace):
        orchestrator = SubAgentOrchestrator(provider, memory_workspace, make_settings())
        child = LoopController(provider, memory_workspace, settings=make_settings(), depth=1)

        with pytest.raises(SubAgentError, match="cannot launch further"):
            await orchestrator.launch(
                SubAgentRequest(kind=SubAgentKind.EXPLORE, instruction="x"),
                parent_budget_remaining=5,
                parent=child,
            )
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_child_budget_capped_by_settings(self, provider, memory_workspace):
        provider.add_tool_response([_launch("explore")])
        provider.add_tool_response([_complete("found")])
        provider.add_tool_response([_complete()])

        parent = _parent(provider, memory_workspace, settings=make_settings(sub_agent_max_iterations=2))
        await parent.run("task", budget=RunBudget(max_iterations=30))

        start = [e for e in parent.events if e.type == EventType.SUB_AGENT_START][0]
        assert start.max_iterations == 2
