"""Sub-agent definitions and orchestration.

A sub-agent is a child run with its own history, a restricted tool set and
a role prompt. Only its final summary flows back to the parent, as the
result of the parent's launch_sub_agent call. Files the child touched are
merged into the parent's tracking by the parent loop.

Nesting is limited to one level: children never get an orchestrator, so
launch_sub_agent is absent from their catalog.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from taskpilot.adapters.llm.base import LLMProvider, Purpose
from taskpilot.adapters.workspace.base import WorkspaceBackend
from taskpilot.core.config import AgentSettings
from taskpilot.core.events import SubAgentCompleteEvent, SubAgentStartEvent
from taskpilot.core.loop import LoopController, RunBudget
from taskpilot.core.models import SubAgentError, SubAgentKind, SubAgentRequest, SubAgentResult
from taskpilot.core.modes import AgentMode
from taskpilot.core.prompts import PromptBuilder

logger = logging.getLogger(__name__)

MAX_DEPTH = 1

_READ_TOOLS = frozenset({"read_file", "list_directory", "glob_search", "grep_search"})


@dataclass(frozen=True)
class SubAgentDefinition:
    """How a kind of sub-agent runs.

    Attributes:
        kind: Sub-agent kind
        mode: Mode the child run uses
        tool_names: Tools the child may use
        purpose: Model purpose for the child's completions
        role_instructions: Prompt that replaces the base rules
    """

    kind: SubAgentKind
    mode: AgentMode
    tool_names: frozenset[str]
    purpose: Purpose
    role_instructions: str


_ROLE_FOOTER = """

## Reporting

Your final summary is the only thing the agent that launched you will see.
Make it self-contained: findings, decisions, and the exact paths involved."""

SUB_AGENT_DEFINITIONS: dict[SubAgentKind, SubAgentDefinition] = {
    SubAgentKind.EXPLORE: SubAgentDefinition(
        kind=SubAgentKind.EXPLORE,
        mode=AgentMode.FAST,
        tool_names=_READ_TOOLS | {"run_command", "signal_completion"},
        purpose=Purpose.GENERATION,
        role_instructions=(
            "You are an exploration sub-agent. Investigate the workspace to answer "
            "the question you were given. Do not modify any file; use run_command "
            "only for read-only inspection. Call signal_completion with your findings."
            + _ROLE_FOOTER
        ),
    ),
    SubAgentKind.BASH: SubAgentDefinition(
        kind=SubAgentKind.BASH,
        mode=AgentMode.FAST,
        tool_names=_READ_TOOLS | {"run_command", "signal_completion"},
        purpose=Purpose.GENERATION,
        role_instructions=(
            "You are a shell sub-agent. Carry out the requested command-line work "
            "(builds, test runs, installs) and report the relevant output. "
            "Call signal_completion when done." + _ROLE_FOOTER
        ),
    ),
    SubAgentKind.PLAN: SubAgentDefinition(
        kind=SubAgentKind.PLAN,
        mode=AgentMode.PLANNING,
        tool_names=frozenset({"read_file", "list_directory", "create_plan"}),
        purpose=Purpose.PLANNING,
        role_instructions=(
            "You are a planning sub-agent. Inspect the workspace and produce a "
            "concrete implementation plan for the requested change. Submit it with "
            "create_plan." + _ROLE_FOOTER
        ),
    ),
    SubAgentKind.GENERAL: SubAgentDefinition(
        kind=SubAgentKind.GENERAL,
        mode=AgentMode.FAST,
        tool_names=_READ_TOOLS
        | {"write_file", "edit_file", "run_command", "todo_write", "signal_completion"},
        purpose=Purpose.EXECUTION,
        role_instructions=(
            "You are a general-purpose sub-agent. Complete the delegated task "
            "end to end: read before editing, verify your changes, and call "
            "signal_completion with the files you created and modified." + _ROLE_FOOTER
        ),
    ),
}

_missing = set(SubAgentKind) - set(SUB_AGENT_DEFINITIONS)
if _missing:
    raise RuntimeError(f"SUB_AGENT_DEFINITIONS missing kinds: {sorted(k.value for k in _missing)}")


def get_definition(kind: SubAgentKind) -> SubAgentDefinition:
    try:
        return SUB_AGENT_DEFINITIONS[kind]
    except KeyError as exc:
        raise SubAgentError(f"Unknown sub-agent kind: {kind}") from exc


class SubAgentOrchestrator:
    """Launches child runs on behalf of a parent LoopController.

    Example usage:
        orchestrator = SubAgentOrchestrator(provider, workspace, settings)
        controller = LoopController(provider, workspace, sub_agents=orchestrator)
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        workspace: WorkspaceBackend,
        settings: AgentSettings,
        prompt_builder: Optional[PromptBuilder] = None,
    ):
        self.llm_provider = llm_provider
        self.workspace = workspace
        self.settings = settings
        self.prompt_builder = prompt_builder or PromptBuilder()

    async def launch(
        self,
        request: SubAgentRequest,
        parent_budget_remaining: int,
        parent: LoopController,
    ) -> SubAgentResult:
        """Run a sub-agent to a terminal state.

        Args:
            request: What to delegate
            parent_budget_remaining: Iterations the parent has left
            parent: Launching controller; receives the sub-agent events

        Returns:
            SubAgentResult carrying the child's summary and touched files

        Raises:
            SubAgentError: If nesting is too deep or no budget is left
        """
        if parent.depth >= MAX_DEPTH:
            raise SubAgentError("Sub-agents cannot launch further sub-agents")

        max_iterations = min(self.settings.sub_agent_max_iterations, parent_budget_remaining)
        if max_iterations <= 0:
            raise SubAgentError("No iteration budget left for a sub-agent")
        remaining_time = parent.remaining_time
        if remaining_time <= 0:
            raise SubAgentError("No time left for a sub-agent")

        definition = get_definition(request.kind)
        sub_run_id = f"{parent.run_id}-sub-{uuid.uuid4().hex[:8]}"

        logger.info(
            "Run %s launching %s sub-agent %s (max_iterations=%d)",
            parent.run_id,
            request.kind.value,
            sub_run_id,
            max_iterations,
        )
        parent.emit(
            SubAgentStartEvent(
                run_id=parent.run_id,
                kind=request.kind.value,
                description=request.description,
                sub_run_id=sub_run_id,
                max_iterations=max_iterations,
            )
        )

        child = LoopController(
            self.llm_provider,
            self.workspace,
            settings=self.settings,
            prompt_builder=self.prompt_builder,
            tool_names=definition.tool_names,
            role_instructions=definition.role_instructions,
            purpose=definition.purpose,
            run_id=sub_run_id,
            parent_run_id=parent.run_id,
            depth=parent.depth + 1,
        )
        state = await child.run(
            request.instruction,
            mode=definition.mode,
            budget=RunBudget(max_iterations=max_iterations, max_wall_clock=remaining_time),
        )

        if definition.mode == AgentMode.PLANNING and state.plan_text:
            summary = state.plan_text
        else:
            summary = state.summary or state.error or "Sub-agent stopped before completing"

        result = SubAgentResult(
            kind=request.kind,
            summary=summary,
            files_created=list(state.files_created),
            files_modified=list(state.files_modified),
            iterations_used=state.iteration,
            terminal_reason=state.terminal_reason,
            input_tokens=state.input_tokens,
            output_tokens=state.output_tokens,
        )
        parent.emit(
            SubAgentCompleteEvent(
                run_id=parent.run_id,
                kind=request.kind.value,
                sub_run_id=sub_run_id,
                summary=summary[:500],
                iterations_used=state.iteration,
                terminal_reason=state.terminal_reason.value if state.terminal_reason else None,
            )
        )
        return result
