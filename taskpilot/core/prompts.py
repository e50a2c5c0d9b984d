"""System prompt assembly.

The prompt is built once per run from three layers:

Layer 1: Base rules (or role instructions for a sub-agent)
Layer 2: Project context, marked advisory
Layer 3: Mode rules, the visible tool names, and the approved plan when executing
"""

from typing import Optional, Sequence

from taskpilot.core.context import ProjectContext
from taskpilot.core.modes import AgentMode, profile_for
from taskpilot.core.tools import ToolDefinition


class ToolMaskViolation(ValueError):
    """Raised when a prompt would offer a tool the mode does not permit."""

    def __init__(self, mode: AgentMode, tools: list[str]):
        self.mode = mode
        self.tools = tools
        super().__init__(
            f"Tools not permitted in {mode.value} mode: {', '.join(sorted(tools))}"
        )


BASE_INSTRUCTIONS = """\
You are TaskPilot, an autonomous software engineering agent working inside a
project workspace. You act only through the tools provided.

## Rules

- ALWAYS read a file before editing it. Never assume file contents.
- Prefer edit_file for small changes to existing files; use write_file for new files
  or full rewrites.
- Run commands to verify your work (build, tests) before declaring success.
- When a tool returns an error, read it carefully and change your approach.
  Do not repeat an action that already failed the same way.
- Keep solutions simple. Do not add features beyond what was asked.

## Tool Results

Tool results are the ground truth about the workspace. Messages starting with
[SYSTEM ERROR] report infrastructure problems, not mistakes of yours: recover
and continue."""

MODE_INSTRUCTIONS: dict[AgentMode, str] = {
    AgentMode.FAST: """\
## Mode: fast

Execute the task immediately. Iterate on errors until the result works.
When the task is complete and verified, call signal_completion with a short
summary and the files you created and modified.""",
    AgentMode.PLANNING: """\
## Mode: planning

Do NOT modify anything. Inspect the project with the read-only tools, then
call create_plan with:
- planContent: a numbered, step-by-step plan in markdown (files to create or
  change and what each step does)
- estimatedIterations: how many tool rounds execution will need
- keyFiles: the files the plan touches
Calling create_plan ends this session; the user reviews the plan before it runs.""",
    AgentMode.EXECUTING: """\
## Mode: executing

Follow the approved plan below step by step, in order. Do not change its scope.
If a step turns out to be impossible, adapt minimally and say so in your summary.
Call signal_completion when every step is done.""",
}

_missing = set(AgentMode) - set(MODE_INSTRUCTIONS)
if _missing:
    raise RuntimeError(f"MODE_INSTRUCTIONS missing modes: {sorted(m.value for m in _missing)}")


def format_project_context(context: ProjectContext) -> str:
    """Render project context as an advisory prompt section."""
    lines = [
        "## Project Context",
        f"- Name: {context.name}",
        f'- Description: "{context.description}"' if context.description else "- Description: none",
        f"- Industry: {context.industry or 'general'}",
        f"- Features: {', '.join(context.features) if context.features else 'none'}",
        f"- Technology: {context.technology or 'unspecified'}",
        "",
        "This summary may be stale. When it disagrees with the files in the "
        "workspace, trust the files.",
    ]
    return "\n".join(lines)


class PromptBuilder:
    """Builds the system prompt for a run."""

    def __init__(self, base_instructions: str = BASE_INSTRUCTIONS):
        self.base_instructions = base_instructions

    def build(
        self,
        mode: AgentMode,
        tools: Sequence[ToolDefinition],
        project_context: Optional[ProjectContext] = None,
        plan_text: Optional[str] = None,
        role_instructions: Optional[str] = None,
    ) -> str:
        """Assemble the system prompt.

        Args:
            mode: Run mode
            tools: Tools that will be offered to the model
            project_context: Optional persisted project context
            plan_text: Approved plan (required in executing mode)
            role_instructions: Replaces the base rules (sub-agents)

        Returns:
            The system prompt text

        Raises:
            ToolMaskViolation: If a tool is not allowed in *mode*
            ValueError: If executing mode has no plan
        """
        forbidden = [t.name for t in tools if mode not in t.allowed_modes]
        if forbidden:
            raise ToolMaskViolation(mode, forbidden)
        if mode == AgentMode.EXECUTING and not (plan_text and plan_text.strip()):
            raise ValueError("executing mode requires an approved plan")

        sections: list[str] = [role_instructions or self.base_instructions]

        if project_context is not None:
            sections.append(format_project_context(project_context))

        sections.append(MODE_INSTRUCTIONS[mode])

        terminal = profile_for(mode).terminal_tool
        tool_lines = ["## Available Tools"]
        for tool in tools:
            marker = " (ends the session)" if tool.name == terminal else ""
            tool_lines.append(f"- {tool.name}{marker}")
        sections.append("\n".join(tool_lines))

        if mode == AgentMode.EXECUTING:
            sections.append(f"## Approved Plan\n\n{plan_text.strip()}")

        return "\n\n".join(sections)
