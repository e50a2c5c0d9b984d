"""Agent tools and the tool dispatcher.

The tool set is a closed catalog of typed tools. Each tool owns a pydantic
input model (validation and the JSON schema sent to the model), the modes
it may be used in, and its execution logic against the workspace:

- write_file: Create or overwrite a file
- read_file: Read a file
- edit_file: Replace one unique occurrence of a search string
- list_directory: List a directory
- run_command: Run a shell command
- glob_search: Find files by glob pattern
- grep_search: Regex search across files
- todo_write: Replace the run's todo list
- launch_sub_agent: Delegate a sub-task to a restricted child run
- signal_completion: Finish the run (fast, executing)
- create_plan: Submit a plan and finish the run (planning)

Tools never mutate RunState. They return a ToolOutcome describing their
effects and the loop applies them.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import posixpath
import re
from abc import ABC
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from taskpilot.adapters.llm.base import Tool, ToolCall, ToolResult
from taskpilot.adapters.workspace.base import (
    WorkspaceBackend,
    WorkspaceError,
)
from taskpilot.core.error_tracker import ERROR_PREFIX
from taskpilot.core.models import (
    SubAgentError,
    SubAgentKind,
    SubAgentRequest,
    SubAgentResult,
    TodoItem,
)
from taskpilot.core.modes import AgentMode
from taskpilot.core.state import RunState

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TOOL_TIMEOUT = 60.0
DEFAULT_COMMAND_TIMEOUT_MS = 60_000
MIN_COMMAND_TIMEOUT_MS = 1_000
MAX_COMMAND_TIMEOUT_MS = 180_000

MAX_FILE_LINES = 2000
MAX_SEARCH_FILE_SIZE = 1_000_000
MAX_COMMAND_OUTPUT = 4000

# Lines shown at the top/bottom when truncating large files
_TRUNCATE_HEAD = 200
_TRUNCATE_TAIL = 50

# Extra time granted to run_command beyond its own timeout
_COMMAND_TIMEOUT_GRACE = 5.0

_ALL_MODES = frozenset(AgentMode)
_MUTATING_MODES = frozenset({AgentMode.FAST, AgentMode.EXECUTING})

_DANGEROUS_COMMANDS: list[tuple[str, str]] = [
    (r"\brm\s+-[a-z]*r[a-z]*f?[a-z]*\s+(/|~)(\s|$)", "recursive delete of / or ~"),
    (r">\s*/dev/(?!null\b)", "write to a device"),
    (r"\bmkfs\b", "filesystem format"),
    (r":\(\)\s*\{", "fork bomb"),
    (r"\bdd\s+if=", "raw disk copy"),
]


def is_dangerous_command(command: str) -> tuple[bool, str]:
    """Check a shell command against the blocked patterns.

    Returns:
        ``(True, description)`` when blocked, ``(False, "")`` otherwise.
    """
    for pattern, description in _DANGEROUS_COMMANDS:
        if re.search(pattern, command):
            return True, description
    return False, ""


# ---------------------------------------------------------------------------
# Results, outcomes and definitions
# ---------------------------------------------------------------------------


def tool_error(tool_call_id: str, message: str) -> ToolResult:
    """Build an error result with the standard prefix."""
    return ToolResult(tool_call_id=tool_call_id, content=ERROR_PREFIX + message, is_error=True)


def tool_success(tool_call_id: str, content: str) -> ToolResult:
    return ToolResult(tool_call_id=tool_call_id, content=content)


@dataclass
class ToolOutcome:
    """Result of one dispatch plus the state effects the loop should apply.

    Attributes:
        result: Tool result appended to the conversation
        written_path: Path written by write_file/edit_file
        existed: Whether written_path existed before the write
        command: Shell command that was executed
        completion: Accepted signal_completion input
        plan: Accepted create_plan input
        todos: New todo list
        sub_agent: Result of a launched sub-agent
    """

    result: ToolResult
    written_path: Optional[str] = None
    existed: bool = False
    command: Optional[str] = None
    completion: Optional[SignalCompletionInput] = None
    plan: Optional[CreatePlanInput] = None
    todos: Optional[list[TodoItem]] = None
    sub_agent: Optional[SubAgentResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.completion is not None or self.plan is not None


@dataclass(frozen=True)
class ToolDefinition:
    """Catalog entry describing a tool to the model.

    Attributes:
        name: Wire name of the tool
        description: What the tool does
        parameter_schema: JSON schema of the tool input
        allowed_modes: Modes in which the tool may be offered and dispatched
    """

    name: str
    description: str
    parameter_schema: dict
    allowed_modes: frozenset[AgentMode]

    def to_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, input_schema=self.parameter_schema)


SubAgentLauncher = Callable[[SubAgentRequest], Awaitable[SubAgentResult]]


@dataclass
class ToolContext:
    """What a tool may see while it executes."""

    workspace: WorkspaceBackend
    mode: AgentMode
    launch_sub_agent: Optional[SubAgentLauncher] = None


def _strip_titles(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {k: _strip_titles(v) for k, v in schema.items() if k != "title"}
    if isinstance(schema, list):
        return [_strip_titles(v) for v in schema]
    return schema


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


def normalize_path(path: str) -> str:
    """Normalize a model-supplied relative path ('./a.txt' -> 'a.txt')."""
    path = path.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path or "."


class ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WriteFileInput(ToolInput):
    path: str = Field(min_length=1, description="Relative path from workspace root")
    content: str = Field(description="Complete file content")

    @field_validator("path")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_path(v)


class ReadFileInput(ToolInput):
    path: str = Field(min_length=1, description="Relative path from workspace root")

    @field_validator("path")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_path(v)


class EditFileInput(ToolInput):
    path: str = Field(min_length=1, description="Relative path of the file to edit")
    search: str = Field(min_length=1, description="Exact text to find (must occur exactly once)")
    replace: str = Field(description="Replacement text")

    @field_validator("path")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_path(v)


class ListDirectoryInput(ToolInput):
    path: str = Field(default=".", description="Relative directory path (default: root)")


class RunCommandInput(ToolInput):
    command: str = Field(min_length=1, description="Shell command to execute in the workspace")
    timeout_ms: int = Field(
        default=DEFAULT_COMMAND_TIMEOUT_MS,
        alias="timeoutMs",
        description="Timeout in milliseconds (default 60000, max 180000)",
    )

    @field_validator("timeout_ms")
    @classmethod
    def clamp_timeout(cls, v: int) -> int:
        return min(max(v, MIN_COMMAND_TIMEOUT_MS), MAX_COMMAND_TIMEOUT_MS)


class GlobSearchInput(ToolInput):
    pattern: str = Field(min_length=1, description="Glob pattern, e.g. 'src/**/*.py'")
    path: str = Field(default=".", description="Directory to search from")
    limit: int = Field(default=100, ge=1, le=1000, description="Maximum paths returned")


class GrepSearchInput(ToolInput):
    pattern: str = Field(min_length=1, description="Regular expression to search for")
    path: str = Field(default=".", description="Directory to search from")
    glob: Optional[str] = Field(default=None, description="Only search files matching this glob")
    case_insensitive: bool = Field(default=False, alias="caseInsensitive")
    head_limit: int = Field(default=50, ge=1, le=500, alias="headLimit", description="Maximum matches")


class TodoWriteInput(ToolInput):
    todos: list[TodoItem] = Field(description="The complete, updated todo list")


class LaunchSubAgentInput(ToolInput):
    kind: SubAgentKind = Field(description="explore | plan | general | bash")
    instruction: str = Field(min_length=1, description="Self-contained task for the sub-agent")
    description: Optional[str] = Field(default=None, description="Short label shown in progress")


class SignalCompletionInput(ToolInput):
    summary: str = Field(min_length=1, description="What was accomplished")
    files_created: list[str] = Field(default_factory=list, alias="filesCreated")
    files_modified: list[str] = Field(default_factory=list, alias="filesModified")

    @field_validator("files_created", "files_modified")
    @classmethod
    def normalize(cls, v: list[str]) -> list[str]:
        return [normalize_path(p) for p in v]


class CreatePlanInput(ToolInput):
    plan_content: str = Field(min_length=1, alias="planContent", description="The plan, in markdown")
    estimated_iterations: int = Field(ge=1, alias="estimatedIterations")
    key_files: list[str] = Field(default_factory=list, alias="keyFiles")


# ---------------------------------------------------------------------------
# Tool base class
# ---------------------------------------------------------------------------


class AgentTool(ABC):
    """Base class for tools.

    Subclasses set the class attributes and implement execute() (run in a
    worker thread) or override run() for tools that need the event loop.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    input_model: ClassVar[type[ToolInput]]
    allowed_modes: ClassVar[frozenset[AgentMode]] = _MUTATING_MODES

    def definition(self) -> ToolDefinition:
        schema = _strip_titles(self.input_model.model_json_schema(by_alias=True))
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameter_schema=schema,
            allowed_modes=self.allowed_modes,
        )

    def parse(self, raw: Any) -> ToolInput:
        return self.input_model.model_validate(raw)

    def timeout_for(self, params: ToolInput, default: float) -> Optional[float]:
        """Dispatch timeout in seconds (None for no limit)."""
        return default

    def target_path(self, params: ToolInput) -> Optional[str]:
        """Workspace path the tool writes, if any."""
        return None

    async def run(self, params: ToolInput, ctx: ToolContext, tool_call_id: str) -> ToolOutcome:
        return await asyncio.to_thread(self.execute, params, ctx.workspace, tool_call_id)

    def execute(
        self, params: ToolInput, workspace: WorkspaceBackend, tool_call_id: str
    ) -> ToolOutcome:
        raise NotImplementedError(f"{type(self).__name__} does not implement execute()")


# ---------------------------------------------------------------------------
# File tools
# ---------------------------------------------------------------------------


class WriteFileTool(AgentTool):
    name = "write_file"
    description = (
        "Create or overwrite a file with the given content. "
        "Parent directories are created as needed."
    )
    input_model = WriteFileInput

    def target_path(self, params: WriteFileInput) -> Optional[str]:
        return params.path

    def execute(self, params: WriteFileInput, workspace, tool_call_id):
        existed = workspace.file_exists(params.path)
        workspace.write_file(params.path, params.content)
        verb = "Updated" if existed else "Created"
        return ToolOutcome(
            result=tool_success(tool_call_id, f"{verb} {params.path} ({len(params.content)} chars)"),
            written_path=params.path,
            existed=existed,
        )


class ReadFileTool(AgentTool):
    name = "read_file"
    description = "Read the contents of a file in the workspace."
    input_model = ReadFileInput
    allowed_modes = _ALL_MODES

    def execute(self, params: ReadFileInput, workspace, tool_call_id):
        text = workspace.read_file(params.path)
        if not text:
            return ToolOutcome(result=tool_success(tool_call_id, f"{params.path} is empty"))

        lines = text.splitlines()
        if len(lines) > MAX_FILE_LINES:
            omitted = len(lines) - _TRUNCATE_HEAD - _TRUNCATE_TAIL
            text = "\n".join(
                lines[:_TRUNCATE_HEAD]
                + [f"... [{omitted} lines omitted] ..."]
                + lines[-_TRUNCATE_TAIL:]
            )
        return ToolOutcome(result=tool_success(tool_call_id, text))


class EditFileTool(AgentTool):
    name = "edit_file"
    description = (
        "Replace one occurrence of `search` with `replace` in a file. "
        "`search` must match exactly once; include surrounding lines to make it unique."
    )
    input_model = EditFileInput

    def target_path(self, params: EditFileInput) -> Optional[str]:
        return params.path

    def execute(self, params: EditFileInput, workspace, tool_call_id):
        original = workspace.read_file(params.path)
        occurrences = original.count(params.search)
        if occurrences == 0:
            return ToolOutcome(
                result=tool_error(tool_call_id, f"Search text not found in {params.path}")
            )
        if occurrences > 1:
            return ToolOutcome(
                result=tool_error(
                    tool_call_id,
                    f"Search text matches {occurrences} locations in {params.path}; "
                    "include more context so it matches exactly once",
                )
            )

        workspace.write_file(params.path, original.replace(params.search, params.replace, 1))
        return ToolOutcome(
            result=tool_success(tool_call_id, f"Edited {params.path}"),
            written_path=params.path,
            existed=True,
        )


class ListDirectoryTool(AgentTool):
    name = "list_directory"
    description = "List files and subdirectories of a directory (directories end with '/')."
    input_model = ListDirectoryInput
    allowed_modes = _ALL_MODES

    def execute(self, params: ListDirectoryInput, workspace, tool_call_id):
        entries = workspace.list_directory(params.path)
        if not entries:
            return ToolOutcome(result=tool_success(tool_call_id, f"{params.path} is empty"))
        lines = [f"{e.name}/" if e.is_dir else e.name for e in entries]
        return ToolOutcome(result=tool_success(tool_call_id, "\n".join(lines)))


# ---------------------------------------------------------------------------
# run_command
# ---------------------------------------------------------------------------


def _format_command_output(exit_code: int, stdout: str, stderr: str) -> str:
    parts = [f"Exit code: {exit_code}"]
    if stdout:
        parts.append(f"stdout:\n{stdout}")
    if stderr:
        parts.append(f"stderr:\n{stderr}")
    output = "\n".join(parts)

    if len(output) > MAX_COMMAND_OUTPUT:
        half = MAX_COMMAND_OUTPUT // 2
        output = output[:half] + "\n...[truncated]...\n" + output[-half:]
    return output


class RunCommandTool(AgentTool):
    name = "run_command"
    description = (
        "Run a shell command in the workspace root. Returns exit code, stdout and stderr. "
        "Use timeoutMs (up to 180000) for long installs or builds."
    )
    input_model = RunCommandInput

    def timeout_for(self, params: RunCommandInput, default: float) -> Optional[float]:
        return params.timeout_ms / 1000 + _COMMAND_TIMEOUT_GRACE

    def execute(self, params: RunCommandInput, workspace, tool_call_id):
        dangerous, description = is_dangerous_command(params.command)
        if dangerous:
            return ToolOutcome(
                result=tool_error(tool_call_id, f"Blocked dangerous command ({description})")
            )

        exec_result = workspace.exec(params.command, ".", params.timeout_ms)
        output = _format_command_output(exec_result.exit_code, exec_result.stdout, exec_result.stderr)
        if exec_result.ok:
            result = tool_success(tool_call_id, output)
        elif exec_result.timed_out:
            result = tool_error(tool_call_id, f"Command timed out\n{output}")
        else:
            result = tool_error(tool_call_id, f"Command failed\n{output}")
        return ToolOutcome(result=result, command=params.command)


# ---------------------------------------------------------------------------
# Search tools
# ---------------------------------------------------------------------------


def _glob_match(rel_path: str, pattern: str) -> bool:
    if fnmatch.fnmatch(rel_path, pattern):
        return True
    if pattern.startswith("**/") and fnmatch.fnmatch(rel_path, pattern[3:]):
        return True
    if "/" not in pattern:
        return fnmatch.fnmatch(posixpath.basename(rel_path), pattern)
    return False


class GlobSearchTool(AgentTool):
    name = "glob_search"
    description = "Find files whose path matches a glob pattern (supports '**/')."
    input_model = GlobSearchInput

    def execute(self, params: GlobSearchInput, workspace, tool_call_id):
        matches = []
        truncated = False
        for rel in workspace.walk(params.path):
            if _glob_match(rel, params.pattern):
                if len(matches) >= params.limit:
                    truncated = True
                    break
                matches.append(rel)

        if not matches:
            return ToolOutcome(
                result=tool_success(tool_call_id, f'No files match "{params.pattern}"')
            )
        body = "\n".join(matches)
        if truncated:
            body += f"\n\n[Results truncated to {params.limit}]"
        return ToolOutcome(result=tool_success(tool_call_id, body))


class GrepSearchTool(AgentTool):
    name = "grep_search"
    description = "Search file contents with a regular expression; returns path:line: text."
    input_model = GrepSearchInput

    def execute(self, params: GrepSearchInput, workspace, tool_call_id):
        flags = re.IGNORECASE if params.case_insensitive else 0
        try:
            compiled = re.compile(params.pattern, flags)
        except re.error as exc:
            return ToolOutcome(result=tool_error(tool_call_id, f"Invalid regex pattern: {exc}"))

        matches: list[str] = []
        truncated = False
        for rel in workspace.walk(params.path):
            if params.glob and not _glob_match(rel, params.glob):
                continue
            try:
                text = workspace.read_file(rel)
            except WorkspaceError:
                continue
            if len(text) > MAX_SEARCH_FILE_SIZE or "\x00" in text:
                continue

            for line_num, line in enumerate(text.splitlines(), start=1):
                if compiled.search(line):
                    if len(matches) >= params.head_limit:
                        truncated = True
                        break
                    matches.append(f"{rel}:{line_num}: {line.rstrip()}")
            if truncated:
                break

        header = f'Found {len(matches)} matches for pattern "{params.pattern}":\n\n'
        body = "\n".join(matches) if matches else "(no matches)"
        footer = f"\n\n[Results truncated to {params.head_limit}]" if truncated else ""
        return ToolOutcome(result=tool_success(tool_call_id, header + body + footer))


# ---------------------------------------------------------------------------
# Bookkeeping and control tools
# ---------------------------------------------------------------------------


class TodoWriteTool(AgentTool):
    name = "todo_write"
    description = (
        "Replace your todo list for this task. Send the whole list every time; "
        "mark exactly one item in_progress while working on it."
    )
    input_model = TodoWriteInput

    def execute(self, params: TodoWriteInput, workspace, tool_call_id):
        done = sum(1 for t in params.todos if t.status == "completed")
        active = sum(1 for t in params.todos if t.status == "in_progress")
        return ToolOutcome(
            result=tool_success(
                tool_call_id,
                f"Todo list updated: {len(params.todos)} items "
                f"({done} completed, {active} in progress)",
            ),
            todos=list(params.todos),
        )


class LaunchSubAgentTool(AgentTool):
    name = "launch_sub_agent"
    description = (
        "Delegate a narrow, self-contained sub-task to a sub-agent with its own "
        "restricted tools and history. kind: explore (read-only investigation), "
        "plan (write a plan), general (multi-step changes), bash (shell work). "
        "Only the sub-agent's summary is returned."
    )
    input_model = LaunchSubAgentInput

    def timeout_for(self, params: LaunchSubAgentInput, default: float) -> Optional[float]:
        # Bounded by the sub-agent's own budget
        return None

    async def run(self, params: LaunchSubAgentInput, ctx: ToolContext, tool_call_id: str) -> ToolOutcome:
        if ctx.launch_sub_agent is None:
            return ToolOutcome(
                result=tool_error(tool_call_id, "Sub-agents are not available in this run")
            )
        request = SubAgentRequest(
            kind=params.kind,
            instruction=params.instruction,
            description=params.description,
        )
        try:
            sub_result = await ctx.launch_sub_agent(request)
        except SubAgentError as exc:
            return ToolOutcome(result=tool_error(tool_call_id, str(exc)))

        if sub_result.completed:
            result = tool_success(tool_call_id, sub_result.format())
        else:
            result = tool_error(tool_call_id, f"Sub-agent did not complete\n{sub_result.format()}")
        return ToolOutcome(result=result, sub_agent=sub_result)


class SignalCompletionTool(AgentTool):
    name = "signal_completion"
    description = (
        "Call when the task is fully complete and verified. "
        "Ends the run; list the files you created and modified."
    )
    input_model = SignalCompletionInput

    def execute(self, params: SignalCompletionInput, workspace, tool_call_id):
        return ToolOutcome(
            result=tool_success(tool_call_id, f"Task marked complete: {params.summary}"),
            completion=params,
        )


class CreatePlanTool(AgentTool):
    name = "create_plan"
    description = (
        "Submit the implementation plan. Ends the planning run; "
        "the plan is executed after the user approves it."
    )
    input_model = CreatePlanInput
    allowed_modes = frozenset({AgentMode.PLANNING})

    def execute(self, params: CreatePlanInput, workspace, tool_call_id):
        return ToolOutcome(
            result=tool_success(
                tool_call_id,
                f"Plan submitted ({params.estimated_iterations} estimated iterations, "
                f"{len(params.key_files)} key files)",
            ),
            plan=params,
        )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

ALL_TOOLS: tuple[AgentTool, ...] = (
    WriteFileTool(),
    ReadFileTool(),
    EditFileTool(),
    ListDirectoryTool(),
    RunCommandTool(),
    GlobSearchTool(),
    GrepSearchTool(),
    TodoWriteTool(),
    LaunchSubAgentTool(),
    SignalCompletionTool(),
    CreatePlanTool(),
)

TOOLS_BY_NAME: dict[str, AgentTool] = {tool.name: tool for tool in ALL_TOOLS}


def tools_for_mode(
    mode: AgentMode, names: Optional[Sequence[str] | frozenset[str]] = None
) -> list[AgentTool]:
    """Tools visible in *mode*, optionally restricted to *names*."""
    return [
        tool
        for tool in ALL_TOOLS
        if mode in tool.allowed_modes and (names is None or tool.name in names)
    ]


def summarize_tool_input(name: str, tool_input: dict, limit: int = 120) -> str:
    """Short human-readable summary of a tool input for progress events."""
    for key in ("path", "command", "pattern", "summary", "instruction"):
        value = tool_input.get(key) if isinstance(tool_input, dict) else None
        if isinstance(value, str) and value:
            text = value
            break
    else:
        text = json.dumps(tool_input, default=str)
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


def normalize_tool_name(name: str) -> str:
    """Strip a namespace prefix some models add, e.g. 'default_api:write_file'."""
    return name.rsplit(":", 1)[-1].strip()


def _format_validation_error(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "input"
        problems.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(problems)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class ToolExecutor:
    """Dispatches tool calls for one run.

    Every failure becomes an error ToolResult: unknown tool, tool not
    permitted in the run's mode, invalid input, timeout, or an exception
    from the workspace. Only cancellation propagates.
    """

    def __init__(
        self,
        workspace: WorkspaceBackend,
        tools: Optional[Sequence[AgentTool]] = None,
        default_timeout: float = DEFAULT_TOOL_TIMEOUT,
        sub_agent_launcher: Optional[SubAgentLauncher] = None,
    ):
        """Initialize the executor.

        Args:
            workspace: Workspace the tools operate on
            tools: Tools available to this run (defaults to the full catalog)
            default_timeout: Per-call timeout in seconds for tools without their own
            sub_agent_launcher: Coroutine function backing launch_sub_agent
        """
        self.workspace = workspace
        self.tools: dict[str, AgentTool] = {
            tool.name: tool for tool in (tools if tools is not None else ALL_TOOLS)
        }
        self.default_timeout = default_timeout
        self.sub_agent_launcher = sub_agent_launcher

    async def dispatch(self, tool_call: ToolCall, state: RunState) -> ToolOutcome:
        """Execute one tool call.

        Args:
            tool_call: Call requested by the model
            state: Current run state (read only)

        Returns:
            ToolOutcome; never raises except for cancellation
        """
        call_id = tool_call.id
        name = normalize_tool_name(tool_call.name)
        tool = self.tools.get(name)
        if tool is None:
            if name in TOOLS_BY_NAME:
                message = f"Tool '{name}' is not available in this run"
            else:
                message = f"Unknown tool: {tool_call.name}"
            return ToolOutcome(result=tool_error(call_id, message))

        if state.mode not in tool.allowed_modes:
            return ToolOutcome(
                result=tool_error(
                    call_id,
                    f"Tool '{tool.name}' not permitted in {state.mode.value} mode",
                )
            )

        try:
            params = tool.parse(tool_call.input)
        except ValidationError as exc:
            return ToolOutcome(
                result=tool_error(
                    call_id, f"Invalid input for {tool.name}: {_format_validation_error(exc)}"
                )
            )

        ctx = ToolContext(
            workspace=self.workspace,
            mode=state.mode,
            launch_sub_agent=self.sub_agent_launcher,
        )
        timeout = tool.timeout_for(params, self.default_timeout)
        target = tool.target_path(params)
        existed = False
        try:
            if target is not None and timeout is not None:
                existed = await asyncio.to_thread(self.workspace.file_exists, target)
            return await asyncio.wait_for(tool.run(params, ctx, call_id), timeout)
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", tool.name, timeout)
            message = f"Tool {tool.name} timed out after {timeout:g} seconds"
            if target is None:
                return ToolOutcome(result=tool_error(call_id, message))
            # The worker thread keeps running, so the write may still land
            return ToolOutcome(
                result=tool_error(
                    call_id, f"{message}; {target} may have been written. Read it before retrying"
                ),
                written_path=target,
                existed=existed,
            )
        except WorkspaceError as exc:
            return ToolOutcome(result=tool_error(call_id, str(exc)))
        except Exception as exc:
            logger.warning("Tool %s raised %s: %s", tool.name, type(exc).__name__, exc)
            return ToolOutcome(result=tool_error(call_id, f"Tool execution error: {exc}"))
