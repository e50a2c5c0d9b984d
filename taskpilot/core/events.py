"""Typed progress events.

Every event carries its type, the run it belongs to and a UTC timestamp.
to_wire() produces the camelCase dict sent to transports (SSE, CLI).

Ordering: all events of iteration N are emitted before any event of
iteration N+1, and DoneEvent is always the last event of a run.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    START = "start"
    ITERATION_START = "iteration_start"
    THINKING = "thinking"
    TOOL_START = "tool_start"
    TOOL_COMPLETE = "tool_complete"
    TOOL_ERROR = "tool_error"
    MESSAGE = "message"
    ERROR_PIVOT = "error_pivot"
    TODO_UPDATE = "todo_update"
    SUB_AGENT_START = "sub_agent_start"
    SUB_AGENT_COMPLETE = "sub_agent_complete"
    PLAN_READY = "plan_ready"
    COMPLETE = "complete"
    MAX_ITERATIONS = "max_iterations"
    TIMEOUT = "timeout"
    FATAL_ERROR = "fatal_error"
    CANCELLED = "cancelled"
    DONE = "done"


class AgentEvent(BaseModel):
    """Base class of all progress events."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: EventType
    run_id: str
    timestamp: datetime = Field(default_factory=_utc_now)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class StartEvent(AgentEvent):
    type: EventType = EventType.START
    mode: str
    max_iterations: int
    has_context: bool = False
    parent_run_id: Optional[str] = None


class IterationStartEvent(AgentEvent):
    type: EventType = EventType.ITERATION_START
    iteration: int
    max_iterations: int


class ThinkingEvent(AgentEvent):
    type: EventType = EventType.THINKING
    iteration: int


class ToolStartEvent(AgentEvent):
    type: EventType = EventType.TOOL_START
    tool: str
    tool_call_id: str
    input_summary: str


class ToolCompleteEvent(AgentEvent):
    type: EventType = EventType.TOOL_COMPLETE
    tool: str
    tool_call_id: str
    success: bool = True
    output_preview: str = ""


class ToolErrorEvent(AgentEvent):
    type: EventType = EventType.TOOL_ERROR
    tool: str
    tool_call_id: str
    error: str


class MessageEvent(AgentEvent):
    type: EventType = EventType.MESSAGE
    text: str


class ErrorPivotEvent(AgentEvent):
    type: EventType = EventType.ERROR_PIVOT
    count: int
    directive: str


class TodoUpdateEvent(AgentEvent):
    type: EventType = EventType.TODO_UPDATE
    todos: list[dict]


class SubAgentStartEvent(AgentEvent):
    type: EventType = EventType.SUB_AGENT_START
    kind: str
    description: Optional[str] = None
    sub_run_id: str
    max_iterations: int


class SubAgentCompleteEvent(AgentEvent):
    type: EventType = EventType.SUB_AGENT_COMPLETE
    kind: str
    sub_run_id: str
    summary: str
    iterations_used: int
    terminal_reason: Optional[str] = None


class PlanReadyEvent(AgentEvent):
    type: EventType = EventType.PLAN_READY
    plan_content: str
    estimated_iterations: int
    key_files: list[str] = Field(default_factory=list)


class CompleteEvent(AgentEvent):
    type: EventType = EventType.COMPLETE
    summary: str
    files_created: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    iterations: int
    input_tokens: int = 0
    output_tokens: int = 0


class MaxIterationsEvent(AgentEvent):
    type: EventType = EventType.MAX_ITERATIONS
    iterations: int
    files_created: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0


class TimeoutEvent(AgentEvent):
    type: EventType = EventType.TIMEOUT
    elapsed_seconds: float
    iterations: int
    input_tokens: int = 0
    output_tokens: int = 0


class FatalErrorEvent(AgentEvent):
    type: EventType = EventType.FATAL_ERROR
    error: str


class CancelledEvent(AgentEvent):
    type: EventType = EventType.CANCELLED
    iterations: int


class DoneEvent(AgentEvent):
    type: EventType = EventType.DONE
    terminal_reason: Optional[str] = None
