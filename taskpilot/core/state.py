"""Run state and run status transitions.

RunState holds everything the loop accumulates during one run. It is
created at run start, mutated only by the LoopController and discarded
when the run ends.

Statuses:
- IDLE: Created, not started
- RUNNING: Iterating
- COMPLETED: Completion tool (or plan submission) accepted
- MAX_ITERATIONS_REACHED: Iteration budget exhausted
- TIMED_OUT: Wall-clock budget exhausted
- FATAL_ERROR: Unrecoverable error
- CANCELLED: Cancelled by the caller
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Set

from taskpilot.core.modes import AgentMode


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    TIMED_OUT = "timed_out"
    FATAL_ERROR = "fatal_error"
    CANCELLED = "cancelled"


class TerminalReason(str, Enum):
    """Why a run stopped."""

    COMPLETED = "completed"
    MAX_ITERATIONS = "max_iterations"
    TIMEOUT = "timeout"
    FATAL_ERROR = "fatal_error"
    CANCELLED = "cancelled"


TERMINAL_STATUS: dict[TerminalReason, RunStatus] = {
    TerminalReason.COMPLETED: RunStatus.COMPLETED,
    TerminalReason.MAX_ITERATIONS: RunStatus.MAX_ITERATIONS_REACHED,
    TerminalReason.TIMEOUT: RunStatus.TIMED_OUT,
    TerminalReason.FATAL_ERROR: RunStatus.FATAL_ERROR,
    TerminalReason.CANCELLED: RunStatus.CANCELLED,
}

_TERMINAL = set(TERMINAL_STATUS.values())

# Allowed status transitions (from -> set of allowed targets)
ALLOWED_TRANSITIONS: dict[RunStatus, Set[RunStatus]] = {
    RunStatus.IDLE: {RunStatus.RUNNING, RunStatus.FATAL_ERROR, RunStatus.CANCELLED},
    RunStatus.RUNNING: set(_TERMINAL),
    RunStatus.COMPLETED: set(),
    RunStatus.MAX_ITERATIONS_REACHED: set(),
    RunStatus.TIMED_OUT: set(),
    RunStatus.FATAL_ERROR: set(),
    RunStatus.CANCELLED: set(),
}


class InvalidTransitionError(Exception):
    """Raised when an invalid status transition is attempted."""

    def __init__(self, current: RunStatus, target: RunStatus):
        self.current = current
        self.target = target
        allowed = ALLOWED_TRANSITIONS.get(current, set())
        allowed_str = ", ".join(sorted(s.value for s in allowed)) if allowed else "none"
        super().__init__(
            f"Invalid transition: {current.value} -> {target.value}. "
            f"Allowed transitions from {current.value}: {allowed_str}"
        )


def can_transition(current: RunStatus, target: RunStatus) -> bool:
    """Check if a status transition is allowed."""
    return target in ALLOWED_TRANSITIONS.get(current, set())


def validate_transition(current: RunStatus, target: RunStatus) -> None:
    """Validate a status transition, raising if invalid.

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


@dataclass
class RunState:
    """State of one agent run.

    Attributes:
        run_id: Unique run identifier
        mode: Mode the run executes in
        max_iterations: Iteration budget of the run
        iteration: Completed LLM round-trips
        status: Current state machine status
        files_created: Paths written that did not exist before the run wrote them
        files_modified: Existing paths the run changed
        commands_run: Shell commands executed, in order
        last_error_signature: Normalized message of the latest tool error
        same_error_count: Consecutive occurrences of that error
        last_call_signature: Signature of the latest tool call
        same_call_count: Consecutive identical tool calls
        completed: Whether the run finished through its completion signal
        terminal_reason: Why the run stopped (None while running)
        plan_text: Plan submitted in planning mode, or the plan being executed
        summary: Completion summary supplied by the model
        error: Message of the fatal error, if any
        todos: Latest todo list written by the model
        input_tokens: Prompt tokens consumed, sub-agents included
        output_tokens: Completion tokens generated, sub-agents included
    """

    run_id: str
    mode: AgentMode
    max_iterations: int
    iteration: int = 0
    status: RunStatus = RunStatus.IDLE
    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    commands_run: list[str] = field(default_factory=list)
    last_error_signature: Optional[str] = None
    same_error_count: int = 0
    last_call_signature: Optional[str] = None
    same_call_count: int = 0
    completed: bool = False
    terminal_reason: Optional[TerminalReason] = None
    plan_text: Optional[str] = None
    summary: Optional[str] = None
    error: Optional[str] = None
    todos: list[dict] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def remaining_iterations(self) -> int:
        return max(self.max_iterations - self.iteration, 0)

    def transition(self, target: RunStatus) -> None:
        """Move to *target*, validating against ALLOWED_TRANSITIONS."""
        validate_transition(self.status, target)
        self.status = target
        if target == RunStatus.RUNNING:
            self.started_at = _utc_now()

    def finish(self, reason: TerminalReason, error: Optional[str] = None) -> None:
        """Enter the terminal status for *reason*."""
        self.transition(TERMINAL_STATUS[reason])
        self.terminal_reason = reason
        self.completed = reason == TerminalReason.COMPLETED
        if error is not None:
            self.error = error
        self.finished_at = _utc_now()

    def record_write(self, path: str, existed: bool) -> None:
        """Record a file write as a creation or a modification.

        A file created earlier in this run stays in files_created when it is
        written again.
        """
        if path in self.files_created or path in self.files_modified:
            return
        if existed:
            self.files_modified.append(path)
        else:
            self.files_created.append(path)

    def record_command(self, command: str) -> None:
        self.commands_run.append(command)

    def record_usage(self, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "mode": self.mode.value,
            "status": self.status.value,
            "iteration": self.iteration,
            "max_iterations": self.max_iterations,
            "files_created": list(self.files_created),
            "files_modified": list(self.files_modified),
            "commands_run": list(self.commands_run),
            "last_error_signature": self.last_error_signature,
            "same_error_count": self.same_error_count,
            "completed": self.completed,
            "terminal_reason": self.terminal_reason.value if self.terminal_reason else None,
            "plan_text": self.plan_text,
            "summary": self.summary,
            "error": self.error,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
