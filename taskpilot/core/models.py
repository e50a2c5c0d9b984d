"""Shared data models for the agent core.

Types exchanged between the tool layer, the loop and the sub-agent
orchestrator live here so those modules do not import each other.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from taskpilot.core.state import TerminalReason


class SubAgentKind(str, Enum):
    """Kinds of sub-agent a run may launch."""

    EXPLORE = "explore"  # Read-only investigation of the codebase
    PLAN = "plan"  # Produce an implementation plan
    GENERAL = "general"  # Multi-step work with the full tool set
    BASH = "bash"  # Shell-focused work (builds, installs, test runs)


class SubAgentError(Exception):
    """Raised when a sub-agent cannot be launched."""


@dataclass
class SubAgentRequest:
    kind: SubAgentKind
    instruction: str
    description: Optional[str] = None


@dataclass
class SubAgentResult:
    """Outcome of a sub-agent run as reported to its parent.

    Attributes:
        kind: Kind of sub-agent that ran
        summary: Completion summary, plan text, or a note on why it stopped
        files_created: Files the sub-agent created
        files_modified: Files the sub-agent modified
        iterations_used: LLM round-trips the sub-agent consumed
        terminal_reason: Why the sub-agent stopped
        input_tokens: Prompt tokens the sub-agent consumed
        output_tokens: Completion tokens the sub-agent generated
    """

    kind: SubAgentKind
    summary: str
    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    iterations_used: int = 0
    terminal_reason: Optional[TerminalReason] = None
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def completed(self) -> bool:
        return self.terminal_reason == TerminalReason.COMPLETED

    @property
    def files_touched(self) -> list[str]:
        return self.files_created + [p for p in self.files_modified if p not in self.files_created]

    def format(self) -> str:
        """Render the result as the single tool result the parent sees."""
        reason = self.terminal_reason.value if self.terminal_reason else "unknown"
        lines = [
            f"Sub-agent ({self.kind.value}) finished after {self.iterations_used} "
            f"iteration(s) [{reason}].",
            "",
            "Summary:",
            self.summary or "(no summary)",
        ]
        if self.files_touched:
            lines += ["", "Files touched: " + ", ".join(self.files_touched)]
        return "\n".join(lines)


class TodoItem(BaseModel):
    """One entry of the model-maintained todo list."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    content: str = Field(min_length=1, description="What needs to be done")
    status: Literal["pending", "in_progress", "completed"] = Field(
        default="pending", description="Current status of the item"
    )
