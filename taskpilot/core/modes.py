"""Agent modes.

A mode decides which tools the model sees, which tool ends the run, and
which model purpose is used. Per-mode data lives in MODE_PROFILES; the
table must cover every AgentMode member.
"""

from dataclasses import dataclass
from enum import Enum

from taskpilot.adapters.llm.base import Purpose


class AgentMode(str, Enum):
    """Execution mode of a run."""

    FAST = "fast"  # Execute immediately, self-correcting
    PLANNING = "planning"  # Read-only; produce a plan
    EXECUTING = "executing"  # Follow an approved plan


@dataclass(frozen=True)
class ModeProfile:
    """Static per-mode settings.

    Attributes:
        terminal_tool: Tool whose successful call completes the run
        default_max_iterations: Iteration budget when none is configured
        purpose: Model selection purpose for LLM calls
    """

    terminal_tool: str
    default_max_iterations: int
    purpose: Purpose


MODE_PROFILES: dict[AgentMode, ModeProfile] = {
    AgentMode.FAST: ModeProfile(
        terminal_tool="signal_completion",
        default_max_iterations=50,
        purpose=Purpose.EXECUTION,
    ),
    AgentMode.PLANNING: ModeProfile(
        terminal_tool="create_plan",
        default_max_iterations=10,
        purpose=Purpose.PLANNING,
    ),
    AgentMode.EXECUTING: ModeProfile(
        terminal_tool="signal_completion",
        default_max_iterations=50,
        purpose=Purpose.EXECUTION,
    ),
}

_missing = set(AgentMode) - set(MODE_PROFILES)
if _missing:
    raise RuntimeError(f"MODE_PROFILES missing modes: {sorted(m.value for m in _missing)}")


def profile_for(mode: AgentMode) -> ModeProfile:
    """Get the static profile for a mode."""
    return MODE_PROFILES[mode]


def parse_mode(value: str) -> AgentMode:
    """Parse a string into an AgentMode.

    Accepts any case ("fast", "PLANNING").

    Raises:
        ValueError: If the string doesn't match any mode
    """
    try:
        return AgentMode(value.strip().lower())
    except ValueError:
        valid = ", ".join(m.value for m in AgentMode)
        raise ValueError(f"Invalid mode '{value}'. Valid modes: {valid}") from None
