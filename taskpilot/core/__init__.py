"""Core components of the TaskPilot agent loop."""

from taskpilot.core.loop import LoopController, RunBudget
from taskpilot.core.modes import AgentMode
from taskpilot.core.state import RunState, RunStatus, TerminalReason

__all__ = ["AgentMode", "LoopController", "RunBudget", "RunState", "RunStatus", "TerminalReason"]
