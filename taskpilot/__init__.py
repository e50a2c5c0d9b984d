"""
TaskPilot: autonomous coding agent loop

Drives an LLM through a bounded loop of tool calls against a project
workspace until the task is signalled complete or a safety limit is hit.
"""

__version__ = "0.1.0"

from taskpilot.core.loop import LoopController, RunBudget
from taskpilot.core.modes import AgentMode
from taskpilot.core.runtime import AgentRuntime

__all__ = ["AgentMode", "AgentRuntime", "LoopController", "RunBudget"]
