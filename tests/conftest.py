"""Shared pytest fixtures for TaskPilot tests."""

from pathlib import Path
from typing import Optional

import pytest

from taskpilot.adapters.llm.base import ToolCall
from taskpilot.adapters.llm.mock import MockProvider
from taskpilot.adapters.workspace.memory import InMemoryWorkspace
from taskpilot.core.config import AgentSettings

_call_counter = 0


def make_call(name: str, tool_input: Optional[dict] = None, call_id: Optional[str] = None) -> ToolCall:
    """Build a ToolCall with a unique id.

    Shared helper; can be imported by any test module.
    """
    global _call_counter
    _call_counter += 1
    return ToolCall(id=call_id or f"call-{_call_counter}", name=name, input=tool_input or {})


def make_settings(**overrides) -> AgentSettings:
    """AgentSettings isolated from .env files, with fast test timeouts."""
    values = {
        "provider": "mock",
        "llm_timeout_seconds": 5.0,
        "tool_timeout_seconds": 5.0,
        "max_wall_clock_seconds": 30.0,
    }
    values.update(overrides)
    return AgentSettings(_env_file=None, **values)


@pytest.fixture
def provider() -> MockProvider:
    """Create a MockProvider."""
    return MockProvider()


@pytest.fixture
def memory_workspace() -> InMemoryWorkspace:
    """Empty in-memory workspace."""
    return InMemoryWorkspace()


@pytest.fixture
def settings() -> AgentSettings:
    return make_settings()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A small project on disk."""
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("def hello():\n    return 'hi'\n")
    (tmp_path / "README.md").write_text("# Sample\n")
    return tmp_path
