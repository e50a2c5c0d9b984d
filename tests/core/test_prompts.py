"""Tests for system prompt assembly."""

import pytest

from taskpilot.core.context import ProjectContext
from taskpilot.core.modes import AgentMode
from taskpilot.core.prompts import (
    BASE_INSTRUCTIONS,
    PromptBuilder,
    ToolMaskViolation,
    format_project_context,
)
from taskpilot.core.tools import tools_for_mode


def _definitions(mode: AgentMode):
    return [t.definition() for t in tools_for_mode(mode)]


@pytest.fixture
def builder() -> PromptBuilder:
    return PromptBuilder()


class TestPromptLayers:
    """Tests for the three prompt layers."""

    def test_fast_prompt(self, builder):
        prompt = builder.build(AgentMode.FAST, _definitions(AgentMode.FAST))
        assert prompt.startswith(BASE_INSTRUCTIONS)
        assert "## Mode: fast" in prompt
        assert "- signal_completion (ends the session)" in prompt
        assert "create_plan" not in prompt
        assert "## Project Context" not in prompt

    def test_planning_prompt_lists_only_visible_tools(self, builder):
        prompt = builder.build(AgentMode.PLANNING, _definitions(AgentMode.PLANNING))
        tools_section = prompt.split("## Available Tools")[1]
        assert "- create_plan (ends the session)" in tools_section
        assert "- write_file" not in tools_section
        assert "- run_command" not in tools_section

    def test_project_context_is_advisory(self, builder):
        context = ProjectContext(name="shop", description="Online store", technology="Django")
        prompt = builder.build(AgentMode.FAST, _definitions(AgentMode.FAST), project_context=context)
        assert "- Name: shop" in prompt
        assert "trust the files" in prompt
        assert prompt.index("## Project Context") < prompt.index("## Mode: fast")

    def test_executing_includes_plan(self, builder):
        prompt = builder.build(
            AgentMode.EXECUTING, _definitions(AgentMode.EXECUTING), plan_text="  1. Do it\n"
        )
        assert prompt.endswith("## Approved Plan\n\n1. Do it")

    def test_executing_requires_plan(self, builder):
        with pytest.raises(ValueError, match="approved plan"):
            builder.build(AgentMode.EXECUTING, _definitions(AgentMode.EXECUTING), plan_text="  ")

    def test_role_instructions_replace_base(self, builder):
        prompt = builder.build(
            AgentMode.FAST, _definitions(AgentMode.FAST), role_instructions="You are a helper."
        )
        assert prompt.startswith("You are a helper.")
        assert BASE_INSTRUCTIONS not in prompt


class TestToolMask:
    def test_forbidden_tool_rejected(self, builder):
        with pytest.raises(ToolMaskViolation) as exc_info:
            builder.build(AgentMode.PLANNING, _definitions(AgentMode.FAST))
        assert "write_file" in exc_info.value.tools
        assert exc_info.value.mode == AgentMode.PLANNING


def test_format_project_context_defaults():
    text = format_project_context(ProjectContext(name="x"))
    assert "- Description: none" in text
    assert "- Industry: general" in text
    assert "- Technology: unspecified" in text
