"""Tests for AgentSettings."""

import pytest
from pydantic import ValidationError

from taskpilot.core.config import AgentSettings
from taskpilot.core.modes import AgentMode
from tests.conftest import make_settings


class TestAgentSettings:
    def test_defaults(self):
        settings = AgentSettings(_env_file=None)
        assert settings.provider == "anthropic"
        assert settings.fast_max_iterations == 50
        assert settings.planning_max_iterations == 10
        assert settings.same_error_threshold == 3
        assert settings.text_completion_fallback is True
        assert settings.log_level == "INFO"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TASKPILOT_FAST_MAX_ITERATIONS", "7")
        monkeypatch.setenv("TASKPILOT_TEXT_COMPLETION_FALLBACK", "false")
        settings = AgentSettings(_env_file=None)
        assert settings.fast_max_iterations == 7
        assert settings.text_completion_fallback is False

    def test_api_key_from_unprefixed_env(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        assert AgentSettings(_env_file=None).anthropic_api_key == "sk-test"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("TASKPILOT_PROVIDER=mock\nTASKPILOT_LOG_LEVEL=debug\n")
        settings = AgentSettings(_env_file=str(env_file))
        assert settings.provider == "mock"
        assert settings.log_level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            make_settings(log_level="LOUD")

    @pytest.mark.parametrize("field", ["fast_max_iterations", "max_wall_clock_seconds"])
    def test_budgets_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            make_settings(**{field: 0})

    def test_max_iterations_for(self):
        settings = make_settings(fast_max_iterations=1, planning_max_iterations=2, executing_max_iterations=3)
        assert settings.max_iterations_for(AgentMode.FAST) == 1
        assert settings.max_iterations_for(AgentMode.PLANNING) == 2
        assert settings.max_iterations_for(AgentMode.EXECUTING) == 3
