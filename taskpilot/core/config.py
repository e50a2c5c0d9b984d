"""Configuration for TaskPilot.

Settings come from environment variables prefixed with ``TASKPILOT_``
(e.g. ``TASKPILOT_FAST_MAX_ITERATIONS=30``) and from a ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskpilot.core.modes import AgentMode, profile_for


class AgentSettings(BaseSettings):
    """Agent runtime settings loaded from environment variables."""

    # Provider
    provider: str = "anthropic"
    anthropic_api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    max_tokens: int = Field(8000, gt=0)
    temperature: float = Field(0.1, ge=0.0, le=1.0)

    # Budgets
    fast_max_iterations: int = Field(profile_for(AgentMode.FAST).default_max_iterations, gt=0)
    planning_max_iterations: int = Field(profile_for(AgentMode.PLANNING).default_max_iterations, gt=0)
    executing_max_iterations: int = Field(profile_for(AgentMode.EXECUTING).default_max_iterations, gt=0)
    max_wall_clock_seconds: float = Field(600.0, gt=0)

    # Timeouts
    tool_timeout_seconds: float = Field(60.0, gt=0)
    llm_timeout_seconds: float = Field(120.0, gt=0)

    # Recovery
    same_error_threshold: int = Field(3, ge=1)
    repeated_call_threshold: int = Field(3, ge=1)
    text_completion_fallback: bool = True

    # Sub-agents
    sub_agent_max_iterations: int = Field(20, gt=0)

    # Streaming and bookkeeping
    event_queue_size: int = Field(1000, ge=0)
    run_ttl_seconds: float = Field(300.0, gt=0)
    plan_ttl_seconds: float = Field(3600.0, gt=0)

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="TASKPILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got: {v}")
        return v_upper

    def max_iterations_for(self, mode: AgentMode) -> int:
        """Default iteration budget for *mode*."""
        if mode == AgentMode.PLANNING:
            return self.planning_max_iterations
        if mode == AgentMode.EXECUTING:
            return self.executing_max_iterations
        return self.fast_max_iterations


def load_environment(env_file: str = ".env") -> None:
    """Load environment variables from a .env file if it exists.

    Args:
        env_file: Path to .env file (default: .env in current directory)
    """
    env_path = Path(env_file)
    if env_path.exists():
        load_dotenv(env_path)


@lru_cache(maxsize=1)
def get_settings() -> AgentSettings:
    """Process-wide settings, loaded once."""
    load_environment()
    return AgentSettings()
