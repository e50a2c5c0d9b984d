"""Base LLM adapter interface.

Defines the protocol that all LLM providers must implement, along with the
message, tool call and response structures exchanged with the agent loop.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Purpose(str, Enum):
    """Purpose of an LLM call, used for model selection."""

    PLANNING = "planning"  # Read-only analysis, plan authoring
    EXECUTION = "execution"  # Tool-driven task execution
    GENERATION = "generation"  # Narrow sub-agent work, summaries


DEFAULT_PLANNING_MODEL = "claude-sonnet-4-5"
DEFAULT_EXECUTION_MODEL = "claude-sonnet-4-5"
DEFAULT_GENERATION_MODEL = "claude-haiku-4-5"


class MalformedResponseError(Exception):
    """Raised when a provider returns a response that cannot be interpreted.

    The agent loop treats this as fatal: retrying an unparseable response
    cannot make progress.
    """


@dataclass
class ModelSelector:
    """Purpose-based model selection.

    Model names can be overridden via environment variables:
    - TASKPILOT_PLANNING_MODEL
    - TASKPILOT_EXECUTION_MODEL
    - TASKPILOT_GENERATION_MODEL
    """

    planning_model: str = ""
    execution_model: str = ""
    generation_model: str = ""

    def __post_init__(self):
        """Fill unset model names from environment or defaults."""
        self.planning_model = self.planning_model or os.getenv(
            "TASKPILOT_PLANNING_MODEL", DEFAULT_PLANNING_MODEL
        )
        self.execution_model = self.execution_model or os.getenv(
            "TASKPILOT_EXECUTION_MODEL", DEFAULT_EXECUTION_MODEL
        )
        self.generation_model = self.generation_model or os.getenv(
            "TASKPILOT_GENERATION_MODEL", DEFAULT_GENERATION_MODEL
        )

    def for_purpose(self, purpose: Purpose) -> str:
        """Get the model for a given purpose.

        Args:
            purpose: The purpose of the LLM call

        Returns:
            Model identifier string
        """
        if purpose == Purpose.PLANNING:
            return self.planning_model
        elif purpose == Purpose.GENERATION:
            return self.generation_model
        return self.execution_model


@dataclass
class ToolCall:
    """A tool call requested by the LLM.

    Attributes:
        id: Provider-issued identifier for this tool call
        name: Name of the tool to call
        input: Input arguments for the tool
    """

    id: str
    name: str
    input: dict


@dataclass
class ToolResult:
    """Result of executing a tool call.

    Attributes:
        tool_call_id: ID of the tool call this is responding to
        content: Human-readable result text
        is_error: Whether this result represents an error
    """

    tool_call_id: str
    content: str
    is_error: bool = False

    @property
    def success(self) -> bool:
        return not self.is_error


@dataclass
class LLMResponse:
    """Response from an LLM completion.

    Attributes:
        content: Text content of the response (may be empty with tool calls)
        tool_calls: Tool calls requested by the model, in order
        stop_reason: Why the model stopped generating
        model: Model that generated this response
        input_tokens: Number of input tokens used
        output_tokens: Number of output tokens generated
    """

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str = "end_turn"
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def has_tool_calls(self) -> bool:
        """Check if response contains tool calls."""
        return len(self.tool_calls) > 0


# ---------------------------------------------------------------------------
# Conversation messages
# ---------------------------------------------------------------------------


@dataclass
class TextBlock:
    text: str

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: dict

    @classmethod
    def from_call(cls, call: ToolCall) -> "ToolUseBlock":
        return cls(id=call.id, name=call.name, input=call.input)

    def to_dict(self) -> dict:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False

    @classmethod
    def from_result(cls, result: ToolResult) -> "ToolResultBlock":
        return cls(
            tool_use_id=result.tool_call_id,
            content=result.content,
            is_error=result.is_error,
        )

    def to_dict(self) -> dict:
        block = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            block["is_error"] = True
        return block


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class Message:
    """A message in a conversation.

    Attributes:
        role: Message role ("user", "assistant", "system")
        content: Plain text or an ordered list of content blocks
    """

    role: str
    content: Union[str, list[ContentBlock]]

    @classmethod
    def user(cls, content: Union[str, list[ContentBlock]]) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: Union[str, list[ContentBlock]]) -> "Message":
        return cls(role="assistant", content=content)

    @property
    def blocks(self) -> list[ContentBlock]:
        """Content as a list of blocks (plain text becomes one TextBlock)."""
        if isinstance(self.content, str):
            return [TextBlock(self.content)] if self.content else []
        return list(self.content)

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "\n".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    def to_dict(self) -> dict:
        """Convert to dict format for API calls."""
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [b.to_dict() for b in self.content]}


@dataclass
class Tool:
    """Definition of a tool the LLM can use.

    Attributes:
        name: Tool name
        description: What the tool does
        input_schema: JSON schema for tool input
    """

    name: str
    description: str
    input_schema: dict


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    Implementations must provide complete(). Model selection is handled via
    the purpose parameter. Transient failures (network, rate limits) should
    propagate as ordinary exceptions; responses that cannot be interpreted
    must raise MalformedResponseError.
    """

    def __init__(self, model_selector: Optional[ModelSelector] = None):
        """Initialize the provider.

        Args:
            model_selector: Custom model selector (uses defaults if None)
        """
        self.model_selector = model_selector or ModelSelector()

    @abstractmethod
    def complete(
        self,
        messages: list[dict],
        purpose: Purpose = Purpose.EXECUTION,
        tools: Optional[list[Tool]] = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
        system: Optional[str] = None,
    ) -> LLMResponse:
        """Generate a completion.

        Args:
            messages: Conversation messages (Message.to_dict() format)
            purpose: Purpose of call (for model selection)
            tools: Available tools for the model to use
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            system: System prompt

        Returns:
            LLMResponse with content and/or tool calls
        """
        pass

    def get_model(self, purpose: Purpose) -> str:
        """Get the model for a given purpose."""
        return self.model_selector.for_purpose(purpose)
