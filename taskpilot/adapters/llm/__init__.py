"""LLM adapter package.

Provides a unified interface for LLM providers with purpose-based model selection.

Usage:
    from taskpilot.adapters.llm import get_provider

    provider = get_provider("anthropic")
    response = provider.complete(
        messages=[{"role": "user", "content": "Hello"}],
        purpose=Purpose.PLANNING,
    )
"""

from typing import Optional

from taskpilot.adapters.llm.base import (
    ContentBlock,
    LLMProvider,
    LLMResponse,
    MalformedResponseError,
    Message,
    ModelSelector,
    Purpose,
    TextBlock,
    Tool,
    ToolCall,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
)
from taskpilot.adapters.llm.anthropic import AnthropicProvider
from taskpilot.adapters.llm.mock import MockCall, MockProvider

__all__ = [
    "ContentBlock",
    "LLMProvider",
    "LLMResponse",
    "MalformedResponseError",
    "Message",
    "ModelSelector",
    "Purpose",
    "TextBlock",
    "Tool",
    "ToolCall",
    "ToolResult",
    "ToolResultBlock",
    "ToolUseBlock",
    "AnthropicProvider",
    "MockCall",
    "MockProvider",
    "get_provider",
]


def get_provider(provider_type: str = "anthropic", api_key: Optional[str] = None) -> LLMProvider:
    """Get a configured LLM provider.

    Args:
        provider_type: Provider type ("anthropic" or "mock")
        api_key: API key for the Anthropic provider (defaults to ANTHROPIC_API_KEY)

    Returns:
        Configured LLMProvider instance

    Raises:
        ValueError: If provider type is unknown
    """
    if provider_type == "anthropic":
        return AnthropicProvider(api_key=api_key)
    elif provider_type == "mock":
        return MockProvider()
    else:
        raise ValueError(f"Unknown provider type: {provider_type}")
