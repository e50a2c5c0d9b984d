"""Anthropic LLM provider implementation.

Provides Claude model access via the Anthropic API.
"""

import os
from typing import Optional

from taskpilot.adapters.llm.base import (
    LLMProvider,
    LLMResponse,
    MalformedResponseError,
    ModelSelector,
    Purpose,
    Tool,
    ToolCall,
)


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider.

    Uses the Anthropic Python SDK to make API calls with tool use.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_selector: Optional[ModelSelector] = None,
    ):
        """Initialize the Anthropic provider.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            model_selector: Custom model selector

        Raises:
            ValueError: If no API key is available
        """
        super().__init__(model_selector)
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY not set. "
                "Set the environment variable or pass api_key parameter."
            )
        self._client = None

    @property
    def client(self):
        """Lazy-load the Anthropic client."""
        if self._client is None:
            from anthropic import Anthropic

            self._client = Anthropic(api_key=self.api_key)
        return self._client

    def complete(
        self,
        messages: list[dict],
        purpose: Purpose = Purpose.EXECUTION,
        tools: Optional[list[Tool]] = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
        system: Optional[str] = None,
    ) -> LLMResponse:
        """Generate a completion using Claude.

        Args:
            messages: Conversation messages
            purpose: Purpose of call (for model selection)
            tools: Available tools for the model to use
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            system: System prompt

        Returns:
            LLMResponse with content and/or tool calls

        Raises:
            MalformedResponseError: If the API response cannot be interpreted
        """
        system_parts = [system] if system else []
        kwargs = {
            "model": self.get_model(purpose),
            "max_tokens": max_tokens,
            "messages": self._convert_messages(messages, system_parts),
        }

        if temperature > 0:
            kwargs["temperature"] = temperature

        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        response = self.client.messages.create(**kwargs)
        return self._parse_response(response)

    def _convert_messages(
        self, messages: list[dict], system_parts: list[str]
    ) -> list[dict]:
        """Convert messages to Anthropic format.

        System-role messages are moved into the system prompt and consecutive
        messages of the same role are merged, since the API requires strictly
        alternating user/assistant turns.
        """
        converted: list[dict] = []
        for msg in messages:
            role = msg["role"]
            content = msg["content"]
            if role == "system":
                if isinstance(content, str) and content:
                    system_parts.append(content)
                continue

            blocks = _as_blocks(content)
            if not blocks:
                continue
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": blocks})
        return converted

    def _convert_tools(self, tools: list[Tool]) -> list[dict]:
        """Convert Tool objects to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in tools
        ]

    def _parse_response(self, response) -> LLMResponse:
        """Parse Anthropic response into LLMResponse."""
        blocks = getattr(response, "content", None)
        if blocks is None:
            raise MalformedResponseError("Response has no content blocks")

        content = ""
        tool_calls = []
        for block in blocks:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                content += block.text
            elif block_type == "tool_use":
                if not isinstance(block.input, dict):
                    raise MalformedResponseError(
                        f"Tool call {block.name} has non-object input"
                    )
                tool_calls.append(
                    ToolCall(id=block.id, name=block.name, input=block.input)
                )
            elif block_type in ("thinking", "redacted_thinking"):
                continue
            else:
                raise MalformedResponseError(f"Unknown content block type: {block_type}")

        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            stop_reason=response.stop_reason,
            model=response.model,
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
        )


def _as_blocks(content) -> list[dict]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return [dict(block) for block in content]
