"""Scripted LLM provider for tests and offline runs.

A MockProvider plays back a script, one step per ``complete()`` call. A
step is a canned LLMResponse, an exception to raise (a transient provider
failure), or a handler that builds the response from the recorded call.
Once the script runs out, the fallback handler answers if one is set,
otherwise the default text.

Every call is recorded as a MockCall so tests can check what the loop
offered the model: tools, system prompt, purpose and history.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Union

from taskpilot.adapters.llm.base import (
    LLMProvider,
    LLMResponse,
    ModelSelector,
    Purpose,
    Tool,
    ToolCall,
)


@dataclass
class MockCall:
    """One recorded ``complete()`` call."""

    messages: list[dict]
    purpose: Purpose
    tools: Optional[list[Tool]]
    system: Optional[str]
    model: str
    max_tokens: int
    temperature: float

    @property
    def tool_names(self) -> set[str]:
        return {tool.name for tool in self.tools or []}

    @property
    def last_message(self) -> Optional[dict]:
        return self.messages[-1] if self.messages else None


ResponseHandler = Callable[[MockCall], LLMResponse]
ScriptStep = Union[LLMResponse, BaseException, ResponseHandler]


class MockProvider(LLMProvider):
    """Provider that replays a script instead of calling a model.

    Attributes:
        calls: Every call received, in order
        script: Steps not yet played
    """

    def __init__(
        self,
        default_response: str = "Mock response",
        model_selector: Optional[ModelSelector] = None,
    ):
        super().__init__(model_selector)
        self.default_response = default_response
        self.calls: list[MockCall] = []
        self.script: list[ScriptStep] = []
        self.fallback: Optional[ResponseHandler] = None

    # ------------------------------------------------------------------
    # Scripting
    # ------------------------------------------------------------------

    def add_response(self, response: LLMResponse) -> None:
        self.script.append(response)

    def add_text_response(self, content: str, input_tokens: int = 0, output_tokens: int = 0) -> None:
        """Queue a free-text reply with no tool calls."""
        self.script.append(
            LLMResponse(content=content, input_tokens=input_tokens, output_tokens=output_tokens)
        )

    def add_tool_response(
        self,
        tool_calls: list[ToolCall],
        content: str = "",
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        """Queue one batch of tool calls, optionally with accompanying text."""
        self.script.append(
            LLMResponse(
                content=content,
                tool_calls=list(tool_calls),
                stop_reason="tool_use",
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )
        )

    def add_exception(self, exc: BaseException) -> None:
        """Queue a failure; the call that reaches it raises *exc*."""
        self.script.append(exc)

    def add_handler(self, handler: ResponseHandler) -> None:
        """Queue a one-shot handler that builds the reply from the call."""
        self.script.append(handler)

    def set_response_handler(self, handler: Optional[ResponseHandler]) -> None:
        """Answer every call after the script runs out with *handler*."""
        self.fallback = handler

    @property
    def pending(self) -> int:
        """Scripted steps not yet played."""
        return len(self.script)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    # ------------------------------------------------------------------
    # LLMProvider
    # ------------------------------------------------------------------

    def complete(
        self,
        messages: list[dict],
        purpose: Purpose = Purpose.EXECUTION,
        tools: Optional[list[Tool]] = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
        system: Optional[str] = None,
    ) -> LLMResponse:
        call = MockCall(
            messages=messages,
            purpose=purpose,
            tools=tools,
            system=system,
            model=self.get_model(purpose),
            max_tokens=max_tokens,
            temperature=temperature,
        )
        self.calls.append(call)

        if self.script:
            step = self.script.pop(0)
            if isinstance(step, BaseException):
                raise step
            if isinstance(step, LLMResponse):
                return step
            return step(call)

        if self.fallback is not None:
            return self.fallback(call)
        return LLMResponse(content=self.default_response, model=call.model)
