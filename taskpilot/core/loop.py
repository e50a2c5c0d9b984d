"""Agent loop controller.

Drives one run: build the system prompt once, then iterate
LLM call -> dispatch tool calls in order -> observe -> emit events, until
the completion signal, a budget limit, cancellation, or a fatal error.

Error tolerance:
- Tool failures are data: they go back to the model as error results.
- Provider failures and unexpected dispatch failures become a
  ``[SYSTEM ERROR] ...`` user message and the loop continues.
- Unparseable provider responses and prompt construction errors are fatal.

This module is headless - no HTTP dependencies.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Optional

from taskpilot.adapters.llm.base import (
    LLMProvider,
    LLMResponse,
    MalformedResponseError,
    Message,
    Purpose,
    TextBlock,
    Tool,
    ToolCall,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
)
from taskpilot.adapters.workspace.base import WorkspaceBackend
from taskpilot.core.config import AgentSettings, get_settings
from taskpilot.core.context import ProjectContext
from taskpilot.core.error_tracker import ErrorTracker, RepeatedCallTracker
from taskpilot.core.events import (
    AgentEvent,
    CancelledEvent,
    CompleteEvent,
    DoneEvent,
    ErrorPivotEvent,
    FatalErrorEvent,
    IterationStartEvent,
    MaxIterationsEvent,
    MessageEvent,
    PlanReadyEvent,
    StartEvent,
    ThinkingEvent,
    TimeoutEvent,
    TodoUpdateEvent,
    ToolCompleteEvent,
    ToolErrorEvent,
    ToolStartEvent,
)
from taskpilot.core.models import SubAgentError, SubAgentRequest, SubAgentResult
from taskpilot.core.modes import AgentMode, profile_for
from taskpilot.core.prompts import PromptBuilder
from taskpilot.core.state import RunState, RunStatus, TerminalReason
from taskpilot.core.streaming import EventPublisher
from taskpilot.core.tools import (
    ALL_TOOLS,
    AgentTool,
    CreatePlanInput,
    LaunchSubAgentTool,
    SignalCompletionInput,
    SignalCompletionTool,
    ToolExecutor,
    ToolOutcome,
    summarize_tool_input,
)

if TYPE_CHECKING:
    from taskpilot.core.subagents import SubAgentOrchestrator

logger = logging.getLogger(__name__)

COMPLETION_MARKERS = ("TASK_COMPLETE", "<completion>")
SYSTEM_ERROR_MESSAGE = "[SYSTEM ERROR] {message}. Recover and continue."

_CONTINUE_NUDGE = "Continue with the task. Call {tool} when {condition}."
_NUDGE_CONDITIONS: dict[AgentMode, str] = {
    AgentMode.FAST: "the task is complete and verified",
    AgentMode.PLANNING: "your plan is ready",
    AgentMode.EXECUTING: "every step of the plan is done",
}

_PREVIEW_CHARS = 200


@dataclass(frozen=True)
class RunBudget:
    """Safety limits of a run.

    Attributes:
        max_iterations: Maximum LLM round-trips (must be > 0)
        max_wall_clock: Maximum total run time in seconds (must be > 0)
    """

    max_iterations: int
    max_wall_clock: float = 600.0

    def __post_init__(self):
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be > 0, got {self.max_iterations}")
        if self.max_wall_clock <= 0:
            raise ValueError(f"max_wall_clock must be > 0, got {self.max_wall_clock}")

    @classmethod
    def for_mode(cls, mode: AgentMode, settings: AgentSettings) -> "RunBudget":
        return cls(
            max_iterations=settings.max_iterations_for(mode),
            max_wall_clock=settings.max_wall_clock_seconds,
        )


class RunCancelled(Exception):
    """Raised inside the loop when a cancel request aborts a suspension point."""


@dataclass
class _Completion:
    summary: str
    plan: Optional[CreatePlanInput] = None
    declared: Optional[SignalCompletionInput] = None


class LoopController:
    """Runs the agent loop for one run.

    Attributes:
        state: RunState of the run (None before run() is called)
        messages: Conversation history sent to the model
        events: Every event emitted by this run, in order
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        workspace: WorkspaceBackend,
        *,
        settings: Optional[AgentSettings] = None,
        publisher: Optional[EventPublisher] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        sub_agents: Optional["SubAgentOrchestrator"] = None,
        tool_names: Optional[frozenset[str]] = None,
        role_instructions: Optional[str] = None,
        purpose: Optional[Purpose] = None,
        run_id: Optional[str] = None,
        parent_run_id: Optional[str] = None,
        depth: int = 0,
    ) -> None:
        """Initialize the controller.

        Args:
            llm_provider: Provider used for completions
            workspace: Workspace the tools act on
            settings: Agent settings (defaults to environment settings)
            publisher: Optional event publisher for streaming
            prompt_builder: Custom prompt builder
            sub_agents: Orchestrator backing launch_sub_agent (tool hidden if None)
            tool_names: Restrict the tool catalog to these names
            role_instructions: Replace the base prompt rules (sub-agents)
            purpose: Override the model purpose of the mode
            run_id: Run identifier (generated if omitted)
            parent_run_id: Run that launched this one, for sub-agents
            depth: Nesting depth (0 for top-level runs)
        """
        self.llm_provider = llm_provider
        self.workspace = workspace
        self.settings = settings or get_settings()
        self.publisher = publisher
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.sub_agents = sub_agents
        self.tool_names = tool_names
        self.role_instructions = role_instructions
        self.purpose = purpose
        self.run_id = run_id or str(uuid.uuid4())
        self.parent_run_id = parent_run_id
        self.depth = depth

        self.error_tracker = ErrorTracker(self.settings.same_error_threshold)
        self.call_tracker = RepeatedCallTracker(self.settings.repeated_call_threshold)

        self.state: Optional[RunState] = None
        self.messages: list[Message] = []
        self.events: list[AgentEvent] = []

        self._budget: Optional[RunBudget] = None
        self._started_at = 0.0
        self._cancel_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next suspension point."""
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started_at if self._started_at else 0.0

    @property
    def remaining_time(self) -> float:
        if self._budget is None:
            return 0.0
        return max(self._budget.max_wall_clock - self.elapsed, 0.0)

    async def run(
        self,
        instruction: str,
        mode: AgentMode = AgentMode.FAST,
        project_context: Optional[ProjectContext] = None,
        budget: Optional[RunBudget] = None,
        plan_text: Optional[str] = None,
    ) -> RunState:
        """Run the agent until a terminal state.

        Args:
            instruction: Natural-language task
            mode: Run mode
            project_context: Optional project context for the prompt
            budget: Safety limits (defaults from settings for the mode)
            plan_text: Approved plan, required in executing mode

        Returns:
            Final RunState; terminal_reason is always set
        """
        if self.state is not None:
            raise RuntimeError("A LoopController can only run once")

        budget = budget or RunBudget.for_mode(mode, self.settings)
        state = RunState(
            run_id=self.run_id,
            mode=mode,
            max_iterations=budget.max_iterations,
            plan_text=plan_text,
        )
        self.state = state
        self._budget = budget
        self._started_at = time.monotonic()

        state.transition(RunStatus.RUNNING)
        logger.info(
            "Run %s started (mode=%s, max_iterations=%d, depth=%d)",
            self.run_id,
            mode.value,
            budget.max_iterations,
            self.depth,
        )
        self.emit(
            StartEvent(
                run_id=self.run_id,
                mode=mode.value,
                max_iterations=budget.max_iterations,
                has_context=project_context is not None,
                parent_run_id=self.parent_run_id,
            )
        )

        try:
            await self._run_loop(state, instruction, project_context)
        except asyncio.CancelledError:
            if not state.is_terminal:
                self._finish(state, TerminalReason.CANCELLED)
            raise
        except Exception as exc:
            logger.exception("Run %s failed with a fatal error", self.run_id)
            if not state.is_terminal:
                self._finish(state, TerminalReason.FATAL_ERROR, error=f"{type(exc).__name__}: {exc}")
        finally:
            self.emit(
                DoneEvent(
                    run_id=self.run_id,
                    terminal_reason=state.terminal_reason.value if state.terminal_reason else None,
                )
            )
            if self.publisher is not None:
                self.publisher.complete_run(self.run_id)
            logger.info(
                "Run %s finished: %s after %d iteration(s)",
                self.run_id,
                state.terminal_reason.value if state.terminal_reason else "unknown",
                state.iteration,
            )

        return state

    def emit(self, event: AgentEvent) -> None:
        """Record an event and publish it without waiting for delivery."""
        self.events.append(event)
        if self.publisher is None:
            return
        try:
            self.publisher.publish(self.run_id, event)
        except Exception:
            logger.debug("Failed to publish %s event", event.type.value, exc_info=True)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _catalog(self) -> list[AgentTool]:
        tools = [t for t in ALL_TOOLS if self.tool_names is None or t.name in self.tool_names]
        if self.sub_agents is None:
            tools = [t for t in tools if t.name != LaunchSubAgentTool.name]
        return tools

    async def _run_loop(
        self,
        state: RunState,
        instruction: str,
        project_context: Optional[ProjectContext],
    ) -> None:
        mode = state.mode
        catalog = self._catalog()
        definitions = [t.definition() for t in catalog if mode in t.allowed_modes]
        system = self.prompt_builder.build(
            mode,
            definitions,
            project_context=project_context,
            plan_text=state.plan_text,
            role_instructions=self.role_instructions,
        )
        tools = [d.to_tool() for d in definitions]
        purpose = self.purpose or profile_for(mode).purpose

        executor = ToolExecutor(
            self.workspace,
            tools=catalog,
            default_timeout=self.settings.tool_timeout_seconds,
            sub_agent_launcher=self._launch_sub_agent if self.sub_agents is not None else None,
        )

        self.messages.append(Message.user(instruction))

        while not state.is_terminal:
            if self.remaining_time <= 0:
                self._finish(state, TerminalReason.TIMEOUT)
                break

            number = state.iteration + 1
            logger.debug("Run %s iteration %d/%d", self.run_id, number, state.max_iterations)
            self.emit(
                IterationStartEvent(
                    run_id=self.run_id, iteration=number, max_iterations=state.max_iterations
                )
            )
            self.emit(ThinkingEvent(run_id=self.run_id, iteration=number))

            completion: Optional[_Completion] = None
            try:
                response = await self._request_completion(system, tools, purpose)
                if response is not None:
                    state.record_usage(response.input_tokens, response.output_tokens)
                    completion = await self._handle_response(state, response, executor)
            except RunCancelled:
                self._finish(state, TerminalReason.CANCELLED)
                break

            state.iteration += 1

            if completion is not None:
                self._complete(state, completion)
            elif state.iteration >= state.max_iterations:
                self._finish(state, TerminalReason.MAX_ITERATIONS)
            elif self.remaining_time <= 0:
                self._finish(state, TerminalReason.TIMEOUT)

    async def _request_completion(
        self, system: str, tools: list[Tool], purpose: Purpose
    ) -> Optional[LLMResponse]:
        """Call the provider; transient failures become a system message and None."""
        timeout = min(self.settings.llm_timeout_seconds, self.remaining_time)
        payload = [m.to_dict() for m in self.messages]
        call = asyncio.to_thread(
            self.llm_provider.complete,
            messages=payload,
            purpose=purpose,
            tools=tools or None,
            max_tokens=self.settings.max_tokens,
            temperature=self.settings.temperature,
            system=system,
        )
        try:
            return await self._suspend(call, timeout)
        except (RunCancelled, MalformedResponseError):
            raise
        except asyncio.TimeoutError:
            logger.warning("Run %s: LLM call timed out after %.1fs", self.run_id, timeout)
            self._system_error(f"LLM call timed out after {timeout:.0f} seconds")
        except Exception as exc:
            logger.warning("Run %s: LLM call failed: %s", self.run_id, exc)
            self._system_error(f"LLM call failed: {exc}")
        return None

    async def _handle_response(
        self, state: RunState, response: LLMResponse, executor: ToolExecutor
    ) -> Optional[_Completion]:
        if response.content:
            self.emit(MessageEvent(run_id=self.run_id, text=response.content))

        if not response.has_tool_calls:
            return self._handle_text(state, response.content or "")

        assistant_blocks: list = [TextBlock(response.content)] if response.content else []
        result_blocks: list[ToolResultBlock] = []
        directives: list[str] = []
        completion: Optional[_Completion] = None

        try:
            for call in response.tool_calls:
                self.emit(
                    ToolStartEvent(
                        run_id=self.run_id,
                        tool=call.name,
                        tool_call_id=call.id,
                        input_summary=summarize_tool_input(call.name, call.input),
                    )
                )
                outcome = await self._dispatch(executor, call, state)

                assistant_blocks.append(ToolUseBlock.from_call(call))
                result_blocks.append(ToolResultBlock.from_result(outcome.result))
                self._apply(state, outcome)
                self._emit_tool_result(call, outcome.result)

                directive = self._observe(state, call, outcome.result)
                if directive:
                    directives.append(directive)

                if outcome.is_terminal and outcome.result.success:
                    completion = self._completion_from(outcome)
                    break
        except RunCancelled:
            # Calls finished before the cancel keep their history entries
            if result_blocks:
                self._record_batch(assistant_blocks, result_blocks, directives)
            raise

        self._record_batch(assistant_blocks, result_blocks, directives)
        return completion

    def _record_batch(
        self, assistant_blocks: list, result_blocks: list[ToolResultBlock], directives: list[str]
    ) -> None:
        self.messages.append(Message.assistant(assistant_blocks))
        self.messages.append(Message.user(result_blocks))
        for directive in directives:
            self.messages.append(Message.user(directive))

    def _handle_text(self, state: RunState, text: str) -> Optional[_Completion]:
        if not text.strip():
            self._system_error("The model returned an empty response")
            return None

        self.messages.append(Message.assistant(text))
        terminal = profile_for(state.mode).terminal_tool
        # A plan can only arrive through create_plan
        if (
            terminal == SignalCompletionTool.name
            and self.settings.text_completion_fallback
            and any(m in text for m in COMPLETION_MARKERS)
        ):
            logger.info("Run %s: completion marker found in text response", self.run_id)
            return _Completion(summary=text.strip())

        self.messages.append(
            Message.user(
                _CONTINUE_NUDGE.format(tool=terminal, condition=_NUDGE_CONDITIONS[state.mode])
            )
        )
        return None

    async def _dispatch(self, executor: ToolExecutor, call: ToolCall, state: RunState) -> ToolOutcome:
        try:
            return await self._suspend(executor.dispatch(call, state), None)
        except RunCancelled:
            raise
        except Exception as exc:
            logger.warning("Run %s: dispatch of %s failed: %s", self.run_id, call.name, exc)
            return ToolOutcome(
                result=ToolResult(
                    tool_call_id=call.id,
                    content=SYSTEM_ERROR_MESSAGE.format(message=f"Tool dispatch failed: {exc}"),
                    is_error=True,
                )
            )

    async def _suspend(self, awaitable: Awaitable, timeout: Optional[float]):
        """Await *awaitable* unless cancellation is requested first.

        Raises:
            RunCancelled: If cancel() was called before the awaitable finished;
                its result, if any, is discarded
            asyncio.TimeoutError: If *timeout* elapsed
        """
        task = asyncio.ensure_future(asyncio.wait_for(awaitable, timeout))
        if self._cancel_event.is_set():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise RunCancelled()

        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise RunCancelled()
        return task.result()

    # ------------------------------------------------------------------
    # State updates
    # ------------------------------------------------------------------

    def _apply(self, state: RunState, outcome: ToolOutcome) -> None:
        if outcome.written_path:
            state.record_write(outcome.written_path, outcome.existed)
        if outcome.command:
            state.record_command(outcome.command)
        if outcome.todos is not None:
            state.todos = [item.model_dump() for item in outcome.todos]
            self.emit(TodoUpdateEvent(run_id=self.run_id, todos=state.todos))
        if outcome.sub_agent is not None:
            state.record_usage(outcome.sub_agent.input_tokens, outcome.sub_agent.output_tokens)
            for path in outcome.sub_agent.files_created:
                state.record_write(path, existed=False)
            for path in outcome.sub_agent.files_modified:
                state.record_write(path, existed=True)

    def _observe(self, state: RunState, call: ToolCall, result: ToolResult) -> Optional[str]:
        """Update same-error and repeated-call tracking; return a directive if due."""
        error_obs = self.error_tracker.observe(
            state.last_error_signature, state.same_error_count, result
        )
        state.last_error_signature = error_obs.signature
        state.same_error_count = error_obs.same_error_count

        call_obs = self.call_tracker.observe(
            state.last_call_signature, state.same_call_count, call.name, call.input
        )
        state.last_call_signature = call_obs.signature
        state.same_call_count = call_obs.same_call_count

        if error_obs.directive:
            directive, count = error_obs.directive, self.error_tracker.threshold
        elif call_obs.directive:
            directive, count = call_obs.directive, self.call_tracker.threshold
        else:
            return None

        logger.info("Run %s: injecting pivot directive: %s", self.run_id, directive)
        self.emit(ErrorPivotEvent(run_id=self.run_id, count=count, directive=directive))
        return directive

    def _completion_from(self, outcome: ToolOutcome) -> _Completion:
        if outcome.plan is not None:
            return _Completion(summary="Plan submitted", plan=outcome.plan)
        return _Completion(summary=outcome.completion.summary, declared=outcome.completion)

    def _complete(self, state: RunState, completion: _Completion) -> None:
        if completion.declared is not None:
            for path in completion.declared.files_created:
                state.record_write(path, existed=False)
            for path in completion.declared.files_modified:
                state.record_write(path, existed=True)
        if completion.plan is not None:
            state.plan_text = completion.plan.plan_content
            self.emit(
                PlanReadyEvent(
                    run_id=self.run_id,
                    plan_content=completion.plan.plan_content,
                    estimated_iterations=completion.plan.estimated_iterations,
                    key_files=completion.plan.key_files,
                )
            )
        state.summary = completion.summary
        self._finish(state, TerminalReason.COMPLETED)

    def _finish(self, state: RunState, reason: TerminalReason, error: Optional[str] = None) -> None:
        """Enter a terminal state and emit its event."""
        state.finish(reason, error=error)
        if reason == TerminalReason.COMPLETED:
            event = CompleteEvent(
                run_id=self.run_id,
                summary=state.summary or "",
                files_created=list(state.files_created),
                files_modified=list(state.files_modified),
                iterations=state.iteration,
                input_tokens=state.input_tokens,
                output_tokens=state.output_tokens,
            )
        elif reason == TerminalReason.MAX_ITERATIONS:
            event = MaxIterationsEvent(
                run_id=self.run_id,
                iterations=state.iteration,
                files_created=list(state.files_created),
                files_modified=list(state.files_modified),
                input_tokens=state.input_tokens,
                output_tokens=state.output_tokens,
            )
        elif reason == TerminalReason.TIMEOUT:
            event = TimeoutEvent(
                run_id=self.run_id,
                elapsed_seconds=round(self.elapsed, 3),
                iterations=state.iteration,
                input_tokens=state.input_tokens,
                output_tokens=state.output_tokens,
            )
        elif reason == TerminalReason.FATAL_ERROR:
            event = FatalErrorEvent(run_id=self.run_id, error=error or "fatal error")
        else:
            event = CancelledEvent(run_id=self.run_id, iterations=state.iteration)
        self.emit(event)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _system_error(self, message: str) -> None:
        self.messages.append(Message.user(SYSTEM_ERROR_MESSAGE.format(message=message)))

    def _emit_tool_result(self, call: ToolCall, result: ToolResult) -> None:
        if result.is_error:
            self.emit(
                ToolErrorEvent(
                    run_id=self.run_id,
                    tool=call.name,
                    tool_call_id=call.id,
                    error=result.content[:_PREVIEW_CHARS],
                )
            )
        else:
            self.emit(
                ToolCompleteEvent(
                    run_id=self.run_id,
                    tool=call.name,
                    tool_call_id=call.id,
                    success=True,
                    output_preview=result.content[:_PREVIEW_CHARS],
                )
            )

    async def _launch_sub_agent(self, request: SubAgentRequest) -> SubAgentResult:
        """Launch a sub-agent within this run's remaining budget."""
        state = self.state
        # The current iteration is still in progress
        remaining = state.max_iterations - state.iteration - 1
        if remaining <= 0:
            raise SubAgentError("No iteration budget left for a sub-agent")
        return await self.sub_agents.launch(
            request,
            parent_budget_remaining=remaining,
            parent=self,
        )
