"""Agent runtime.

Wires the provider, workspace, event publisher, run registry and plan store
together and exposes the operations front-ends use: start a run, wait for it,
cancel it, and the plan -> approve -> execute workflow.
"""

import logging
from typing import Optional

from taskpilot.adapters.llm.base import LLMProvider
from taskpilot.adapters.workspace.base import WorkspaceBackend
from taskpilot.core.config import AgentSettings, get_settings
from taskpilot.core.context import ProjectContext, load_project_context
from taskpilot.core.events import PlanReadyEvent
from taskpilot.core.loop import LoopController, RunBudget
from taskpilot.core.modes import AgentMode
from taskpilot.core.registry import (
    PlanNotFoundError,
    PlanStore,
    RunRecord,
    RunRegistry,
    StoredPlan,
)
from taskpilot.core.state import RunState
from taskpilot.core.streaming import EventPublisher
from taskpilot.core.subagents import SubAgentOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_ID = "default"

EXECUTE_PLAN_PROMPT = """\
Execute the following approved plan step by step.

{plan}

Call signal_completion when done."""


class PlanNotApprovedError(Exception):
    """Raised when executing a plan the user has not approved."""


def format_plan(plan: StoredPlan) -> str:
    """Render a stored plan for display."""
    lines = [plan.plan_content.rstrip(), ""]
    if plan.estimated_iterations is not None:
        lines.append(f"Estimated iterations: {plan.estimated_iterations}")
    if plan.key_files:
        lines.append("Key files:")
        lines.extend(f"  - {path}" for path in plan.key_files)
    lines.append(f"Status: {'approved' if plan.approved else 'awaiting approval'}")
    return "\n".join(lines).rstrip()


class AgentRuntime:
    """Runs agents against one workspace.

    Example usage:
        runtime = AgentRuntime(get_provider("anthropic"), LocalWorkspace(path))
        state = await runtime.run("Add a health check endpoint")
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        workspace: WorkspaceBackend,
        settings: Optional[AgentSettings] = None,
        publisher: Optional[EventPublisher] = None,
        registry: Optional[RunRegistry] = None,
        plans: Optional[PlanStore] = None,
        project_id: str = DEFAULT_PROJECT_ID,
        enable_sub_agents: bool = True,
    ):
        self.llm_provider = llm_provider
        self.workspace = workspace
        self.settings = settings or get_settings()
        self.publisher = publisher or EventPublisher(max_queue_size=self.settings.event_queue_size)
        self.registry = registry or RunRegistry(ttl_seconds=self.settings.run_ttl_seconds)
        self.plans = plans or PlanStore(ttl_seconds=self.settings.plan_ttl_seconds)
        self.project_id = project_id
        self.sub_agents = (
            SubAgentOrchestrator(llm_provider, workspace, self.settings)
            if enable_sub_agents
            else None
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_controller(self, run_id: Optional[str] = None) -> LoopController:
        return LoopController(
            self.llm_provider,
            self.workspace,
            settings=self.settings,
            publisher=self.publisher,
            sub_agents=self.sub_agents,
            run_id=run_id,
        )

    def start_run(
        self,
        instruction: str,
        mode: AgentMode = AgentMode.FAST,
        project_context: Optional[ProjectContext] = None,
        budget: Optional[RunBudget] = None,
        plan_text: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> RunRecord:
        """Start a run in the background.

        Subscribe to ``self.publisher`` with the returned run id before
        yielding to the event loop to receive every event.

        Args:
            instruction: Task for the agent
            mode: Run mode
            project_context: Context for the prompt (loaded from the workspace if omitted)
            budget: Safety limits (defaults from settings)
            plan_text: Approved plan for executing mode
            run_id: Explicit run id

        Returns:
            RunRecord of the registered run
        """
        if project_context is None:
            project_context = load_project_context(self.workspace)
        controller = self.create_controller(run_id)
        runner = controller.run(
            instruction,
            mode=mode,
            project_context=project_context,
            budget=budget,
            plan_text=plan_text,
        )
        record = self.registry.start(self.project_id, controller, runner)
        logger.info("Started %s run %s", mode.value, record.run_id)
        return record

    async def wait(self, run_id: str) -> RunState:
        """Wait for a run to finish and return its final state."""
        record = self.registry.require(run_id)
        return await record.task

    def cancel(self, run_id: str) -> bool:
        return self.registry.cancel(run_id)

    async def run(
        self,
        instruction: str,
        mode: AgentMode = AgentMode.FAST,
        project_context: Optional[ProjectContext] = None,
        budget: Optional[RunBudget] = None,
    ) -> RunState:
        record = self.start_run(instruction, mode, project_context, budget)
        return await self.wait(record.run_id)

    # ------------------------------------------------------------------
    # Plan workflow
    # ------------------------------------------------------------------

    async def plan(
        self,
        instruction: str,
        project_context: Optional[ProjectContext] = None,
        budget: Optional[RunBudget] = None,
    ) -> RunState:
        """Run a planning session and store the resulting plan as a draft.

        Returns:
            Final state of the planning run; the plan is available from
            ``self.plans`` when the run completed
        """
        record = self.start_run(instruction, AgentMode.PLANNING, project_context, budget)
        state = await self.wait(record.run_id)
        self.store_plan(record)
        return state

    def store_plan(self, record: RunRecord) -> Optional[StoredPlan]:
        """Store the plan of a finished planning run as an unapproved draft.

        Returns:
            The stored plan, or None if the run ended without one
        """
        state = record.state
        if state is None or not state.completed or not state.plan_text:
            logger.warning("Planning run %s ended without a plan", record.run_id)
            return None

        ready = next(
            (e for e in reversed(record.controller.events) if isinstance(e, PlanReadyEvent)),
            None,
        )
        return self.plans.save(
            StoredPlan(
                project_id=self.project_id,
                plan_content=state.plan_text,
                estimated_iterations=ready.estimated_iterations if ready else None,
                key_files=list(ready.key_files) if ready else [],
                run_id=state.run_id,
            )
        )

    def approve_plan(self) -> StoredPlan:
        """Approve the stored plan of this project.

        Raises:
            PlanNotFoundError: If no plan is stored
        """
        plan = self.plans.approve(self.project_id)
        logger.info("Plan from run %s approved", plan.run_id)
        return plan

    def start_plan_execution(
        self,
        project_context: Optional[ProjectContext] = None,
        budget: Optional[RunBudget] = None,
    ) -> RunRecord:
        """Start an executing run for the approved plan of this project.

        Raises:
            PlanNotFoundError: If no plan is stored
            PlanNotApprovedError: If the stored plan is not approved
        """
        plan = self.plans.get(self.project_id)
        if plan is None:
            raise PlanNotFoundError(self.project_id)
        if not plan.approved:
            raise PlanNotApprovedError("The stored plan has not been approved")

        return self.start_run(
            EXECUTE_PLAN_PROMPT.format(plan=plan.plan_content),
            AgentMode.EXECUTING,
            project_context,
            budget,
            plan_text=plan.plan_content,
        )

    async def execute_plan(
        self,
        project_context: Optional[ProjectContext] = None,
        budget: Optional[RunBudget] = None,
    ) -> RunState:
        """Execute the approved plan of this project.

        The plan is removed from the store once execution completes.
        """
        record = self.start_plan_execution(project_context, budget)
        state = await self.wait(record.run_id)
        if state.completed:
            self.plans.pop(self.project_id)
        return state
