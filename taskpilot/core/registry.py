"""In-process bookkeeping for runs and plans.

RunRegistry owns the set of runs the process knows about. Records are only
written here: start() registers the run and its task, the task's done
callback stamps finished_at, and evict_expired() drops finished runs once
their TTL has passed.

PlanStore keeps the latest plan per project until it is executed, discarded
or expires.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from taskpilot.core.loop import LoopController
from taskpilot.core.state import RunState

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RunAlreadyExistsError(Exception):
    """Raised when a run id is registered twice."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run already exists: {run_id}")


class RunNotFoundError(KeyError):
    """Raised when a run id is unknown or has been evicted."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class PlanNotFoundError(KeyError):
    """Raised when a project has no stored plan."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"No plan stored for project: {project_id}")


@dataclass
class RunRecord:
    """A registered run.

    Attributes:
        run_id: Run identifier
        project_id: Project the run belongs to
        controller: Controller driving the run
        task: asyncio task executing the run
        created_at: Clock time of registration
        finished_at: Clock time the task finished (None while running)
    """

    run_id: str
    project_id: str
    controller: LoopController
    task: "asyncio.Task[RunState]"
    created_at: float
    finished_at: Optional[float] = None

    @property
    def done(self) -> bool:
        return self.task.done()

    @property
    def state(self) -> Optional[RunState]:
        return self.controller.state


class RunRegistry:
    """Owned store of runs with TTL eviction of finished runs."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Clock = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._records: dict[str, RunRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def start(
        self,
        project_id: str,
        controller: LoopController,
        runner: Awaitable[RunState],
    ) -> RunRecord:
        """Schedule *runner* as a task and register it.

        Must be called from a running event loop.

        Raises:
            RunAlreadyExistsError: If controller.run_id is already registered
        """
        self.evict_expired()
        run_id = controller.run_id
        if run_id in self._records:
            if asyncio.iscoroutine(runner):
                runner.close()
            raise RunAlreadyExistsError(run_id)

        task = asyncio.ensure_future(runner)
        record = RunRecord(
            run_id=run_id,
            project_id=project_id,
            controller=controller,
            task=task,
            created_at=self._clock(),
        )
        self._records[run_id] = record
        task.add_done_callback(lambda _t: self._mark_finished(run_id))
        logger.debug("Registered run %s for project %s", run_id, project_id)
        return record

    def _mark_finished(self, run_id: str) -> None:
        record = self._records.get(run_id)
        if record is not None and record.finished_at is None:
            record.finished_at = self._clock()

    def get(self, run_id: str) -> Optional[RunRecord]:
        self.evict_expired()
        return self._records.get(run_id)

    def require(self, run_id: str) -> RunRecord:
        record = self.get(run_id)
        if record is None:
            raise RunNotFoundError(run_id)
        return record

    def cancel(self, run_id: str) -> bool:
        """Request cancellation of a run.

        Returns:
            True if the run was still running, False if it had finished
        """
        record = self.require(run_id)
        if record.done:
            return False
        logger.info("Cancelling run %s", run_id)
        record.controller.cancel()
        return True

    def remove(self, run_id: str) -> Optional[RunRecord]:
        return self._records.pop(run_id, None)

    def evict_expired(self) -> list[str]:
        """Drop runs that finished more than ttl_seconds ago."""
        now = self._clock()
        expired = [
            run_id
            for run_id, record in self._records.items()
            if record.finished_at is not None and now - record.finished_at >= self.ttl_seconds
        ]
        for run_id in expired:
            del self._records[run_id]
        if expired:
            logger.debug("Evicted %d finished run(s)", len(expired))
        return expired

    def active(self, project_id: Optional[str] = None) -> list[RunRecord]:
        """Runs that have not finished, optionally filtered by project."""
        return [
            record
            for record in self._records.values()
            if not record.done and (project_id is None or record.project_id == project_id)
        ]


@dataclass
class StoredPlan:
    """A plan produced by a planning run."""

    project_id: str
    plan_content: str
    estimated_iterations: Optional[int] = None
    key_files: list[str] = field(default_factory=list)
    run_id: Optional[str] = None
    created_at: float = 0.0
    approved: bool = False


class PlanStore:
    """Latest plan per project, with TTL eviction."""

    def __init__(self, ttl_seconds: float = 3600.0, clock: Clock = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._plans: dict[str, StoredPlan] = {}

    def save(self, plan: StoredPlan) -> StoredPlan:
        """Store *plan*, replacing any earlier plan of the project."""
        plan.created_at = self._clock()
        plan.approved = False
        self._plans[plan.project_id] = plan
        return plan

    def get(self, project_id: str) -> Optional[StoredPlan]:
        self.evict_expired()
        return self._plans.get(project_id)

    def approve(self, project_id: str) -> StoredPlan:
        """Mark the stored plan as approved.

        Raises:
            PlanNotFoundError: If the project has no plan
        """
        plan = self.get(project_id)
        if plan is None:
            raise PlanNotFoundError(project_id)
        plan.approved = True
        return plan

    def pop(self, project_id: str) -> Optional[StoredPlan]:
        return self._plans.pop(project_id, None)

    def evict_expired(self) -> list[str]:
        now = self._clock()
        expired = [
            project_id
            for project_id, plan in self._plans.items()
            if now - plan.created_at >= self.ttl_seconds
        ]
        for project_id in expired:
            del self._plans[project_id]
        return expired
