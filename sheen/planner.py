"""Task planner: ordered task queue with status transitions and persistence."""

from typing import Any

from sheen.exceptions import PlanPersistenceError
from sheen.logging import get_logger
from sheen.models import (
    COMPLETED,
    FAILED,
    IN_PROGRESS,
    PENDING,
    TASK_STATUSES,
    ExecutionState,
    Task,
    TaskError,
    generate_task_id,
    utcnow,
)
from sheen.plan_store import MemoryPlanStore, PlanStore

log = get_logger(__name__)

_UPDATABLE_FIELDS = frozenset({
    "description",
    "status",
    "priority",
    "phase",
    "dependencies",
    "result",
    "errors",
})


class TaskPlanner:
    """Owns the ordered task queue.

    Tasks are only ever appended or prepended, never deleted. ``tasks`` is
    mutated in place so an ``ExecutionState`` can share the same list.
    Persistence is best-effort: store failures are logged and the in-memory
    queue stays authoritative.
    """

    def __init__(self, store: PlanStore | None = None):
        self.store: PlanStore = store if store is not None else MemoryPlanStore()
        self.tasks: list[Task] = []

    # ------------------------------------------------------------------
    # Plan lifecycle
    # ------------------------------------------------------------------

    async def create_plan(self, prompt: str) -> list[Task]:
        """Create a plan for ``prompt``.

        Without a persisted plan this is a single high-priority implementation
        task. With one, the stored queue is loaded and a discovery, planning
        and implementation sequence for the new prompt goes ahead of it.
        """
        log.debug("Creating plan from prompt", prompt=prompt)

        if await self.plan_exists():
            await self.load_plan()
            triad = [
                self._new_task(f"Discovery: Analyze requirements and codebase for: {prompt}",
                               priority="high", phase="discovery"),
                self._new_task(f"Planning: Create detailed implementation plan for: {prompt}",
                               priority="high", phase="planning"),
                self._new_task(f"Implementation: {prompt}",
                               priority="high", phase="implementation"),
            ]
            await self.prepend_tasks(triad)
        else:
            self.tasks[:] = [self._new_task(prompt, priority="high", phase="implementation")]
            await self.save_plan()

        log.info("Plan created", tasks=len(self.tasks))
        return self.get_tasks()

    async def load_plan(self) -> list[Task]:
        """Replace the in-memory queue with the persisted one.

        Tasks stored as ``in_progress`` belonged to a run that ended before
        finishing them; they go back to ``pending`` with a recoverable error.
        """
        try:
            loaded = await self.store.read_all()
        except PlanPersistenceError as e:
            log.warning("Failed to load plan, starting with empty task list", error=str(e))
            loaded = []
        self.tasks[:] = loaded
        stale = [task for task in self.tasks if task.status == IN_PROGRESS]
        for task in stale:
            task.status = PENDING
            task.errors.append(TaskError(message="Interrupted before completion", recoverable=True))
        if stale:
            log.info("Requeued interrupted tasks", task_ids=[task.id for task in stale])
            await self.save_plan()
        log.info("Loaded plan", tasks=len(self.tasks))
        return self.get_tasks()

    async def plan_exists(self) -> bool:
        try:
            return await self.store.exists()
        except PlanPersistenceError as e:
            log.warning("Failed to check plan store", error=str(e))
            return False

    async def save_plan(self) -> bool:
        """Persist the queue; returns False (after logging) on failure."""
        try:
            await self.store.write_all(list(self.tasks))
        except PlanPersistenceError as e:
            log.error("Failed to save plan", error=str(e))
            return False
        log.debug("Plan saved", tasks=len(self.tasks))
        return True

    # ------------------------------------------------------------------
    # Queue mutation
    # ------------------------------------------------------------------

    @staticmethod
    def _new_task(description: str, **fields: Any) -> Task:
        return Task(id=generate_task_id(), description=description, **fields)

    async def add_task(
        self,
        description: str,
        priority: str = "medium",
        phase: str = "implementation",
        dependencies: list[str] | None = None,
    ) -> Task:
        """Append a new pending task with a fresh id."""
        task = self._new_task(
            description,
            priority=priority,
            phase=phase,
            dependencies=list(dependencies or []),
        )
        self.tasks.append(task)
        await self.save_plan()
        log.info("Added task", task_id=task.id, description=description)
        return task

    async def prepend_tasks(self, tasks: list[Task]) -> None:
        """Insert ``tasks`` (in order) ahead of existing work."""
        self.tasks[0:0] = list(tasks)
        await self.save_plan()
        log.info("Prepended tasks", count=len(tasks))

    async def update_task(self, task_id: str, **fields: Any) -> Task | None:
        """Merge ``fields`` into a task and persist.

        Entering ``in_progress`` stamps ``started_at`` the first time only;
        re-entering it from ``failed`` increments ``attempts``. Entering
        ``completed`` stamps ``completed_at``.

        Returns:
            The updated task, or None when the id is unknown
        """
        task = self.get_task(task_id)
        if task is None:
            log.warning("Task not found", task_id=task_id)
            return None

        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {', '.join(sorted(unknown))}")

        new_status = fields.get("status")
        if new_status is not None and new_status not in TASK_STATUSES:
            raise ValueError(f"Invalid task status: {new_status}")

        previous_status = task.status
        for key, value in fields.items():
            setattr(task, key, value)

        if new_status is not None and new_status != previous_status:
            log.info("Task status changed", task_id=task_id, status=new_status, previous=previous_status)
            if new_status == IN_PROGRESS:
                if previous_status == FAILED:
                    task.attempts += 1
                if task.started_at is None:
                    task.started_at = utcnow()
            elif new_status == COMPLETED and task.completed_at is None:
                task.completed_at = utcnow()

        await self.save_plan()
        return task

    async def record_task_error(
        self,
        task_id: str,
        message: str,
        recoverable: bool = True,
        code: str | None = None,
    ) -> None:
        task = self.get_task(task_id)
        if task is None:
            log.warning("Task not found", task_id=task_id)
            return
        task.errors.append(TaskError(message=message, recoverable=recoverable, code=code))
        await self.save_plan()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_next_task(self, state: ExecutionState | None = None) -> Task | None:
        """Return the task to work on next.

        An ``in_progress`` task is resumed before any pending one; otherwise
        the first pending task in queue order wins (priority is advisory).
        """
        for task in self.tasks:
            if task.status == IN_PROGRESS:
                log.debug("Resuming task", task_id=task.id)
                return task
        for task in self.tasks:
            if task.status == PENDING:
                log.debug("Next task", task_id=task.id, description=task.description)
                return task
        log.debug("No pending tasks found")
        return None

    def get_tasks(self) -> list[Task]:
        return list(self.tasks)

    def get_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def summary(self) -> dict[str, int]:
        """Count tasks by status."""
        counts = {status: 0 for status in TASK_STATUSES}
        for task in self.tasks:
            counts[task.status] = counts.get(task.status, 0) + 1
        return counts
