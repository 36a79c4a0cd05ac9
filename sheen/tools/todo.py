"""Todo tool exposing the task planner to the agent."""

from typing import Any

from sheen.logging import get_logger
from sheen.models import PHASES, TASK_PRIORITIES, TASK_STATUSES
from sheen.tools.registry import Tool, ToolContext, ToolResult

log = get_logger(__name__)


class TodoTool(Tool):
    """Read and update the execution plan."""

    name = "todo"
    description = (
        "Manage the execution plan. "
        "Use action 'add' to append a task, 'list' to show tasks, "
        "and 'update' to change a task's status or priority."
    )
    category = "plan"
    parameters = {
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["add", "list", "update"],
                "description": "Operation to perform.",
            },
            "content": {
                "type": "string",
                "description": "Task description (required for 'add').",
            },
            "task_id": {
                "type": "string",
                "description": "Task ID or #index (for 'update').",
            },
            "status": {
                "type": "string",
                "enum": list(TASK_STATUSES),
                "description": "New status (for 'update').",
            },
            "priority": {
                "type": "string",
                "enum": list(TASK_PRIORITIES),
                "description": "Priority level (for 'add' / 'update').",
            },
            "phase": {
                "type": "string",
                "enum": list(PHASES),
                "description": "Workflow phase (for 'add').",
            },
            "filter_status": {
                "type": "string",
                "description": "Filter by status (for 'list').",
            },
        },
        "required": ["action"],
    }
    timeout_seconds = 10.0

    async def execute(
        self,
        action: str,
        content: str | None = None,
        task_id: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        phase: str | None = None,
        filter_status: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        context: ToolContext = kwargs["_context"]
        planner = context.planner
        if planner is None:
            return ToolResult(success=False, error="No plan is available in this context.")

        if action == "add":
            return await self._add(planner, content, priority, phase)
        if action == "list":
            return self._list(planner, filter_status)
        if action == "update":
            return await self._update(planner, task_id, status, priority)
        return ToolResult(success=False, error=f"Unknown action: {action}")

    # ------------------------------------------------------------------

    @staticmethod
    async def _add(planner: Any, content: str | None, priority: str | None, phase: str | None) -> ToolResult:
        if not content or not content.strip():
            return ToolResult(success=False, error="'content' is required for add.")
        task = await planner.add_task(
            content.strip(),
            priority=priority or "medium",
            phase=phase or "implementation",
        )
        return ToolResult(success=True, output=f"Created task {task.id}: {task.description}")

    @staticmethod
    def _list(planner: Any, filter_status: str | None) -> ToolResult:
        tasks = planner.get_tasks()
        if filter_status:
            tasks = [task for task in tasks if task.status == filter_status]
        if not tasks:
            return ToolResult(success=True, output="No tasks found.")
        lines = [
            f"#{idx} [{task.priority}/{task.phase}] {task.description} ({task.status})  id={task.id}"
            for idx, task in enumerate(tasks, 1)
        ]
        return ToolResult(success=True, output="\n".join(lines))

    @staticmethod
    def _select(planner: Any, selector: str) -> Any:
        key = selector.strip()
        task = planner.get_task(key)
        if task is not None:
            return task
        index_text = key[1:] if key.startswith("#") else key
        if index_text.isdigit():
            index = int(index_text)
            tasks = planner.get_tasks()
            if 1 <= index <= len(tasks):
                return tasks[index - 1]
        return None

    @classmethod
    async def _update(
        cls,
        planner: Any,
        task_id: str | None,
        status: str | None,
        priority: str | None,
    ) -> ToolResult:
        if not task_id:
            return ToolResult(success=False, error="'task_id' is required for update.")
        task = cls._select(planner, task_id)
        if task is None:
            return ToolResult(success=False, error=f"Task not found: {task_id}")

        fields: dict[str, Any] = {}
        if status:
            fields["status"] = status
        if priority:
            fields["priority"] = priority
        if not fields:
            return ToolResult(success=False, error="Nothing to update: pass 'status' or 'priority'.")

        await planner.update_task(task.id, **fields)
        log.info("Task updated via todo tool", task_id=task.id, **fields)
        return ToolResult(success=True, output=f"Updated task {task.id}.")
