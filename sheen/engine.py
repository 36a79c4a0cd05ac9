"""Engine: wires the planner, agent, tools and loop from one Config."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.table import Table

from sheen.agents import AIAgent, create_agent
from sheen.config import Config
from sheen.context import ContextManager
from sheen.exceptions import ConfigurationError
from sheen.llm import LLMProvider
from sheen.logging import get_logger
from sheen.loop import ExecutionLoop, StopReason
from sheen.models import ExecutionState, UserMessage
from sheen.permissions import Approver, PermissionGate
from sheen.plan_store import PlanStore, SqlitePlanStore
from sheen.planner import TaskPlanner
from sheen.project import ProjectContext
from sheen.prompts import PromptTemplates
from sheen.tool_calls import ToolCallAdapter
from sheen.tools import create_tool_registry
from sheen.tools.registry import ToolContext

log = get_logger(__name__)

_STOP_MESSAGES: dict[str, str] = {
    "complete": "All tasks finished",
    "paused": "Paused by user",
    "stopped": "Stopped by user",
    "max_iterations": "Reached the iteration limit",
    "too_many_errors": "Too many unrecovered errors",
    "no_progress": "No measurable progress",
}


class Engine:
    """Top-level entry point for one autonomous run."""

    def __init__(
        self,
        config: Config | None = None,
        project_context: ProjectContext | None = None,
        provider: LLMProvider | None = None,
        approver: Approver | None = None,
        agent: AIAgent | None = None,
        plan_store: PlanStore | None = None,
        console: Console | None = None,
        interactive: bool | None = None,
    ):
        self.config = config or Config()
        self.project_context = project_context or ProjectContext.from_directory(Path.cwd())
        self.console = console or Console(stderr=True)

        root_dir = Path(self.project_context.root_dir)
        if plan_store is None:
            plan_store = SqlitePlanStore(self.config.resolved_plan_path(root_dir))
        self.plan_store = plan_store
        self.planner = TaskPlanner(plan_store)

        self.state = ExecutionState(project_context=self.project_context)
        self.state.tasks = self.planner.tasks

        self.gate = PermissionGate(self.config.permissions, approver=approver, interactive=interactive)
        self.registry = create_tool_registry(self.config)
        self.adapter = ToolCallAdapter(self.registry, self.gate)
        self.tool_context = ToolContext.for_project(self.project_context, self.config, planner=self.planner)

        self.templates = PromptTemplates(self.project_context.root_dir)
        self.context_manager = ContextManager(
            self.project_context,
            self.config,
            templates=self.templates,
            tool_context=self.tool_context,
        )
        if agent is None:
            agent = create_agent(
                self.config,
                self.adapter,
                provider=provider,
                system_prompt=self.context_manager.render_system_prompt(),
                templates=self.templates,
            )
        self.agent = agent
        self.loop = ExecutionLoop(self.config)

    async def run(self, prompt: str | None = None) -> StopReason:
        """Plan ``prompt`` (or resume the persisted plan) and iterate to a stop.

        Raises:
            ConfigurationError when there is neither a prompt nor auto-resume
        """
        if prompt:
            await self.planner.create_plan(prompt)
        elif self.config.loop.auto_resume:
            tasks = await self.planner.load_plan()
            if not tasks:
                log.warning("No persisted plan to resume")
        else:
            raise ConfigurationError("A prompt is required unless auto-resume is enabled")

        if prompt:
            self.context_manager.add_user_message(prompt)

        log.info(
            "Engine starting",
            root_dir=self.project_context.root_dir,
            engine=self.agent.get_engine_name(),
            tasks=len(self.planner.tasks),
        )
        return await self._run_loop()

    async def _run_loop(self) -> StopReason:
        try:
            reason = await self.loop.run(self.state, self.agent, self.planner, self.context_manager)
        finally:
            await self.agent.cleanup()
            close = getattr(self.plan_store, "close", None)
            if close is not None:
                await close()
        self.print_summary(reason)
        return reason

    def pause(self) -> None:
        log.info("Pausing execution")
        self.state.paused = True

    async def resume(self) -> StopReason | None:
        """Clear the pause flag and continue iterating if the loop is idle."""
        log.info("Resuming execution")
        self.state.paused = False
        if self.loop.is_running:
            return None
        return await self._run_loop()

    def stop(self) -> None:
        self.loop.stop()

    def queue_user_message(self, message: str) -> None:
        """Queue a message for the next rendered prompt."""
        self.state.user_messages.append(UserMessage(message=message))
        self.context_manager.add_user_message(message)
        log.info("User message queued", pending=len(self.state.pending_user_messages()))

    def get_state(self) -> ExecutionState:
        return self.state

    def print_summary(self, reason: StopReason) -> None:
        counts = self.planner.summary()
        metrics = self.state.metrics

        summary = Table(title="Run Summary", show_header=False, box=None)
        summary.add_column("Item", style="bold")
        summary.add_column("Value", overflow="fold")
        summary.add_row("Stop reason", f"{reason} ({_STOP_MESSAGES.get(reason, reason)})")
        summary.add_row("Iterations", str(self.state.iteration))
        summary.add_row(
            "Tasks",
            ", ".join(f"{status}: {count}" for status, count in counts.items() if count) or "none",
        )
        summary.add_row("Files changed", str(metrics.file_count))
        summary.add_row("Commits", str(metrics.commit_count))
        if metrics.last_commit_hash:
            summary.add_row("Last commit", metrics.last_commit_hash)
        summary.add_row("Test runs", str(metrics.test_count))
        summary.add_row("Unrecovered errors", str(self.state.unrecovered_error_count))
        self.console.print(summary)
