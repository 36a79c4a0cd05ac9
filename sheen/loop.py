"""Iteration state machine driving one agent over the task queue."""

from __future__ import annotations

import asyncio
import re
from typing import Literal

from sheen.agents.base import AgentResult, AIAgent
from sheen.config import Config
from sheen.context import ContextManager
from sheen.exceptions import LoopError
from sheen.logging import get_logger
from sheen.models import (
    COMPLETED,
    FAILED,
    IN_PROGRESS,
    ExecutionError,
    ExecutionState,
    ProgressMetrics,
    utcnow,
)
from sheen.planner import TaskPlanner
from sheen.tool_calls import ToolExecution
from sheen.tools.git import parse_commit_hash

log = get_logger(__name__)

StopReason = Literal[
    "paused",
    "complete",
    "max_iterations",
    "too_many_errors",
    "no_progress",
    "stopped",
]

COMPLETION_MARKER_RE = re.compile(
    r"\bTASK COMPLETE\b|\b(?:DISCOVERY|PLANNING|PLAN|IMPLEMENTATION|VALIDATION) COMPLETE\b",
    re.IGNORECASE,
)

TEST_COMMAND_RE = re.compile(
    r"\b(?:pytest|tox|nox|jest|vitest|mocha|rspec|phpunit"
    r"|python -m (?:pytest|unittest)"
    r"|(?:npm|yarn|pnpm|bun) (?:run )?test"
    r"|go test|cargo test|mvn test|gradle test|dotnet test|make test)\b"
)


def has_completion_marker(text: str | None) -> bool:
    return bool(text) and COMPLETION_MARKER_RE.search(text) is not None


def detect_progress(previous: ProgressMetrics, current: ProgressMetrics) -> bool:
    """True when files, commits or test runs strictly increased."""
    return (
        current.file_count > previous.file_count
        or current.commit_count > previous.commit_count
        or current.test_count > previous.test_count
    )


class ExecutionLoop:
    """Runs iterations until a stop condition fires.

    Each iteration pulls (or keeps) one task, hands the rendered prompt to the
    agent, folds the tool executions into progress metrics and moves the task
    along. ``pause`` and ``stop`` are only observed between iterations.
    """

    def __init__(self, config: Config | None = None):
        self.config = config or Config()
        self._running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        log.info("Stop requested")
        self._stop_requested = True

    # ------------------------------------------------------------------
    # Stop conditions
    # ------------------------------------------------------------------

    def stop_reason(self, state: ExecutionState) -> StopReason | None:
        """Classify why the loop should stop, or None to keep going."""
        if self._stop_requested:
            return "stopped"
        if state.paused:
            return "paused"
        if state.phase == "complete":
            return "complete"
        if state.iteration >= self.config.loop.max_iterations:
            return "max_iterations"
        if state.unrecovered_error_count >= self.config.error_recovery.max_errors:
            return "too_many_errors"
        if state.metrics.no_progress_count >= self.config.error_recovery.max_no_progress:
            return "no_progress"
        return None

    def should_continue(self, state: ExecutionState) -> bool:
        return self.stop_reason(state) is None

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def increment_iteration(self, state: ExecutionState) -> None:
        state.iteration += 1
        state.phase_iteration += 1
        state.last_activity_at = utcnow()

    def update_progress(self, state: ExecutionState, executions: list[ToolExecution]) -> None:
        """Fold tool executions into the run's progress counters."""
        metrics = state.metrics
        for execution in executions:
            result = execution.result
            if not result.success:
                continue
            metrics.file_count += len(result.files_changed)
            name = execution.call.name
            if name == "git_commit":
                metrics.commit_count += 1
                commit_hash = parse_commit_hash(result.text)
                if commit_hash:
                    metrics.last_commit_hash = commit_hash
            elif name == "shell_exec":
                command = str(execution.call.arguments.get("command", ""))
                if TEST_COMMAND_RE.search(command):
                    metrics.test_count += 1

    def record_progress(self, state: ExecutionState, previous: ProgressMetrics) -> bool:
        if detect_progress(previous, state.metrics):
            state.metrics.no_progress_count = 0
            return True
        state.metrics.no_progress_count += 1
        log.debug("No progress this iteration", streak=state.metrics.no_progress_count)
        return False

    async def sleep(self) -> None:
        delay = float(self.config.loop.sleep_between_iterations)
        if delay > 0:
            await asyncio.sleep(delay)

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    async def _select_task(self, state: ExecutionState, planner: TaskPlanner) -> bool:
        """Make sure there is a current task; False when the queue is drained."""
        if state.current_task is not None:
            return True
        task = planner.get_next_task(state)
        if task is None:
            log.info("No pending tasks, marking run complete")
            state.phase = "complete"
            return False
        await planner.update_task(task.id, status=IN_PROGRESS)
        state.current_task = task
        if task.phase != state.phase:
            state.phase = task.phase
            state.phase_iteration = 1
        log.info("Starting task", task_id=task.id, phase=task.phase, attempt=task.attempts)
        return True

    async def _apply_result(
        self,
        state: ExecutionState,
        planner: TaskPlanner,
        context_manager: ContextManager,
        result: AgentResult,
    ) -> None:
        task = state.current_task
        if task is None:
            return

        for execution in result.tool_executions:
            context_manager.add_tool_result(execution.call.name, execution.result)
        if result.response:
            context_manager.add_assistant_message(result.response)

        if not result.success:
            error = result.error or "Agent execution failed"
            log.warning("Agent execution failed", task_id=task.id, error=error)
            await planner.update_task(task.id, status=FAILED)
            await planner.record_task_error(task.id, error, recoverable=True)
            state.errors.append(ExecutionError(
                iteration=state.iteration,
                phase=state.phase,
                error=error,
                recovered=True,
            ))
            state.current_task = None
            return

        if has_completion_marker(result.response):
            await planner.update_task(task.id, status=COMPLETED)
            log.info("Task completed", task_id=task.id, iterations=state.phase_iteration)
            state.current_task = None
        else:
            log.debug("Task still in progress", task_id=task.id)

    async def run_iteration(
        self,
        state: ExecutionState,
        agent: AIAgent,
        planner: TaskPlanner,
        context_manager: ContextManager,
    ) -> None:
        """Run one iteration; exceptions are recorded rather than raised."""
        previous = state.metrics.snapshot()
        self.increment_iteration(state)
        log.info("Iteration started", iteration=state.iteration, phase=state.phase)

        try:
            if not await self._select_task(state, planner):
                return

            task = state.current_task
            tools = agent.adapter.registry.get_all()
            context = context_manager.build_context(task, tools, state)
            prompt = context_manager.build_prompt(task, state)
            result = await agent.execute(prompt, context)
            self.update_progress(state, result.tool_executions)
            await self._apply_result(state, planner, context_manager, result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Iteration failed", iteration=state.iteration, error=str(e), exc_info=True)
            state.errors.append(ExecutionError(
                iteration=state.iteration,
                phase=state.phase,
                error=str(e) or type(e).__name__,
            ))
            task = state.current_task
            if task is not None:
                await planner.update_task(task.id, status=FAILED)
                await planner.record_task_error(task.id, str(e), recoverable=False)
                state.current_task = None

        if state.phase != "complete":
            self.record_progress(state, previous)

    async def run(
        self,
        state: ExecutionState,
        agent: AIAgent,
        planner: TaskPlanner,
        context_manager: ContextManager,
    ) -> StopReason:
        """Iterate until a stop condition fires and return which one.

        Raises:
            LoopError if the loop is already running
        """
        if self._running:
            raise LoopError("Execution loop is already running")
        self._running = True
        self._stop_requested = False
        log.info(
            "Execution loop started",
            max_iterations=self.config.loop.max_iterations,
            engine=agent.get_engine_name(),
        )
        try:
            while True:
                reason = self.stop_reason(state)
                if reason is not None:
                    break
                await self.run_iteration(state, agent, planner, context_manager)
                if self.should_continue(state):
                    await self.sleep()
        finally:
            self._running = False

        state.stop_reason = reason
        log.info(
            "Execution loop stopped",
            reason=reason,
            iterations=state.iteration,
            errors=state.unrecovered_error_count,
        )
        return reason
