"""Per-iteration context and prompt building."""

from __future__ import annotations

import math
import re
from typing import Any

from sheen.agents.base import AgentContext, HistoryEntry
from sheen.config import Config
from sheen.logging import get_logger
from sheen.models import ExecutionState, Task
from sheen.project import ProjectContext
from sheen.prompts import PromptTemplates
from sheen.tools.registry import Tool, ToolContext, ToolResult

log = get_logger(__name__)

HISTORY_PROMPT_ENTRIES = 5
PREVIEW_CHARS = 100
_BLANK_RUN_RE = re.compile(r"\n{3,}")

_PHASE_MARKERS = {
    "discovery": "DISCOVERY COMPLETE",
    "planning": "PLANNING COMPLETE",
    "implementation": "IMPLEMENTATION COMPLETE",
    "validation": "VALIDATION COMPLETE",
}


def summarize_tool_result(tool_name: str, result: Any) -> str:
    """Short, human-readable summary of a tool result."""
    if result is None:
        return "no result"
    if isinstance(result, ToolResult):
        result = result.model_dump()
    if isinstance(result, dict):
        if result.get("success") is False:
            return f"failed - {result.get('error') or 'unknown error'}"
        if result.get("success") is True:
            output = result.get("output")
            if output:
                text = str(output)
                preview = text[:PREVIEW_CHARS] + "..." if len(text) > PREVIEW_CHARS else text
                return f"success - {preview}"
            if result.get("files_changed"):
                return f"success - {len(result['files_changed'])} file(s) changed"
            return "success"
        return str(result)[:PREVIEW_CHARS]
    return str(result)[:PREVIEW_CHARS]


class ContextManager:
    """Recent loop history plus prompt rendering for the current task."""

    def __init__(
        self,
        project_context: ProjectContext,
        config: Config | None = None,
        templates: PromptTemplates | None = None,
        tool_context: ToolContext | None = None,
    ):
        self.project_context = project_context
        self.config = config or Config()
        self.templates = templates or PromptTemplates(project_context.root_dir)
        self.tool_context = tool_context
        self.max_history_entries = max(1, self.config.context.max_history_entries)
        self._history: list[HistoryEntry] = []

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _add_entry(self, entry: HistoryEntry) -> None:
        self._history.append(entry)
        if len(self._history) > self.max_history_entries * 1.5:
            self._prune_history()

    def _prune_history(self) -> None:
        if len(self._history) <= self.max_history_entries:
            return
        removed = len(self._history) - self.max_history_entries
        self._history = self._history[-self.max_history_entries:]
        log.debug("Pruned old history entries", removed=removed)

    def add_user_message(self, message: str) -> None:
        self._add_entry(HistoryEntry(role="user", content=message))

    def add_assistant_message(self, message: str) -> None:
        self._add_entry(HistoryEntry(role="assistant", content=message))

    def add_tool_result(self, tool_name: str, result: Any) -> None:
        summary = summarize_tool_result(tool_name, result)
        self._add_entry(HistoryEntry(role="tool", content=f"Tool '{tool_name}': {summary}"))

    def get_history(self) -> list[HistoryEntry]:
        return list(self._history)

    def clear_history(self) -> None:
        log.debug("Clearing context history")
        self._history = []

    def history_summary(self) -> str:
        users = sum(1 for entry in self._history if entry.role == "user")
        assistants = sum(1 for entry in self._history if entry.role == "assistant")
        tools = sum(1 for entry in self._history if entry.role == "tool")
        return (
            f"History: {len(self._history)} entries "
            f"({users} user, {assistants} assistant, {tools} tool)"
        )

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def build_context(self, task: Task | None, tools: list[Tool], state: ExecutionState) -> AgentContext:
        log.debug(
            "Building agent context",
            task_id=task.id if task else None,
            tools=len(tools),
            history=len(self._history),
        )
        self._prune_history()
        return AgentContext(
            project_context=self.project_context,
            execution_state=state,
            config=self.config,
            conversation_history=list(self._history),
            tool_context=self.tool_context,
        )

    def estimate_context_size(self, context: AgentContext, tools: list[Tool] | None = None) -> int:
        """Approximate token count of a context (history, tools, current task)."""
        chars = sum(len(entry.content) for entry in context.conversation_history)
        for tool in tools or []:
            chars += len(tool.name) + len(tool.description) + len(str(tool.parameters))
        task = context.execution_state.current_task
        if task is not None:
            chars += len(task.description)
        chars += 500
        return math.ceil(chars / 4)

    # ------------------------------------------------------------------
    # Prompt sections
    # ------------------------------------------------------------------

    def _project_section(self) -> str:
        project = self.project_context
        lines = ["## Project Context", "", f"**Directory**: {project.root_dir}"]
        if project.language:
            lines.append(f"**Language**: {project.language}")
        if project.framework:
            lines.append(f"**Framework**: {project.framework}")
        if project.package_manager:
            lines.append(f"**Package Manager**: {project.package_manager}")
        if project.test_framework:
            lines.append(f"**Test Framework**: {project.test_framework}")
        if project.git is not None:
            lines.extend(["", "**Git**:", f"- Initialized: {project.git.initialized}"])
            if project.git.branch:
                lines.append(f"- Branch: {project.git.branch}")
            if project.git.has_uncommitted_changes:
                lines.append("- Uncommitted changes: yes")
        return "\n".join(lines)

    @staticmethod
    def _task_section(task: Task | None) -> str:
        if task is None:
            return ""
        lines = [
            "## Current Task",
            "",
            f"**ID**: {task.id}",
            f"**Description**: {task.description}",
            f"**Phase**: {task.phase}",
            f"**Priority**: {task.priority}",
            f"**Status**: {task.status}",
        ]
        if task.attempts > 0:
            lines.append(f"**Attempt**: {task.attempts + 1}")
        if task.dependencies:
            lines.append(f"**Dependencies**: {', '.join(task.dependencies)}")
        if task.errors:
            lines.append("")
            lines.append("**Previous errors**:")
            lines.extend(f"- {error.message}" for error in task.errors[-3:])
        return "\n".join(lines)

    def _history_section(self) -> str:
        if not self._history:
            return ""
        lines = ["## Recent History", ""]
        for entry in self._history[-HISTORY_PROMPT_ENTRIES:]:
            lines.append(f"**{entry.role.upper()}**: {entry.content}")
            lines.append("")
        return "\n".join(lines).rstrip()

    @staticmethod
    def _user_messages_section(state: ExecutionState) -> str:
        pending = state.pending_user_messages()
        if not pending:
            return ""
        lines = ["## Messages From The User", ""]
        for item in pending:
            lines.append(f"- {item.message}")
            item.processed = True
        return "\n".join(lines)

    def build_prompt(self, task: Task | None, state: ExecutionState, tool_catalog: str | None = None) -> str:
        """Render the task prompt.

        Pending user messages are included and marked processed.
        """
        phase = task.phase if task is not None else state.phase
        prompt = self.templates.render(
            "task_prompt.md",
            project_section=self._project_section(),
            task_section=self._task_section(task),
            history_section=self._history_section(),
            user_messages_section=self._user_messages_section(state),
            tool_catalog=tool_catalog or "",
            phase_marker=_PHASE_MARKERS.get(phase, "TASK COMPLETE"),
        )
        prompt = _BLANK_RUN_RE.sub("\n\n", prompt).strip()
        log.debug("Prompt built", chars=len(prompt))
        return prompt

    def render_system_prompt(self) -> str:
        return self.templates.render("system_prompt.md", root_dir=self.project_context.root_dir)
