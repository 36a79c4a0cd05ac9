from pathlib import Path

from sheen.config import Config
from sheen.context import ContextManager, summarize_tool_result
from sheen.models import ExecutionState, Task, TaskError, UserMessage
from sheen.project import GitInfo, ProjectContext
from sheen.tools.registry import ToolContext, ToolResult


def _manager(tmp_path: Path, **config_overrides) -> ContextManager:
    config = Config()
    for key, value in config_overrides.items():
        setattr(config.context, key, value)
    project = ProjectContext(
        root_dir=str(tmp_path),
        language="python",
        test_framework="pytest",
        git=GitInfo(initialized=True, branch="main"),
    )
    return ContextManager(project, config)


def test_summarize_tool_result_variants():
    assert summarize_tool_result("t", None) == "no result"
    assert summarize_tool_result("t", ToolResult(success=False, error="boom")) == "failed - boom"
    assert summarize_tool_result("t", ToolResult(success=True, output="ok")) == "success - ok"
    long = summarize_tool_result("t", {"success": True, "output": "x" * 150})
    assert long == "success - " + "x" * 100 + "..."
    changed = summarize_tool_result("t", ToolResult(success=True, files_changed=["a", "b"]))
    assert changed == "success - 2 file(s) changed"


def test_history_auto_prunes_at_one_and_a_half_times_limit(tmp_path: Path):
    manager = _manager(tmp_path, max_history_entries=4)

    for index in range(6):
        manager.add_user_message(f"m{index}")
    assert len(manager.get_history()) == 6

    manager.add_assistant_message("m6")
    history = manager.get_history()
    assert [entry.content for entry in history] == ["m3", "m4", "m5", "m6"]


def test_tool_results_are_summarized_into_history(tmp_path: Path):
    manager = _manager(tmp_path)

    manager.add_tool_result("shell_exec", ToolResult(success=False, error="exit 1"))

    entry = manager.get_history()[0]
    assert entry.role == "tool"
    assert entry.content == "Tool 'shell_exec': failed - exit 1"
    assert manager.history_summary() == "History: 1 entries (0 user, 0 assistant, 1 tool)"

    manager.clear_history()
    assert manager.get_history() == []


def test_build_context_carries_state_and_history(tmp_path: Path):
    manager = _manager(tmp_path)
    manager.tool_context = ToolContext(working_dir=tmp_path)
    state = ExecutionState(project_context=manager.project_context)
    task = Task(id="t1", description="Add login")
    manager.add_user_message("Add login")

    context = manager.build_context(task, [], state)

    assert context.execution_state is state
    assert context.project_context is manager.project_context
    assert [entry.content for entry in context.conversation_history] == ["Add login"]
    assert context.resolve_tool_context() is manager.tool_context
    assert manager.estimate_context_size(context) > 0


def test_build_prompt_includes_sections_and_marks_messages(tmp_path: Path):
    manager = _manager(tmp_path)
    state = ExecutionState(project_context=manager.project_context)
    state.user_messages.append(UserMessage(message="Prefer httpx over requests"))
    task = Task(
        id="t1",
        description="Add login",
        phase="validation",
        attempts=2,
        errors=[TaskError(message="tests failed")],
    )
    manager.add_assistant_message("Created auth module")

    prompt = manager.build_prompt(task, state, tool_catalog="# Available Tools")

    assert f"**Directory**: {tmp_path}" in prompt
    assert "**Language**: python" in prompt
    assert "- Branch: main" in prompt
    assert "**Description**: Add login" in prompt
    assert "**Attempt**: 3" in prompt
    assert "- tests failed" in prompt
    assert "**ASSISTANT**: Created auth module" in prompt
    assert "- Prefer httpx over requests" in prompt
    assert "# Available Tools" in prompt
    assert "VALIDATION COMPLETE" in prompt
    assert "TASK COMPLETE" in prompt
    assert "\n\n\n" not in prompt
    assert state.pending_user_messages() == []


def test_build_prompt_without_optional_sections(tmp_path: Path):
    manager = _manager(tmp_path)
    state = ExecutionState(project_context=manager.project_context)

    prompt = manager.build_prompt(Task(id="t", description="Only task"), state)

    assert "## Recent History" not in prompt
    assert "## Messages From The User" not in prompt
    assert "{tool_catalog}" not in prompt


def test_prompt_history_section_is_limited_to_recent_entries(tmp_path: Path):
    manager = _manager(tmp_path)
    for index in range(8):
        manager.add_user_message(f"note-{index}")

    prompt = manager.build_prompt(None, ExecutionState())

    assert "note-2" not in prompt
    assert "note-3" in prompt
    assert "note-7" in prompt


def test_project_prompt_override(tmp_path: Path):
    overrides = tmp_path / ".sheen" / "prompts"
    overrides.mkdir(parents=True)
    (overrides / "task_prompt.md").write_text("CUSTOM $task_section $unknown", encoding="utf-8")
    manager = ContextManager(ProjectContext(root_dir=str(tmp_path)))

    prompt = manager.build_prompt(Task(id="t", description="Custom"), ExecutionState())

    assert prompt.startswith("CUSTOM ## Current Task")
    assert prompt.endswith("$unknown")
    assert manager.templates.is_overridden("task_prompt.md")
    assert not manager.templates.is_overridden("system_prompt.md")
    assert str(tmp_path) in manager.render_system_prompt()
