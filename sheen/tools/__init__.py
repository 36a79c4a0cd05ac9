"""Tools package for Sheen."""

from sheen.config import Config
from sheen.logging import get_logger
from sheen.tools.edit import EditTool
from sheen.tools.git import GitCommitTool, GitDiffTool, GitStatusTool
from sheen.tools.glob import ListFilesTool
from sheen.tools.grep import SearchFilesTool
from sheen.tools.read import ReadTool
from sheen.tools.registry import Tool, ToolContext, ToolRegistry, ToolResult
from sheen.tools.shell import ShellTool
from sheen.tools.todo import TodoTool
from sheen.tools.write import WriteTool

log = get_logger(__name__)


def build_default_tools(config: Config) -> list[Tool]:
    """Instantiate the built-in tools listed in ``config.tools.enabled``."""
    available: dict[str, Tool] = {
        tool.name: tool
        for tool in (
            ShellTool(config),
            ReadTool(),
            WriteTool(),
            EditTool(),
            ListFilesTool(),
            SearchFilesTool(),
            GitStatusTool(),
            GitDiffTool(),
            GitCommitTool(),
            TodoTool(),
        )
    }
    tools: list[Tool] = []
    for name in config.tools.enabled:
        tool = available.get(name)
        if tool is None:
            log.warning("Unknown tool in config", tool=name)
            continue
        tools.append(tool)
    return tools


def create_tool_registry(config: Config) -> ToolRegistry:
    """Create a registry holding the enabled built-in tools."""
    registry = ToolRegistry()
    registry.register_all(build_default_tools(config))
    return registry


__all__ = [
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
    "build_default_tools",
    "create_tool_registry",
    "ShellTool",
    "ReadTool",
    "WriteTool",
    "EditTool",
    "ListFilesTool",
    "SearchFilesTool",
    "GitStatusTool",
    "GitDiffTool",
    "GitCommitTool",
    "TodoTool",
]
