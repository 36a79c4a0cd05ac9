"""Tool registry and base tool class."""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from sheen.config import Config
from sheen.exceptions import ToolExecutionError, ToolNotFoundError, ToolValidationError
from sheen.logging import get_logger
from sheen.project import ProjectContext

log = get_logger(__name__)

_JSON_TYPE_CHECKS: dict[str, Any] = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, (list, tuple)),
    "object": lambda v: isinstance(v, dict),
}


def _json_type_name(value: Any) -> str:
    """Describe a Python value with its JSON type name."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    output: Any = None
    error: str | None = None
    files_changed: list[str] = Field(default_factory=list)
    exit_code: int | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = str(self.output or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    @property
    def text(self) -> str:
        """Output (or error) rendered as plain text."""
        if not self.success:
            return f"Error: {self.error}"
        if self.output is None:
            return ""
        return self.output if isinstance(self.output, str) else str(self.output)


@dataclass
class ToolContext:
    """Runtime context handed to every tool invocation."""

    working_dir: Path
    config: Config = field(default_factory=Config)
    project_context: ProjectContext | None = None
    planner: Any = None

    @classmethod
    def for_project(
        cls,
        project_context: ProjectContext,
        config: Config,
        planner: Any = None,
    ) -> "ToolContext":
        return cls(
            working_dir=Path(project_context.root_dir),
            config=config,
            project_context=project_context,
            planner=planner,
        )

    def resolve_path(self, path: str) -> Path:
        """Resolve ``path`` relative to the working directory."""
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.working_dir / candidate
        return candidate.resolve()


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    category: str = "custom"
    parameters: dict[str, Any] = {"type": "object", "properties": {}, "required": []}
    timeout_seconds: float = 30.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments plus ``_context`` (ToolContext)

        Returns:
            ToolResult with success status and output
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for LLM.

        Returns:
            OpenAI function-style definition
        """
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate required arguments and primitive JSON types.

        Raises:
            ToolValidationError if invalid
        """
        if not isinstance(arguments, dict):
            raise ToolValidationError(self.name, "Invalid parameters format")

        required = self.parameters.get("required", [])
        for name in required:
            if name not in arguments:
                raise ToolValidationError(self.name, f"Missing required parameter: {name}")

        properties = self.parameters.get("properties", {})
        for name, value in arguments.items():
            spec = properties.get(name)
            if not isinstance(spec, dict):
                continue
            expected = spec.get("type")
            if value is None and name not in required:
                continue
            check = _JSON_TYPE_CHECKS.get(str(expected or ""))
            if check is not None and not check(value):
                raise ToolValidationError(
                    self.name,
                    f"Parameter '{name}' should be {expected}, got {_json_type_name(value)}",
                )


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool, overwriting an existing tool with the same name.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        if tool.name in self._tools:
            log.warning("Tool already registered, overwriting", tool=tool.name)
        self._tools[tool.name] = tool
        log.debug("Registered tool", tool=tool.name, category=tool.category)

    def register_all(self, tools: list[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> None:
        """Unregister a tool.

        Args:
            name: Tool name to unregister
        """
        self._tools.pop(name, None)

    def has(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def get_all(self) -> list[Tool]:
        return list(self._tools.values())

    def get_by_category(self, category: str) -> list[Tool]:
        return [tool for tool in self._tools.values() if tool.category == category]

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions for LLM."""
        return [tool.get_definition() for tool in self._tools.values()]

    def count(self) -> int:
        return len(self._tools)

    def clear(self) -> None:
        self._tools.clear()

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ToolContext,
    ) -> ToolResult:
        """Execute a tool by name.

        Validation failures, handler exceptions and timeouts are returned as
        failed results; nothing but cancellation escapes this method.

        Args:
            name: Tool name
            arguments: Tool arguments
            context: Runtime tool context

        Returns:
            ToolResult from execution
        """
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult(success=False, error=str(ToolNotFoundError(name)))

        try:
            tool.validate_arguments(arguments)
        except ToolValidationError as e:
            log.warning("Tool parameters rejected", tool=name, error=str(e))
            return ToolResult(success=False, error=str(e))

        timeout_seconds = max(1.0, float(getattr(tool, "timeout_seconds", 30.0) or 30.0))
        started = time.monotonic()
        try:
            log.debug("Executing tool", tool=name, args=arguments)
            result = await asyncio.wait_for(
                tool.execute(**arguments, _context=context),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            log.error("Tool timed out", tool=name, timeout=timeout_seconds)
            return ToolResult(success=False, error=f"Tool '{name}' timed out after {label}s")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            return ToolResult(
                success=False,
                error=str(ToolExecutionError(name, str(e) or type(e).__name__)),
            )

        if not isinstance(result, ToolResult):
            return ToolResult(success=False, error=f"Tool '{name}' returned invalid result payload")

        duration_ms = int((time.monotonic() - started) * 1000)
        log.debug("Tool executed", tool=name, success=result.success, duration_ms=duration_ms)
        return result

    def generate_docs(self) -> str:
        """Render registered tools as a markdown reference grouped by category."""
        lines: list[str] = ["# Available Tools", ""]
        categories: list[str] = []
        for tool in self._tools.values():
            if tool.category not in categories:
                categories.append(tool.category)

        for category in categories:
            lines.append(f"## {category.upper()}")
            lines.append("")
            for tool in self.get_by_category(category):
                lines.append(f"### {tool.name}")
                lines.append(f"**Description**: {tool.description}")
                lines.append("")
                lines.append("**Parameters**:")
                lines.extend(describe_parameters(tool))
                lines.append("")
        return "\n".join(lines)


def describe_parameters(tool: Tool, indent: str = "") -> list[str]:
    """Describe a tool's parameters as markdown bullet lines."""
    properties = tool.parameters.get("properties", {}) or {}
    required = set(tool.parameters.get("required", []) or [])
    if not properties:
        return [f"{indent}- (none)"]
    lines: list[str] = []
    for param_name, spec in properties.items():
        spec = spec if isinstance(spec, dict) else {}
        flag = "(required)" if param_name in required else "(optional)"
        default = f" [default: {spec['default']}]" if "default" in spec else ""
        lines.append(
            f"{indent}- `{param_name}` ({spec.get('type', 'any')}) {flag}: "
            f"{spec.get('description', '')}{default}"
        )
    return lines
