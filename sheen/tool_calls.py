"""Bridge between model output and tool execution.

Two input protocols are supported:

* the text marker protocol, where the model writes
  ``TOOL_CALL: {"tool": "name", "parameters": {...}}`` inside free text;
* the structured protocol, where the backend already returns tool-call
  objects.

Both normalize to :class:`sheen.llm.ToolCall`. Results go back either as
conversational text or as tool-role messages.
"""

import json
import secrets
import time
from dataclasses import dataclass
from typing import Any

from sheen.exceptions import PermissionDeniedError
from sheen.llm import Message, ToolCall
from sheen.logging import get_logger
from sheen.permissions import PermissionGate
from sheen.tools.registry import ToolContext, ToolRegistry, ToolResult, describe_parameters

log = get_logger(__name__)

TOOL_CALL_MARKER = "TOOL_CALL:"


def generate_call_id() -> str:
    return f"tool_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class ToolExecution:
    """One executed (or declined) tool call."""

    call: ToolCall
    result: ToolResult
    duration_ms: int = 0
    declined: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "call": self.call.to_dict(),
            "result": self.result.model_dump(),
            "duration_ms": self.duration_ms,
            "declined": self.declined,
        }


@dataclass
class ValidationOutcome:
    valid: bool
    error: str | None = None


def _extract_json_object(text: str, start: int) -> tuple[str, int] | None:
    """Return the balanced ``{...}`` fragment starting at ``start`` and its end index.

    Braces inside JSON string literals are ignored.
    """
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1], index + 1
    return None


def _coerce_arguments(raw: Any) -> dict[str, Any] | None:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            return {}
        try:
            decoded = json.loads(stripped)
        except json.JSONDecodeError:
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


class ToolCallAdapter:
    """Parse, gate, execute and format tool calls."""

    def __init__(self, registry: ToolRegistry, gate: PermissionGate | None = None):
        self.registry = registry
        self.gate = gate

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_tool_calls(self, text: str) -> list[ToolCall]:
        """Extract ``TOOL_CALL: {json}`` fragments from model text.

        Fragments that are not valid JSON, or lack ``tool``/``parameters``,
        are skipped.
        """
        calls: list[ToolCall] = []
        if not text:
            return calls

        position = 0
        while True:
            marker = text.find(TOOL_CALL_MARKER, position)
            if marker < 0:
                break
            cursor = marker + len(TOOL_CALL_MARKER)
            while cursor < len(text) and text[cursor].isspace():
                cursor += 1
            extracted = _extract_json_object(text, cursor)
            if extracted is None:
                position = cursor
                continue
            fragment, position = extracted
            try:
                payload = json.loads(fragment)
            except json.JSONDecodeError:
                log.warning("Failed to parse tool call", fragment=fragment[:200])
                continue
            if not isinstance(payload, dict):
                continue
            name = payload.get("tool")
            parameters = payload.get("parameters")
            if not name or not isinstance(parameters, dict):
                continue
            call = ToolCall(
                id=str(payload.get("id") or generate_call_id()),
                name=str(name),
                arguments=parameters,
            )
            log.debug("Parsed tool call", tool=call.name, call_id=call.id)
            calls.append(call)
        return calls

    def normalize_tool_calls(self, raw_calls: list[Any] | None) -> list[ToolCall]:
        """Normalize structured tool calls (objects or dicts) into ToolCall."""
        calls: list[ToolCall] = []
        for raw in raw_calls or []:
            if isinstance(raw, ToolCall):
                calls.append(ToolCall(
                    id=raw.id or generate_call_id(),
                    name=raw.name,
                    arguments=dict(raw.arguments or {}),
                ))
                continue

            if isinstance(raw, dict):
                getter = raw.get
            else:
                def getter(key: str, default: Any = None, _obj: Any = raw) -> Any:
                    return getattr(_obj, key, default)

            function = getter("function")
            if isinstance(function, dict):
                name = function.get("name")
                arguments = function.get("arguments")
            else:
                name = getter("tool") or getter("name") or getter("toolName")
                arguments = getter("parameters")
                if arguments is None:
                    arguments = getter("arguments")
                if arguments is None:
                    arguments = getter("args")

            decoded = _coerce_arguments(arguments)
            if not name or decoded is None:
                log.warning("Skipping malformed structured tool call", raw=str(raw)[:200])
                continue
            calls.append(ToolCall(
                id=str(getter("id") or getter("toolCallId") or generate_call_id()),
                name=str(name),
                arguments=decoded,
            ))
        return calls

    def validate_tool_call(self, call: ToolCall) -> ValidationOutcome:
        if not self.registry.has(call.name):
            return ValidationOutcome(False, f"Tool '{call.name}' not found")
        if not isinstance(call.arguments, dict):
            return ValidationOutcome(False, "Invalid parameters format")
        return ValidationOutcome(True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_tool_calls(self, calls: list[ToolCall], context: ToolContext) -> list[ToolExecution]:
        """Run calls in order through the permission gate and the registry."""
        executions: list[ToolExecution] = []
        for call in calls:
            started = time.monotonic()
            if self.gate is not None and not self.gate.check_permission(call.name, call.arguments):
                log.info("Tool call declined", tool=call.name, call_id=call.id)
                executions.append(ToolExecution(
                    call=call,
                    result=ToolResult(
                        success=False,
                        error=str(PermissionDeniedError(call.name, "not approved")),
                    ),
                    duration_ms=int((time.monotonic() - started) * 1000),
                    declined=True,
                ))
                continue

            log.info("Executing tool", tool=call.name, call_id=call.id)
            result = await self.registry.execute(call.name, call.arguments, context)
            duration_ms = int((time.monotonic() - started) * 1000)
            if result.success:
                log.info("Tool succeeded", tool=call.name, duration_ms=duration_ms)
            else:
                log.warning("Tool failed", tool=call.name, error=result.error)
            executions.append(ToolExecution(call=call, result=result, duration_ms=duration_ms))
        return executions

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    @staticmethod
    def _render_output(output: Any) -> list[str]:
        if output is None:
            return []
        if isinstance(output, str):
            return [f"**Output**:\n```\n{output}\n```"]
        rendered = json.dumps(output, indent=2, default=str)
        if isinstance(output, (list, tuple)):
            return [f"**Output**: {len(output)} items", f"```json\n{rendered}\n```"]
        return [f"```json\n{rendered}\n```"]

    def format_tool_results(self, executions: list[ToolExecution]) -> str:
        """Render executions as text for the marker protocol's next turn."""
        if not executions:
            return "No tool calls executed."

        lines: list[str] = ["# Tool Execution Results", ""]
        for execution in executions:
            result = execution.result
            if execution.declined:
                status = "DECLINED"
            else:
                status = "SUCCESS" if result.success else "FAILED"
            lines.append(f"## Tool: {execution.call.name}")
            lines.append(f"**Parameters**: {json.dumps(execution.call.arguments, default=str)}")
            lines.append(f"**Duration**: {execution.duration_ms}ms")
            lines.append(f"**Status**: {status}")
            if result.success:
                lines.extend(self._render_output(result.output))
                if result.files_changed:
                    lines.append(f"**Files Changed**: {', '.join(result.files_changed)}")
            else:
                lines.append(f"**Error**: {result.error}")
            if result.exit_code is not None:
                lines.append(f"**Exit Code**: {result.exit_code}")
            lines.append("")
        return "\n".join(lines)

    def structured_tool_results(self, executions: list[ToolExecution]) -> list[Message]:
        """Render executions as tool-role messages for native tool calling."""
        messages: list[Message] = []
        for execution in executions:
            payload = {
                "success": execution.result.success,
                "output": execution.result.output,
                "error": execution.result.error,
                "files_changed": execution.result.files_changed,
                "exit_code": execution.result.exit_code,
            }
            if execution.declined:
                payload["declined"] = True
            messages.append(Message(
                role="tool",
                content=json.dumps(payload, default=str),
                tool_call_id=execution.call.id,
                tool_name=execution.call.name,
            ))
        return messages

    def format_tool_catalog(self) -> str:
        """Describe available tools and the marker invocation format."""
        tools = self.registry.get_all()
        if not tools:
            return "No tools available."

        lines: list[str] = ["# Available Tools", ""]
        lines.append(f"You can use the following tools by outputting {TOOL_CALL_MARKER} followed by JSON.")
        lines.append(f'Format: {TOOL_CALL_MARKER} {{"tool": "tool_name", "parameters": {{...}}}}')
        lines.append("")
        for tool in tools:
            lines.append(f"## {tool.name}")
            lines.append(f"**Description**: {tool.description}")
            lines.append(f"**Category**: {tool.category}")
            lines.append("**Parameters**:")
            lines.extend(describe_parameters(tool, indent="  "))
            lines.append("")
        return "\n".join(lines)

    def summarize_execution(self, executions: list[ToolExecution]) -> str:
        """One-line summary of a batch of executions."""
        successful = sum(1 for item in executions if item.result.success)
        declined = sum(1 for item in executions if item.declined)
        failed = len(executions) - successful - declined
        total_ms = sum(item.duration_ms for item in executions)

        parts = [
            f"Executed {len(executions)} tool call(s)",
            f"{successful} succeeded, {failed} failed",
        ]
        if declined:
            parts.append(f"{declined} declined")
        parts.append(f"Total time: {total_ms}ms")

        changed: set[str] = set()
        for item in executions:
            changed.update(item.result.files_changed)
        if changed:
            parts.append(f"{len(changed)} file(s) modified")
        return ", ".join(parts)
