"""Read tool for reading file contents."""

from typing import Any

from sheen.logging import get_logger
from sheen.tools.registry import Tool, ToolContext, ToolResult

log = get_logger(__name__)

MAX_READ_BYTES = 1_000_000


class ReadTool(Tool):
    """Read file contents."""

    name = "read_file"
    description = "Read the contents of a file (path relative to the project root)."
    category = "file"
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "File path (relative to working directory)",
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of lines to read",
            },
            "offset": {
                "type": "integer",
                "description": "Line number to start reading from (1-indexed)",
            },
        },
        "required": ["path"],
    }

    async def execute(
        self,
        path: str,
        limit: int | None = None,
        offset: int | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        context: ToolContext = kwargs["_context"]
        file_path = context.resolve_path(path)

        if not file_path.exists():
            return ToolResult(success=False, error=f"File not found: {path}")
        if not file_path.is_file():
            return ToolResult(success=False, error=f"Not a file: {path}")

        file_size = file_path.stat().st_size
        if file_size > MAX_READ_BYTES:
            return ToolResult(
                success=False,
                error=f"File too large: {file_size} bytes (max {MAX_READ_BYTES})",
            )

        try:
            content = file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return ToolResult(success=False, error=f"Not a UTF-8 text file: {path}")

        if offset or limit:
            lines = content.splitlines()
            start = max(0, (offset or 1) - 1)
            lines = lines[start:]
            if limit:
                lines = lines[:limit]
            content = "\n".join(lines)

        log.debug("Read file", path=str(file_path), chars=len(content))
        return ToolResult(success=True, output=content)
