"""Write tool for writing file contents."""

import os
from typing import Any

from sheen.logging import get_logger
from sheen.tools.registry import Tool, ToolContext, ToolResult

log = get_logger(__name__)


class WriteTool(Tool):
    """Write content to files."""

    name = "write_file"
    description = "Write content to a file (creates the file and parent directories if missing)."
    category = "file"
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "File path (relative to working directory)",
            },
            "content": {
                "type": "string",
                "description": "Content to write",
            },
            "append": {
                "type": "boolean",
                "description": "Append to file instead of overwriting",
            },
        },
        "required": ["path", "content"],
    }

    async def execute(self, path: str, content: str, append: bool = False, **kwargs: Any) -> ToolResult:
        """Write content to a file.

        Args:
            path: Path to file, relative paths anchored at the project root
            content: Content to write
            append: Whether to append instead of overwrite

        Returns:
            ToolResult listing the changed file
        """
        context: ToolContext = kwargs["_context"]
        file_path = context.resolve_path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        mode = "a" if append else "w"
        with open(file_path, mode, encoding="utf-8") as f:
            f.write(content)

        try:
            changed = os.path.relpath(file_path, context.working_dir)
        except ValueError:
            changed = str(file_path)

        log.info("Wrote file", path=str(file_path), chars=len(content), append=append)
        return ToolResult(
            success=True,
            output=f"Written {len(content)} chars to {changed}",
            files_changed=[changed],
        )
