"""Edit tool for exact search-and-replace inside a file."""

import os
from typing import Any

from sheen.logging import get_logger
from sheen.tools.registry import Tool, ToolContext, ToolResult

log = get_logger(__name__)


class EditTool(Tool):
    """Replace exact text in an existing file."""

    name = "edit_file"
    description = (
        "Edit a file by replacing an exact string. Fails when the string is missing, "
        "or appears more than once without replace_all."
    )
    category = "file"
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "File path (relative to working directory)",
            },
            "old_string": {
                "type": "string",
                "description": "Exact text to replace (indentation included)",
            },
            "new_string": {
                "type": "string",
                "description": "Replacement text",
            },
            "replace_all": {
                "type": "boolean",
                "description": "Replace every occurrence (default: false)",
            },
        },
        "required": ["path", "old_string", "new_string"],
    }

    async def execute(
        self,
        path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
        **kwargs: Any,
    ) -> ToolResult:
        context: ToolContext = kwargs["_context"]
        file_path = context.resolve_path(path)
        if not file_path.is_file():
            return ToolResult(success=False, error=f"File not found: {path}")
        if not old_string:
            return ToolResult(success=False, error="old_string must not be empty")

        content = file_path.read_text(encoding="utf-8")
        occurrences = content.count(old_string)
        if occurrences == 0:
            return ToolResult(success=False, error=f"old_string not found in {path}")
        if occurrences > 1 and not replace_all:
            return ToolResult(
                success=False,
                error=f"old_string found {occurrences} times in {path}; set replace_all to replace every one",
            )

        if replace_all:
            updated = content.replace(old_string, new_string)
            replaced = occurrences
        else:
            updated = content.replace(old_string, new_string, 1)
            replaced = 1
        file_path.write_text(updated, encoding="utf-8")

        try:
            changed = os.path.relpath(file_path, context.working_dir)
        except ValueError:
            changed = str(file_path)

        log.info("Edited file", path=str(file_path), replacements=replaced)
        noun = "replacement" if replaced == 1 else "replacements"
        return ToolResult(
            success=True,
            output=f"Edited {changed} ({replaced} {noun})",
            files_changed=[changed],
        )
