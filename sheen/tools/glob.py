"""List tool for browsing the project tree."""

import asyncio
from fnmatch import fnmatch
from pathlib import Path
from typing import Any

from sheen.logging import get_logger
from sheen.tools.registry import Tool, ToolContext, ToolResult

log = get_logger(__name__)


def is_excluded(relative_path: str, patterns: list[str]) -> bool:
    """Return True when any path part matches an exclude pattern."""
    parts = Path(relative_path).parts
    for pattern in patterns:
        if any(fnmatch(part, pattern) for part in parts):
            return True
        if fnmatch(relative_path, pattern):
            return True
    return False


def collect_entries(
    root: Path,
    base: Path,
    recursive: bool,
    exclude_patterns: list[str],
    limit: int,
) -> list[str]:
    entries: list[str] = []
    pending = [root]
    while pending and len(entries) < limit:
        current = pending.pop(0)
        for child in sorted(current.iterdir(), key=lambda p: p.name):
            relative = child.relative_to(base).as_posix()
            if is_excluded(relative, exclude_patterns):
                continue
            if child.is_dir():
                entries.append(relative + "/")
                if recursive:
                    pending.append(child)
            else:
                entries.append(relative)
            if len(entries) >= limit:
                break
    return entries


class ListFilesTool(Tool):
    """List files and directories."""

    name = "list_files"
    description = "List files and directories in a directory (excluded patterns are skipped)."
    category = "file"
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": 'Directory path (relative to working directory, defaults to ".")',
            },
            "recursive": {
                "type": "boolean",
                "description": "List files recursively",
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of entries (default: 500)",
            },
        },
        "required": [],
    }

    async def execute(
        self,
        path: str = ".",
        recursive: bool = False,
        limit: int = 500,
        **kwargs: Any,
    ) -> ToolResult:
        context: ToolContext = kwargs["_context"]
        directory = context.resolve_path(path or ".")
        if not directory.exists():
            return ToolResult(success=False, error=f"Directory not found: {path}")
        if not directory.is_dir():
            return ToolResult(success=False, error=f"Not a directory: {path}")

        patterns = list(context.config.tools.exclude_patterns)
        loop = asyncio.get_running_loop()
        entries = await loop.run_in_executor(
            None,
            lambda: collect_entries(directory, directory, recursive, patterns, max(1, limit)),
        )

        if not entries:
            return ToolResult(success=True, output=f"No files found in: {path}")

        log.debug("Listed files", path=str(directory), count=len(entries))
        return ToolResult(success=True, output="\n".join(entries))
