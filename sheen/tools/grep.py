"""Search tool: regex search over file contents in the project tree."""

import asyncio
import re
from fnmatch import fnmatch
from pathlib import Path
from typing import Any

from sheen.logging import get_logger
from sheen.tools.glob import collect_entries
from sheen.tools.registry import Tool, ToolContext, ToolResult

log = get_logger(__name__)

_BRACE_RE = re.compile(r"\{([^{}]+)\}")
_MAX_SCANNED_ENTRIES = 20000


def expand_braces(pattern: str) -> list[str]:
    """Expand one ``{a,b}`` group, so ``*.{ts,tsx}`` matches both suffixes."""
    match = _BRACE_RE.search(pattern)
    if match is None:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end():]
    return [f"{head}{option.strip()}{tail}" for option in match.group(1).split(",")]


def matches_file_pattern(relative_path: str, patterns: list[str]) -> bool:
    name = Path(relative_path).name
    return any(fnmatch(name, pattern) or fnmatch(relative_path, pattern) for pattern in patterns)


def search_tree(
    directory: Path,
    regex: re.Pattern[str],
    file_patterns: list[str],
    exclude_patterns: list[str],
) -> list[tuple[str, int, str]]:
    """Return ``(file, line_number, line)`` for every matching line, files in sorted order."""
    entries = collect_entries(directory, directory, True, exclude_patterns, _MAX_SCANNED_ENTRIES)
    hits: list[tuple[str, int, str]] = []
    for relative in sorted(entry for entry in entries if not entry.endswith("/")):
        if file_patterns and not matches_file_pattern(relative, file_patterns):
            continue
        try:
            text = (directory / relative).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        for number, line in enumerate(text.splitlines(), start=1):
            if regex.search(line):
                hits.append((relative, number, line.strip()))
    return hits


class SearchFilesTool(Tool):
    """Grep-style content search."""

    name = "search_files"
    description = "Search file contents for a regular expression (case-insensitive), like grep."
    category = "file"
    parameters = {
        "type": "object",
        "properties": {
            "pattern": {
                "type": "string",
                "description": "Regular expression to search for",
            },
            "path": {
                "type": "string",
                "description": 'Directory to search (relative to working directory, defaults to ".")',
            },
            "file_pattern": {
                "type": "string",
                "description": 'Only search files matching this glob, e.g. "*.py" or "*.{ts,tsx}"',
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of matches to show (default: 100)",
            },
        },
        "required": ["pattern"],
    }

    async def execute(
        self,
        pattern: str,
        path: str = ".",
        file_pattern: str | None = None,
        limit: int = 100,
        **kwargs: Any,
    ) -> ToolResult:
        context: ToolContext = kwargs["_context"]
        directory = context.resolve_path(path or ".")
        if not directory.is_dir():
            return ToolResult(success=False, error=f"Directory not found: {path}")
        try:
            regex = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            return ToolResult(success=False, error=f"Invalid pattern: {e}")

        file_patterns = expand_braces(file_pattern) if file_pattern else []
        excludes = list(context.config.tools.exclude_patterns)
        loop = asyncio.get_running_loop()
        hits = await loop.run_in_executor(
            None,
            lambda: search_tree(directory, regex, file_patterns, excludes),
        )

        if not hits:
            return ToolResult(success=True, output=f"No matches found for pattern: {pattern}")

        limit = max(1, limit)
        shown = hits[:limit]
        header = f"Found {len(hits)} matches"
        if len(hits) > limit:
            header += f" (showing first {limit})"
        lines = [header, *(f"{file}:{number}: {text}" for file, number, text in shown)]
        log.debug("Searched files", pattern=pattern, matches=len(hits))
        return ToolResult(success=True, output="\n".join(lines))
