"""Git tools: status, diff and commit."""

import asyncio
import re
from pathlib import Path
from typing import Any

from sheen.logging import get_logger
from sheen.tools.registry import Tool, ToolContext, ToolResult

log = get_logger(__name__)

MAX_DIFF_CHARS = 50_000
_COMMIT_HASH_RE = re.compile(r"^\[[^\]]*?\b([0-9a-f]{7,40})\]", re.MULTILINE)


async def run_git(cwd: Path, *args: str, timeout: float = 30.0) -> tuple[int, str, str]:
    """Run ``git`` with ``args`` and return (exit_code, stdout, stderr)."""
    process = await asyncio.create_subprocess_exec(
        "git",
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd),
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        process.kill()
        await process.wait()
        raise
    return (
        process.returncode if process.returncode is not None else -1,
        stdout.decode("utf-8", errors="replace").strip(),
        stderr.decode("utf-8", errors="replace").strip(),
    )


def parse_commit_hash(output: str) -> str | None:
    """Extract the short hash from ``git commit`` output (``[main 1a2b3c4] msg``)."""
    match = _COMMIT_HASH_RE.search(output or "")
    return match.group(1) if match else None


class GitStatusTool(Tool):
    """Show git working tree status."""

    name = "git_status"
    description = "Get git repository status (untracked files, modifications, staged changes)."
    category = "git"
    parameters = {"type": "object", "properties": {}, "required": []}
    timeout_seconds = 15.0

    async def execute(self, **kwargs: Any) -> ToolResult:
        context: ToolContext = kwargs["_context"]
        code, stdout, stderr = await run_git(context.working_dir, "status", timeout=10.0)
        if code != 0:
            return ToolResult(
                success=False,
                error=f"Failed to get git status: {stderr or stdout}",
                exit_code=code,
            )
        return ToolResult(success=True, output=stdout, exit_code=0)


class GitDiffTool(Tool):
    """Show diff of changes."""

    name = "git_diff"
    description = "Show diff of changes (unstaged by default, staged on request)."
    category = "git"
    parameters = {
        "type": "object",
        "properties": {
            "staged": {
                "type": "boolean",
                "description": "Show diff of staged changes (default: false)",
                "default": False,
            },
            "path": {
                "type": "string",
                "description": "Specific file path to diff",
            },
        },
        "required": [],
    }

    async def execute(self, staged: bool = False, path: str | None = None, **kwargs: Any) -> ToolResult:
        context: ToolContext = kwargs["_context"]
        args = ["diff"]
        if staged:
            args.append("--staged")
        if path:
            args.extend(["--", path])

        code, stdout, stderr = await run_git(context.working_dir, *args)
        if code != 0:
            return ToolResult(
                success=False,
                error=f"Failed to get diff: {stderr or stdout}",
                exit_code=code,
            )
        if not stdout:
            return ToolResult(
                success=True,
                output="No staged changes" if staged else "No unstaged changes",
                exit_code=0,
            )
        if len(stdout) > MAX_DIFF_CHARS:
            stdout = stdout[:MAX_DIFF_CHARS] + "\n\n[... diff truncated, showing first 50KB ...]"
        return ToolResult(success=True, output=stdout, exit_code=0)


class GitCommitTool(Tool):
    """Commit staged changes."""

    name = "git_commit"
    description = (
        "Commit staged changes with a message. Stage files first "
        "(shell_exec with 'git add') or pass add_all=true."
    )
    category = "git"
    parameters = {
        "type": "object",
        "properties": {
            "message": {
                "type": "string",
                "description": "Commit message (should be descriptive)",
            },
            "add_all": {
                "type": "boolean",
                "description": "Stage all changes before committing (default: false)",
            },
        },
        "required": ["message"],
    }

    async def execute(self, message: str, add_all: bool = False, **kwargs: Any) -> ToolResult:
        context: ToolContext = kwargs["_context"]
        if not message.strip():
            return ToolResult(success=False, error="Commit message is required and cannot be empty")

        if add_all:
            code, stdout, stderr = await run_git(context.working_dir, "add", "-A")
            if code != 0:
                return ToolResult(
                    success=False,
                    error=f"Failed to stage changes: {stderr or stdout}",
                    exit_code=code,
                )

        code, stdout, stderr = await run_git(context.working_dir, "commit", "-m", message)
        if code != 0:
            combined = f"{stdout}\n{stderr}"
            if "nothing to commit" in combined or "no changes added" in combined:
                error = "No changes staged for commit. Use 'git add' to stage files first."
            else:
                error = f"Failed to commit: {stderr or stdout}"
            return ToolResult(success=False, error=error, exit_code=code)

        commit_hash = parse_commit_hash(stdout)
        log.info("Created commit", hash=commit_hash, message=message)
        return ToolResult(success=True, output=stdout or stderr, exit_code=0)
