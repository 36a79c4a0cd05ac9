"""Shell tool for executing commands in the project directory."""

import asyncio
import os
from typing import Any

from sheen.config import Config
from sheen.logging import get_logger
from sheen.tools.registry import Tool, ToolContext, ToolResult

log = get_logger(__name__)


def truncate_output(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + f"\n... [truncated, {len(text)} total chars]"


class ShellTool(Tool):
    """Execute shell commands."""

    name = "shell_exec"
    description = "Execute a shell command in the project directory and return its output."
    category = "shell"
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "timeout": {
                "type": "number",
                "description": "Timeout in seconds (optional, default from config)",
            },
        },
        "required": ["command"],
    }

    def __init__(self, config: Config | None = None):
        self.config = config or Config()
        # Registry deadline must exceed the command timeout.
        self.timeout_seconds = float(self.config.tools.shell.timeout) + 5.0

    async def execute(self, command: str, timeout: float | None = None, **kwargs: Any) -> ToolResult:
        """Execute a shell command.

        Args:
            command: Shell command to execute
            timeout: Optional timeout override

        Returns:
            ToolResult with combined output and the exit code
        """
        if not command.strip():
            return ToolResult(success=False, error="Command is required")

        context: ToolContext | None = kwargs.get("_context")
        cwd = str(context.working_dir) if context is not None else None
        shell_cfg = self.config.tools.shell
        limit = max(1, int(timeout if timeout is not None else shell_cfg.timeout))

        env = os.environ.copy()
        env["PATH"] = os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin")

        log.info("Executing shell command", command=command, timeout=limit, cwd=cwd)
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult(
                success=False,
                error=f"Command timed out after {limit}s",
                exit_code=process.returncode,
            )
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        stderr_text = stderr.decode("utf-8", errors="replace").strip()

        output = stdout_text
        if stderr_text:
            output += f"\n[stderr] {stderr_text}" if output else f"[stderr] {stderr_text}"
        output = truncate_output(output, shell_cfg.max_output_chars)

        exit_code = process.returncode if process.returncode is not None else -1
        if exit_code != 0:
            detail = stderr_text or stdout_text or "no output"
            return ToolResult(
                success=False,
                output=output,
                error=f"Command failed with exit code {exit_code}: "
                f"{truncate_output(detail, shell_cfg.max_output_chars)}",
                exit_code=exit_code,
            )

        return ToolResult(success=True, output=output or "[no output]", exit_code=0)
