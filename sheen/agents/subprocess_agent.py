"""Agent backend that shells out to a CLI coding assistant each round."""

from __future__ import annotations

import asyncio
import os
import shlex
import sys
import time
from pathlib import Path
from typing import AsyncIterator, TextIO

from sheen.agents.base import AgentContext, AgentEvent, AgentMetadata, AgentResult, AIAgent
from sheen.config import Config
from sheen.exceptions import SubprocessError
from sheen.llm import Message, ToolCall
from sheen.logging import get_logger
from sheen.prompts import PromptTemplates
from sheen.tool_calls import ToolCallAdapter, ToolExecution

log = get_logger(__name__)


def build_command(template: str, model: str, prompt: str) -> list[str]:
    """Render the command template into argv.

    Raises:
        SubprocessError when the template is empty or uses unknown placeholders
    """
    stripped = template.strip()
    if not stripped:
        raise SubprocessError("Agent command template is empty")
    if "{prompt}" not in stripped:
        raise SubprocessError("Agent command template must include {prompt}")
    try:
        rendered = stripped.format(model=shlex.quote(model), prompt=shlex.quote(prompt))
    except (KeyError, IndexError) as e:
        raise SubprocessError(f"Unsupported command template placeholder: {e}") from e
    argv = shlex.split(rendered)
    if not argv:
        raise SubprocessError("Agent command template rendered empty command")
    return argv


async def _pump(stream: asyncio.StreamReader | None, chunks: list[bytes], echo: TextIO | None) -> None:
    if stream is None:
        return
    while True:
        data = await stream.read(4096)
        if not data:
            break
        chunks.append(data)
        if echo is not None:
            echo.write(data.decode("utf-8", errors="replace"))
            echo.flush()


class SubprocessAgent(AIAgent):
    """Text-protocol backend.

    Each round runs the configured command with the full prompt; tool calls
    are read from ``TOOL_CALL:`` markers in stdout and their results are fed
    into the next round's prompt.
    """

    engine_name = "subprocess"

    def __init__(
        self,
        adapter: ToolCallAdapter,
        config: Config,
        templates: PromptTemplates | None = None,
    ):
        super().__init__(adapter, config)
        self.templates = templates or PromptTemplates()
        self._history: list[Message] = []
        self._process: asyncio.subprocess.Process | None = None

    # ------------------------------------------------------------------
    # Process handling
    # ------------------------------------------------------------------

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL once the grace period runs out."""
        if process.returncode is not None:
            return
        grace = max(0.0, float(self.config.agent.kill_grace_seconds))
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            log.warning("Agent process ignored SIGTERM, killing", pid=process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def run_command(self, prompt: str, cwd: Path | str) -> str:
        """Run the command once and return stdout.

        Raises:
            SubprocessError on spawn failure, timeout or non-zero exit
        """
        agent_cfg = self.config.agent
        argv = build_command(agent_cfg.command, agent_cfg.model, prompt)
        timeout = float(agent_cfg.timeout)

        env = os.environ.copy()
        env["PYTHONUNBUFFERED"] = "1"

        log.info("Running agent command", command=argv[0], prompt_chars=len(prompt), timeout=timeout)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise SubprocessError(f"Agent command not found: {argv[0]}") from e
        except OSError as e:
            raise SubprocessError(f"Failed to spawn agent command: {e}") from e

        self._process = process
        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        echo_out = sys.stdout if agent_cfg.stream_output else None
        echo_err = sys.stderr if agent_cfg.stream_output else None
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _pump(process.stdout, stdout_chunks, echo_out),
                    _pump(process.stderr, stderr_chunks, echo_err),
                    process.wait(),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Agent command timed out", timeout=timeout)
            await self._terminate(process)
            label = int(timeout) if timeout.is_integer() else timeout
            raise SubprocessError(
                f"Agent command timed out after {label}s",
                exit_code=process.returncode,
                timed_out=True,
            )
        except asyncio.CancelledError:
            await self._terminate(process)
            raise
        finally:
            self._process = None

        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise SubprocessError(
                f"Agent command exited with code {process.returncode}\n{stderr.strip()}".strip(),
                exit_code=process.returncode,
            )
        return stdout

    # ------------------------------------------------------------------
    # Prompt assembly
    # ------------------------------------------------------------------

    def _base_prompt(self, prompt: str) -> str:
        catalog = self.adapter.format_tool_catalog()
        usage = self.templates.render("tool_usage.md")
        return f"{prompt}\n\n{catalog}\n\n{usage}"

    @staticmethod
    def _follow_up_prompt(base: str, output: str, results: str) -> str:
        return (
            f"{base}\n\n"
            f"## Your Previous Output\n\n{output.strip()}\n\n"
            f"{results}\n\n"
            "Continue with the task using these results."
        )

    # ------------------------------------------------------------------
    # AIAgent
    # ------------------------------------------------------------------

    async def execute(self, prompt: str, context: AgentContext) -> AgentResult:
        started = time.monotonic()
        max_steps = max(1, int(self.config.agent.max_steps))
        tool_context = context.resolve_tool_context()
        base = self._base_prompt(prompt)
        self._history.append(Message(role="user", content=prompt))

        outputs: list[str] = []
        all_calls: list[ToolCall] = []
        all_executions: list[ToolExecution] = []
        rounds = 0
        round_prompt = base
        try:
            while rounds < max_steps:
                rounds += 1
                output = await self.run_command(round_prompt, tool_context.working_dir)
                outputs.append(output.strip())
                self._history.append(Message(role="assistant", content=output))

                calls = self.adapter.parse_tool_calls(output)
                if not calls:
                    break
                all_calls.extend(calls)
                executions = await self.adapter.execute_tool_calls(calls, tool_context)
                all_executions.extend(executions)
                results = self.adapter.format_tool_results(executions)
                self._history.append(Message(role="tool", content=results))
                log.info("Tool round finished", round=rounds, summary=self.adapter.summarize_execution(executions))
                round_prompt = self._follow_up_prompt(base, output, results)
        except SubprocessError as e:
            log.error("Agent execution failed", error=str(e), rounds=rounds)
            return AgentResult.failure(
                str(e),
                started,
                tool_calls=all_calls,
                tool_executions=all_executions,
                metadata=AgentMetadata(iterations_used=rounds),
            )

        return AgentResult(
            success=True,
            response="\n\n".join(part for part in outputs if part),
            tool_calls=all_calls,
            tool_executions=all_executions,
            metadata=AgentMetadata(
                tokens_used=0,
                execution_time_ms=int((time.monotonic() - started) * 1000),
                iterations_used=rounds,
            ),
        )

    async def stream(self, prompt: str, context: AgentContext) -> AsyncIterator[AgentEvent]:
        """Emulated streaming: run to completion, then replay the result as events."""
        result = await self.execute(prompt, context)
        if not result.success:
            yield AgentEvent(type="error", data=result.error)
        else:
            yield AgentEvent(type="text", data=result.response)
        for call in result.tool_calls:
            yield AgentEvent(type="tool_call", data=call)
        for execution in result.tool_executions:
            yield AgentEvent(type="tool_result", data=execution)
        yield AgentEvent(type="complete", data=result)

    def get_conversation(self) -> list[Message]:
        return list(self._history)

    def reset_conversation(self) -> None:
        self._history.clear()
        log.debug("Subprocess agent conversation reset")

    async def is_available(self) -> bool:
        """Probe the command with ``--version``."""
        try:
            argv = build_command(self.config.agent.command, self.config.agent.model, "")
        except SubprocessError:
            return False
        try:
            process = await asyncio.create_subprocess_exec(
                argv[0],
                "--version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            return False
        try:
            return await asyncio.wait_for(process.wait(), timeout=5.0) == 0
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return False

    async def cleanup(self) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            log.info("Cleaning up agent process", pid=process.pid)
            await self._terminate(process)
