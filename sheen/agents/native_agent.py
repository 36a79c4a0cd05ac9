"""Agent backend driving a tool-calling model provider directly."""

from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator

from sheen.agents.base import AgentContext, AgentEvent, AgentMetadata, AgentResult, AIAgent
from sheen.config import Config
from sheen.conversation import ConversationManager
from sheen.exceptions import ProviderTimeoutError
from sheen.llm import (
    LLMProvider,
    LLMResponse,
    Message,
    StreamEvent,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)
from sheen.logging import get_logger
from sheen.prompts import PromptTemplates
from sheen.tool_calls import ToolCallAdapter, ToolExecution

log = get_logger(__name__)


class NativeToolAgent(AIAgent):
    """Structured-protocol backend.

    Owns a :class:`ConversationManager`; every provider round sees the whole
    (pruned) history, and tool results go back as tool-role messages.
    """

    engine_name = "native"

    def __init__(
        self,
        provider: LLMProvider,
        adapter: ToolCallAdapter,
        config: Config,
        system_prompt: str | None = None,
        templates: PromptTemplates | None = None,
    ):
        super().__init__(adapter, config)
        self.provider = provider
        templates = templates or PromptTemplates()
        if system_prompt is None:
            system_prompt = templates.render("system_prompt.md", root_dir="the current directory")
        self.conversation = ConversationManager(system_prompt, config.context)

    def _tool_definitions(self) -> list[ToolDefinition]:
        return [ToolDefinition.from_dict(item) for item in self.adapter.registry.get_definitions()]

    async def _complete(self, tools: list[ToolDefinition]) -> LLMResponse:
        timeout = float(self.config.agent.timeout)
        try:
            return await asyncio.wait_for(
                self.provider.complete(
                    self.conversation.get_messages(),
                    tools=tools or None,
                    max_steps=self.config.agent.max_steps,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(timeout) from e

    async def _complete_streaming(self, tools: list[ToolDefinition]) -> AsyncIterator[StreamEvent]:
        """Provider stream for one round, bounded as a whole by ``agent.timeout``."""
        timeout = float(self.config.agent.timeout)
        deadline = time.monotonic() + timeout
        events = self.provider.complete_streaming(
            self.conversation.get_messages(),
            tools=tools or None,
            max_steps=self.config.agent.max_steps,
        ).__aiter__()
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ProviderTimeoutError(timeout)
                try:
                    event = await asyncio.wait_for(events.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as e:
                    raise ProviderTimeoutError(timeout) from e
                yield event
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _run_tools(self, raw_calls: list[ToolCall], context: AgentContext) -> list[ToolExecution]:
        calls = self.adapter.normalize_tool_calls(raw_calls)
        executions = await self.adapter.execute_tool_calls(calls, context.resolve_tool_context())
        for message in self.adapter.structured_tool_results(executions):
            self.conversation.add_message(message)
        return executions

    async def execute(self, prompt: str, context: AgentContext) -> AgentResult:
        started = time.monotonic()
        max_steps = max(1, int(self.config.agent.max_steps))
        tools = self._tool_definitions()
        usage = TokenUsage()
        texts: list[str] = []
        all_calls: list[ToolCall] = []
        all_executions: list[ToolExecution] = []
        steps = 0

        self.conversation.add_user_message(prompt)
        try:
            while steps < max_steps:
                steps += 1
                response = await self._complete(tools)
                usage.add(response.usage)
                calls = self.adapter.normalize_tool_calls(response.tool_calls)
                self.conversation.add_assistant_message(response.content or "", tool_calls=calls)
                if response.content:
                    texts.append(response.content)
                if not calls:
                    break
                all_calls.extend(calls)
                all_executions.extend(await self._run_tools(calls, context))
        except Exception as e:
            error = str(e) or type(e).__name__
            log.error("Provider call failed", error=error, steps=steps)
            return AgentResult.failure(
                error,
                started,
                tool_calls=all_calls,
                tool_executions=all_executions,
                metadata=AgentMetadata(tokens_used=usage.total_tokens, iterations_used=steps),
            )

        return AgentResult(
            success=True,
            response="\n\n".join(texts),
            tool_calls=all_calls,
            tool_executions=all_executions,
            metadata=AgentMetadata(
                tokens_used=usage.total_tokens,
                execution_time_ms=int((time.monotonic() - started) * 1000),
                iterations_used=steps,
            ),
        )

    async def stream(self, prompt: str, context: AgentContext) -> AsyncIterator[AgentEvent]:
        started = time.monotonic()
        max_steps = max(1, int(self.config.agent.max_steps))
        tools = self._tool_definitions()
        usage = TokenUsage()
        texts: list[str] = []
        all_calls: list[ToolCall] = []
        all_executions: list[ToolExecution] = []
        steps = 0

        self.conversation.add_user_message(prompt)
        try:
            while steps < max_steps:
                steps += 1
                chunks: list[str] = []
                calls: list[ToolCall] = []
                async for event in self._complete_streaming(tools):
                    if event.type == "text_delta" and event.text:
                        chunks.append(event.text)
                        yield AgentEvent(type="text", data=event.text)
                    elif event.type == "tool_call" and event.tool_call is not None:
                        calls.extend(self.adapter.normalize_tool_calls([event.tool_call]))
                        yield AgentEvent(type="tool_call", data=calls[-1])
                    elif event.type == "completion" and event.response is not None:
                        usage.add(event.response.usage)

                content = "".join(chunks)
                self.conversation.add_assistant_message(content, tool_calls=calls)
                if content:
                    texts.append(content)
                if not calls:
                    break
                all_calls.extend(calls)
                executions = await self._run_tools(calls, context)
                all_executions.extend(executions)
                for execution in executions:
                    yield AgentEvent(type="tool_result", data=execution)
        except Exception as e:
            error = str(e) or type(e).__name__
            log.error("Provider stream failed", error=error, steps=steps)
            yield AgentEvent(type="error", data=error)
            yield AgentEvent(type="complete", data=AgentResult.failure(
                error,
                started,
                tool_calls=all_calls,
                tool_executions=all_executions,
                metadata=AgentMetadata(tokens_used=usage.total_tokens, iterations_used=steps),
            ))
            return

        yield AgentEvent(type="complete", data=AgentResult(
            success=True,
            response="\n\n".join(texts),
            tool_calls=all_calls,
            tool_executions=all_executions,
            metadata=AgentMetadata(
                tokens_used=usage.total_tokens,
                execution_time_ms=int((time.monotonic() - started) * 1000),
                iterations_used=steps,
            ),
        ))

    def get_conversation(self) -> list[Message]:
        return self.conversation.get_messages()

    def reset_conversation(self) -> None:
        self.conversation.reset()
        log.debug("Native agent conversation reset")
