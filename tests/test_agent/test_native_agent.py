import asyncio
import json
from pathlib import Path

import pytest

from sheen.agents import NativeToolAgent, SubprocessAgent, create_agent
from sheen.agents.base import AgentContext
from sheen.config import Config
from sheen.exceptions import ConfigurationError, ProviderError
from sheen.llm import (
    LLMProvider,
    LLMResponse,
    Message,
    StreamEvent,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)
from sheen.models import ExecutionState
from sheen.project import ProjectContext
from sheen.tool_calls import ToolCallAdapter
from sheen.tools.read import ReadTool
from sheen.tools.registry import ToolRegistry
from sheen.tools.write import WriteTool


class ScriptedProvider(LLMProvider):
    model = "scripted"

    def __init__(self, responses: list[LLMResponse | Exception], delay: float = 0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls: list[dict] = []

    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        max_steps: int | None = None,
    ) -> LLMResponse:
        self.calls.append({"messages": list(messages), "tools": tools})
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def complete_streaming(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        max_steps: int | None = None,
    ):
        response = await self.complete(messages, tools, max_steps)
        for word in response.content.split(" "):
            if word:
                yield StreamEvent(type="text_delta", text=word + " ")
        for call in response.tool_calls:
            yield StreamEvent(type="tool_call", tool_call=call)
        yield StreamEvent(type="completion", response=response)


def _agent(provider: LLMProvider, **agent_overrides) -> NativeToolAgent:
    config = Config()
    config.agent.engine = "native"
    for key, value in agent_overrides.items():
        setattr(config.agent, key, value)
    registry = ToolRegistry()
    registry.register_all([ReadTool(), WriteTool()])
    return NativeToolAgent(provider, ToolCallAdapter(registry), config, system_prompt="You are a test agent.")


def _context(tmp_path: Path, agent: NativeToolAgent) -> AgentContext:
    project = ProjectContext(root_dir=str(tmp_path))
    return AgentContext(
        project_context=project,
        execution_state=ExecutionState(project_context=project),
        config=agent.config,
    )


def _usage(total: int) -> TokenUsage:
    return TokenUsage(prompt_tokens=total - 1, completion_tokens=1, total_tokens=total)


async def _collect(stream):
    return [event async for event in stream]


@pytest.mark.asyncio
async def test_plain_answer_single_round(tmp_path: Path):
    provider = ScriptedProvider([LLMResponse(content="All done. TASK COMPLETE", usage=_usage(10))])
    agent = _agent(provider)

    result = await agent.execute("Finish", _context(tmp_path, agent))

    assert result.success is True
    assert result.response == "All done. TASK COMPLETE"
    assert result.metadata.tokens_used == 10
    assert result.metadata.iterations_used == 1
    sent = provider.calls[0]
    assert [message.role for message in sent["messages"]] == ["system", "user"]
    assert {tool.name for tool in sent["tools"]} == {"read_file", "write_file"}


@pytest.mark.asyncio
async def test_tool_round_appends_tool_messages(tmp_path: Path):
    provider = ScriptedProvider([
        LLMResponse(
            content="Writing.",
            tool_calls=[ToolCall(id="c1", name="write_file", arguments={"path": "a.txt", "content": "A"})],
            usage=_usage(5),
        ),
        LLMResponse(content="Wrote it. TASK COMPLETE", usage=_usage(7)),
    ])
    agent = _agent(provider)

    result = await agent.execute("Write a.txt", _context(tmp_path, agent))

    assert result.success is True
    assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "A"
    assert result.metadata.tokens_used == 12
    assert result.metadata.iterations_used == 2
    assert result.response == "Writing.\n\nWrote it. TASK COMPLETE"

    second_round = provider.calls[1]["messages"]
    assert [message.role for message in second_round] == ["system", "user", "assistant", "tool"]
    assert second_round[2].tool_calls[0].id == "c1"
    assert second_round[3].tool_call_id == "c1"
    assert json.loads(second_round[3].content)["files_changed"] == ["a.txt"]


@pytest.mark.asyncio
async def test_rounds_bounded_by_max_steps(tmp_path: Path):
    looping = LLMResponse(
        content="",
        tool_calls=[ToolCall(id="", name="read_file", arguments={"path": "missing.txt"})],
    )
    provider = ScriptedProvider([looping, looping, looping, looping])
    agent = _agent(provider, max_steps=2)

    result = await agent.execute("Read forever", _context(tmp_path, agent))

    assert result.success is True
    assert len(provider.calls) == 2
    assert len(result.tool_executions) == 2
    assert all(not execution.result.success for execution in result.tool_executions)


@pytest.mark.asyncio
async def test_provider_error_is_failed_result(tmp_path: Path):
    provider = ScriptedProvider([ProviderError("rate limited", status_code=429)])
    agent = _agent(provider)

    result = await agent.execute("Try", _context(tmp_path, agent))

    assert result.success is False
    assert result.error == "rate limited"
    assert result.response == "Error: rate limited"


@pytest.mark.asyncio
async def test_provider_timeout_is_failed_result(tmp_path: Path):
    provider = ScriptedProvider([LLMResponse(content="late")], delay=5)
    agent = _agent(provider, timeout=0.1)

    result = await agent.execute("Slow", _context(tmp_path, agent))

    assert result.success is False
    assert result.error == "Provider call timed out after 0.1s"


@pytest.mark.asyncio
async def test_network_failure_is_failed_result(tmp_path: Path):
    provider = ScriptedProvider([ConnectionError("network down")])
    agent = _agent(provider)

    result = await agent.execute("Try", _context(tmp_path, agent))

    assert result.success is False
    assert result.error == "network down"


@pytest.mark.asyncio
async def test_stream_network_failure_ends_with_failed_complete(tmp_path: Path):
    provider = ScriptedProvider([OSError("connection reset")])
    agent = _agent(provider)

    events = [event async for event in agent.stream("Try", _context(tmp_path, agent))]

    assert [event.type for event in events] == ["error", "complete"]
    assert events[0].data == "connection reset"
    assert events[-1].data.success is False


@pytest.mark.asyncio
async def test_stream_honours_provider_timeout(tmp_path: Path):
    provider = ScriptedProvider([LLMResponse(content="late")], delay=30)
    agent = _agent(provider, timeout=0.1)

    events = await asyncio.wait_for(
        _collect(agent.stream("Slow", _context(tmp_path, agent))),
        timeout=5,
    )

    assert [event.type for event in events] == ["error", "complete"]
    assert events[-1].data.success is False
    assert events[-1].data.error == "Provider call timed out after 0.1s"


@pytest.mark.asyncio
async def test_stream_yields_text_tool_and_complete_events(tmp_path: Path):
    provider = ScriptedProvider([
        LLMResponse(
            content="Reading file",
            tool_calls=[ToolCall(id="c1", name="read_file", arguments={"path": "x.txt"})],
        ),
        LLMResponse(content="TASK COMPLETE"),
    ])
    (tmp_path / "x.txt").write_text("data", encoding="utf-8")
    agent = _agent(provider)

    events = [event async for event in agent.stream("Read x", _context(tmp_path, agent))]
    types = [event.type for event in events]

    assert types[:2] == ["text", "text"]
    assert "tool_call" in types
    assert "tool_result" in types
    assert types[-1] == "complete"
    final = events[-1].data
    assert final.success is True
    assert final.tool_executions[0].result.output == "data"


@pytest.mark.asyncio
async def test_reset_conversation_keeps_system_prompt(tmp_path: Path):
    provider = ScriptedProvider([LLMResponse(content="hi")])
    agent = _agent(provider)
    await agent.execute("Hello", _context(tmp_path, agent))

    agent.reset_conversation()

    conversation = agent.get_conversation()
    assert len(conversation) == 1
    assert conversation[0].content == "You are a test agent."
    assert agent.get_engine_name() == "native"


def test_register_tools_adds_to_shared_registry():
    agent = _agent(ScriptedProvider([]))
    registry = agent.adapter.registry
    registry.unregister("read_file")

    agent.register_tools([ReadTool()])

    assert registry.has("read_file")


def test_create_agent_selects_backend():
    registry = ToolRegistry()
    adapter = ToolCallAdapter(registry)
    config = Config()

    assert isinstance(create_agent(config, adapter), SubprocessAgent)

    config.agent.engine = "native"
    assert isinstance(create_agent(config, adapter, provider=ScriptedProvider([])), NativeToolAgent)
    with pytest.raises(ConfigurationError):
        create_agent(config, adapter)
