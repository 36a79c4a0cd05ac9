"""Backend-neutral agent capability."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Literal

from sheen.config import Config
from sheen.llm import Message, ToolCall
from sheen.models import ExecutionState, utcnow
from sheen.project import ProjectContext
from sheen.tool_calls import ToolCallAdapter, ToolExecution
from sheen.tools.registry import Tool, ToolContext

AgentEventType = Literal["text", "tool_call", "tool_result", "complete", "error"]


@dataclass
class HistoryEntry:
    """Loop-level history entry shown to the model as recent context."""

    role: Literal["user", "assistant", "tool"]
    content: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class AgentContext:
    """Everything an agent needs for one execution."""

    project_context: ProjectContext
    execution_state: ExecutionState
    config: Config
    conversation_history: list[HistoryEntry] = field(default_factory=list)
    tool_context: ToolContext | None = None

    def resolve_tool_context(self) -> ToolContext:
        if self.tool_context is not None:
            return self.tool_context
        return ToolContext.for_project(self.project_context, self.config)


@dataclass
class AgentMetadata:
    tokens_used: int = 0
    execution_time_ms: int = 0
    iterations_used: int = 0


@dataclass
class AgentResult:
    """Outcome of one ``AIAgent.execute`` call."""

    success: bool
    response: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_executions: list[ToolExecution] = field(default_factory=list)
    metadata: AgentMetadata = field(default_factory=AgentMetadata)
    error: str | None = None

    @classmethod
    def failure(cls, error: str, started: float, **fields: Any) -> "AgentResult":
        metadata = fields.pop("metadata", None) or AgentMetadata()
        metadata.execution_time_ms = int((time.monotonic() - started) * 1000)
        return cls(success=False, response=f"Error: {error}", error=error, metadata=metadata, **fields)


@dataclass
class AgentEvent:
    type: AgentEventType
    data: Any = None
    timestamp: datetime = field(default_factory=utcnow)


class AIAgent(ABC):
    """Uniform capability implemented by every backend.

    Tool calls are parsed and executed inside the backend through the shared
    :class:`ToolCallAdapter`, so callers never branch on backend identity.
    """

    engine_name: str = ""

    def __init__(self, adapter: ToolCallAdapter, config: Config):
        self.adapter = adapter
        self.config = config

    @abstractmethod
    async def execute(self, prompt: str, context: AgentContext) -> AgentResult:
        """Run ``prompt`` to completion (including tool rounds)."""
        pass

    @abstractmethod
    def stream(self, prompt: str, context: AgentContext) -> AsyncIterator[AgentEvent]:
        """Run ``prompt`` and yield events as they happen."""
        pass

    @abstractmethod
    def get_conversation(self) -> list[Message]:
        pass

    @abstractmethod
    def reset_conversation(self) -> None:
        pass

    def register_tools(self, tools: list[Tool]) -> None:
        """Make ``tools`` available to this agent."""
        self.adapter.registry.register_all(tools)

    def get_engine_name(self) -> str:
        return self.engine_name

    async def is_available(self) -> bool:
        return True

    async def cleanup(self) -> None:
        """Release backend resources (child processes, connections)."""
        return None
