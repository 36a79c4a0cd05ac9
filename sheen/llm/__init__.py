"""Model provider capability used by the native tool-calling agent.

The concrete network call lives outside this package; anything that
implements :class:`LLMProvider` can drive :class:`sheen.agents.NativeToolAgent`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Literal

from sheen.models import utcnow


MessageRole = Literal["system", "user", "assistant", "tool"]
StreamEventType = Literal["text_delta", "tool_call", "completion"]


@dataclass
class ToolCall:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "tool": self.name, "parameters": dict(self.arguments)}


@dataclass
class Message:
    """A message in the conversation."""

    role: MessageRole
    content: str
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_name:
            data["tool_name"] = self.tool_name
        if self.tool_calls:
            data["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens


@dataclass
class LLMResponse:
    """Response from the model."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class StreamEvent:
    """Incremental event from a streaming completion."""

    type: StreamEventType
    text: str = ""
    tool_call: ToolCall | None = None
    response: LLMResponse | None = None


@dataclass
class ToolDefinition:
    """Definition of a tool for the model."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolDefinition":
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            parameters=dict(data.get("parameters") or {}),
        )


class LLMProvider(ABC):
    """Abstract base class for model providers."""

    model: str = ""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        max_steps: int | None = None,
    ) -> LLMResponse:
        pass

    @abstractmethod
    def complete_streaming(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        max_steps: int | None = None,
    ) -> AsyncIterator[StreamEvent]:
        pass


__all__ = [
    "LLMProvider",
    "LLMResponse",
    "Message",
    "MessageRole",
    "StreamEvent",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
]
