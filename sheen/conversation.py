"""Conversation history with size estimation and pruning."""

import json
import math
from typing import Any

from sheen.config import ContextConfig
from sheen.llm import Message, ToolCall
from sheen.logging import get_logger
from sheen.models import utcnow

log = get_logger(__name__)

ConversationMessage = Message


def estimate_tokens(text: str) -> int:
    """Approximate token count as ceil(chars / 4)."""
    return math.ceil(len(text or "") / 4)


class ConversationManager:
    """Ordered message history.

    The first message is always the single system message; pruning only ever
    drops messages from the old end after it.
    """

    def __init__(self, system_prompt: str, config: ContextConfig | None = None):
        cfg = config or ContextConfig()
        self.system_prompt = system_prompt
        self.context_window_size = cfg.context_window_size
        self.enable_pruning = cfg.enable_pruning
        self.prune_threshold = cfg.prune_threshold
        self.keep_recent = max(1, cfg.keep_recent_messages)
        self.hard_limit_floor = max(1, cfg.hard_limit_floor)
        self._messages: list[Message] = [Message(role="system", content=system_prompt)]
        log.debug(
            "Conversation initialized",
            context_window_size=self.context_window_size,
            enable_pruning=self.enable_pruning,
        )

    # ------------------------------------------------------------------
    # Appending
    # ------------------------------------------------------------------

    def add_user_message(self, content: str) -> None:
        self._messages.append(Message(role="user", content=content))
        log.debug("Added user message", length=len(content))
        if self.enable_pruning:
            self.prune_if_needed()

    def add_assistant_message(self, content: str, tool_calls: list[ToolCall] | None = None) -> None:
        self._messages.append(Message(
            role="assistant",
            content=content,
            tool_calls=list(tool_calls or []),
        ))
        log.debug("Added assistant message", length=len(content), tool_calls=len(tool_calls or []))
        if self.enable_pruning:
            self.prune_if_needed()

    def add_tool_result(self, tool_call_id: str, tool_name: str, result: Any) -> None:
        content = result if isinstance(result, str) else json.dumps(result, default=str)
        self._messages.append(Message(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            tool_name=tool_name,
        ))
        log.debug("Added tool result", tool=tool_name, tool_call_id=tool_call_id)

    def add_message(self, message: Message) -> None:
        """Append a prebuilt non-system message."""
        if message.role == "system":
            raise ValueError("Conversation already has a system message")
        self._messages.append(message)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_messages(self) -> list[Message]:
        return list(self._messages)

    def get_core_messages(self) -> list[Message]:
        """History without tool messages."""
        return [message for message in self._messages if message.role != "tool"]

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def estimate_size(self) -> int:
        """Estimated token count of the whole history."""
        total_chars = sum(len(message.content or "") for message in self._messages)
        return math.ceil(total_chars / 4)

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------

    def _keep_recent(self, count: int) -> None:
        """Keep the system message and the last ``count`` messages.

        Tool results whose assistant tool-call message falls outside the
        window are dropped with it.
        """
        system, rest = self._messages[0], self._messages[1:]
        kept = rest[-count:] if count > 0 else []
        start = 0
        while start < len(kept) and kept[start].role == "tool":
            start += 1
        self._messages = [system, *kept[start:]]

    def prune_if_needed(self) -> bool:
        """Drop old messages once size reaches the threshold share of the window.

        Returns:
            True when messages were removed
        """
        estimated = self.estimate_size()
        threshold = self.context_window_size * self.prune_threshold
        if estimated < threshold:
            return False

        before = len(self._messages)
        if before - 1 <= self.keep_recent:
            log.warning("Unable to prune: all messages are recent or system", tokens=estimated)
            return False

        self._keep_recent(self.keep_recent)
        log.info(
            "Conversation pruned",
            removed=before - len(self._messages),
            messages=len(self._messages),
            tokens=self.estimate_size(),
        )
        return True

    def prune_to_limit(self, token_limit: int) -> None:
        """Shrink the kept-recent window from the floor down to one message until size fits."""
        current = self.estimate_size()
        if current <= token_limit:
            return

        log.debug("Pruning to token limit", tokens=current, limit=token_limit)
        keep = self.hard_limit_floor
        while current > token_limit and keep >= 1:
            self._keep_recent(keep)
            current = self.estimate_size()
            keep -= 1

        log.info("Pruned to token limit", tokens=current, messages=len(self._messages))

    # ------------------------------------------------------------------
    # Reset / export
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Keep only the system message."""
        self._messages = [self._messages[0]]
        log.debug("Conversation cleared")

    def reset(self, new_system_prompt: str | None = None) -> None:
        if new_system_prompt:
            self.system_prompt = new_system_prompt
        self._messages = [Message(role="system", content=self.system_prompt)]
        log.debug("Conversation reset", system_prompt=self.system_prompt[:50])

    def _time_range(self) -> str:
        first = self._messages[0].timestamp
        last = self._messages[-1].timestamp if len(self._messages) > 1 else utcnow()
        minutes = int((last - first).total_seconds() // 60)
        return f"{minutes} minutes"

    def summarize(self) -> str:
        return "\n".join([
            "Conversation Summary:",
            f"- Messages: {len(self._messages)}",
            f"- Estimated tokens: {self.estimate_size()}",
            f"- Time range: {self._time_range()}",
            f"- System prompt: {self.system_prompt[:100]}...",
        ])

    def export_json(self) -> str:
        return json.dumps(
            {
                "system_prompt": self.system_prompt,
                "messages": [message.to_dict() for message in self._messages],
                "metadata": {
                    "message_count": len(self._messages),
                    "estimated_tokens": self.estimate_size(),
                    "time_range": self._time_range(),
                },
            },
            indent=2,
        )
