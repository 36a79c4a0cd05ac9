"""Agent backends behind one capability."""

from sheen.agents.base import (
    AgentContext,
    AgentEvent,
    AgentMetadata,
    AgentResult,
    AIAgent,
    HistoryEntry,
)
from sheen.agents.native_agent import NativeToolAgent
from sheen.agents.subprocess_agent import SubprocessAgent
from sheen.config import Config
from sheen.exceptions import ConfigurationError
from sheen.llm import LLMProvider
from sheen.logging import get_logger
from sheen.prompts import PromptTemplates
from sheen.tool_calls import ToolCallAdapter

log = get_logger(__name__)


def create_agent(
    config: Config,
    adapter: ToolCallAdapter,
    provider: LLMProvider | None = None,
    system_prompt: str | None = None,
    templates: PromptTemplates | None = None,
) -> AIAgent:
    """Build the backend selected by ``config.agent.engine``.

    Raises:
        ConfigurationError when the native engine is chosen without a provider
    """
    engine = config.agent.engine
    if engine == "native":
        if provider is None:
            raise ConfigurationError("The native engine needs an LLMProvider")
        log.info("Initializing native tool-calling agent", model=getattr(provider, "model", ""))
        return NativeToolAgent(provider, adapter, config, system_prompt=system_prompt, templates=templates)
    if engine == "subprocess":
        log.info("Initializing subprocess agent", command=config.agent.command, model=config.agent.model)
        return SubprocessAgent(adapter, config, templates=templates)
    raise ConfigurationError(f"Unknown agent engine: {engine}")


__all__ = [
    "AIAgent",
    "AgentContext",
    "AgentEvent",
    "AgentMetadata",
    "AgentResult",
    "HistoryEntry",
    "NativeToolAgent",
    "SubprocessAgent",
    "create_agent",
]
