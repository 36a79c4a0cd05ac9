"""Configuration management for Sheen."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.sheen/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "sheen.yaml"
STATE_DIR_NAME = ".sheen"

PermissionRule = Literal["allow", "deny", "ask"]


class LoopConfig(BaseModel):
    """Iteration loop configuration."""

    max_iterations: int = 100
    sleep_between_iterations: float = 5.0
    auto_resume: bool = False


class ErrorRecoveryConfig(BaseModel):
    """Stop thresholds for the execution loop."""

    max_errors: int = 3
    max_no_progress: int = 5


class AgentEngineConfig(BaseModel):
    """Agent backend configuration."""

    engine: Literal["subprocess", "native"] = "subprocess"
    command: str = "opencode run --model {model} {prompt}"
    model: str = "github-copilot/claude-sonnet-4.5"
    timeout: float = 300.0
    kill_grace_seconds: float = 5.0
    max_steps: int = 10
    stream_output: bool = False


class ContextConfig(BaseModel):
    """Conversation/context window configuration."""

    context_window_size: int = 180000
    enable_pruning: bool = True
    prune_threshold: float = 0.8
    keep_recent_messages: int = 10
    hard_limit_floor: int = 5
    max_history_entries: int = 20


class PermissionsConfig(BaseModel):
    """Tool permission configuration."""

    auto_approve: bool = False
    tool_permissions: dict[str, PermissionRule] = Field(default_factory=dict)


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: int = 120
    max_output_chars: int = 50000


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "shell_exec",
        "read_file",
        "write_file",
        "edit_file",
        "list_files",
        "search_files",
        "git_status",
        "git_diff",
        "git_commit",
        "todo",
    ]
    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)
    exclude_patterns: list[str] = [
        "node_modules",
        ".git",
        "dist",
        "build",
        "coverage",
        "__pycache__",
        ".venv",
    ]


class PlanConfig(BaseModel):
    """Plan persistence configuration."""

    path: str = f"{STATE_DIR_NAME}/plan.db"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Sheen."""

    loop: LoopConfig = Field(default_factory=LoopConfig)
    error_recovery: ErrorRecoveryConfig = Field(default_factory=ErrorRecoveryConfig)
    agent: AgentEngineConfig = Field(default_factory=AgentEngineConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    plan: PlanConfig = Field(default_factory=PlanConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="SHEEN_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML; environment variables are merged by pydantic-settings."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_plan_path(self, root_dir: Path | str | None = None) -> Path:
        """Resolve plan store path, anchoring relative paths to the project root."""
        raw = Path(self.plan.path).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        anchor = Path(root_dir).expanduser().resolve() if root_dir is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()
