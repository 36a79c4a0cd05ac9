"""Custom exceptions for Sheen."""


class SheenError(Exception):
    """Base exception for Sheen."""

    pass


class ConfigurationError(SheenError):
    """Configuration-related errors."""

    pass


class AgentError(SheenError):
    """Agent backend errors."""

    pass


class ProviderError(AgentError):
    """Model provider errors (network, API, malformed response)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """Model provider call exceeded its timeout."""

    def __init__(self, timeout_seconds: float):
        label = int(timeout_seconds) if float(timeout_seconds).is_integer() else timeout_seconds
        super().__init__(f"Provider call timed out after {label}s")
        self.timeout_seconds = timeout_seconds


class SubprocessError(AgentError):
    """Agent subprocess failed to start, exited non-zero, or timed out."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.timed_out = timed_out


class ToolError(SheenError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' not found")
        self.tool_name = tool_name


class ToolValidationError(ToolError):
    """Tool parameters failed validation."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class PermissionDeniedError(SheenError):
    """A tool call was declined by the permission gate."""

    def __init__(self, tool_name: str, reason: str = "Permission denied"):
        super().__init__(f"Tool '{tool_name}' declined: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class PlanPersistenceError(SheenError):
    """Plan store read/write failed."""

    pass


class LoopError(SheenError):
    """Unrecoverable execution loop error."""

    pass
