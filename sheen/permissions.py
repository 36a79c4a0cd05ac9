"""Permission gate for tool calls."""

import json
import re
import shlex
import sys
from typing import Any, Callable, Literal

from rich.console import Console
from rich.prompt import Confirm

from sheen.config import PermissionRule, PermissionsConfig
from sheen.logging import get_logger

log = get_logger(__name__)

RiskLevel = Literal["normal", "high_risk", "destructive"]
Approver = Callable[[str], bool]

DEFAULT_TOOL_PERMISSIONS: dict[str, PermissionRule] = {
    "read_file": "allow",
    "list_files": "allow",
    "search_files": "allow",
    "git_status": "allow",
    "git_diff": "allow",
    "todo": "allow",
    "shell_exec": "ask",
    "write_file": "ask",
    "edit_file": "ask",
    "git_commit": "ask",
}

SHELL_TOOLS = frozenset({"shell_exec"})
WRITE_TOOLS = frozenset({"write_file", "edit_file"})

DESTRUCTIVE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"\brm\s+(-[a-z]*r[a-z]*f|-[a-z]*f[a-z]*r)\b",
        r"\brm\s+--recursive\b",
        r"\bgit\s+reset\s+--hard\b",
        r"\bgit\s+clean\s+-[a-z]*f",
        r"\bgit\s+push\b.*\s(--force\b|-f\b)",
        r"\bsudo\s+rm\b",
        r"\bdel\s+/s\s+/q\b",
        r"\bformat\s+[a-z]:",
        r"\bmkfs(\.[a-z0-9]+)?\b",
        r"\bdd\s+if=",
    )
)

HIGH_RISK_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"\bsudo\s+",
        r"\b(npm|yarn|pnpm)\s+publish\b",
        r"\btwine\s+upload\b",
        r"\bcargo\s+publish\b",
        r"\bgit\s+push\b",
        r"\bdocker\s+run\b",
        r"\bchmod\s+",
        r"\bchown\s+",
        r"\b(curl|wget)\b.*\|\s*(ba|z)?sh\b",
        r"\beval\s+",
        r"\bexec\s+",
    )
)

SENSITIVE_PATH_MARKERS: tuple[str, ...] = (
    ".env",
    "credentials",
    "secrets",
    ".ssh/",
    "private_key",
    "id_rsa",
    "password",
)


def _split_shell_segments(command: str) -> list[list[str]]:
    """Split a shell command into token lists separated by control operators."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    lexer.commenters = ""
    segments: list[list[str]] = []
    current: list[str] = []
    for token in lexer:
        if token in {";", "&&", "||", "|", "&"}:
            if current:
                segments.append(current)
                current = []
            continue
        current.append(token)
    if current:
        segments.append(current)
    return segments


def _is_recursive_force_rm(command: str) -> bool:
    """Detect ``rm`` with both recursive and force flags (``rm -r -f``, ``rm -fr``)."""
    try:
        segments = _split_shell_segments(command)
    except ValueError:
        return False
    for tokens in segments:
        words = [token for token in tokens if token not in {"sudo", "command", "nohup"}]
        if not words or words[0].rsplit("/", 1)[-1] != "rm":
            continue
        flags = "".join(token.lstrip("-") for token in words[1:] if token.startswith("-") and not token.startswith("--"))
        long_flags = {token for token in words[1:] if token.startswith("--")}
        recursive = "r" in flags.lower() or "--recursive" in long_flags
        force = "f" in flags or "--force" in long_flags
        if recursive and force:
            return True
    return False


def approval_key(tool: str, params: dict[str, Any]) -> str:
    """Cache key for one exact (tool, parameters) signature."""
    return f"{tool}:{json.dumps(params, sort_keys=True, separators=(',', ':'), default=str)}"


class ConsoleApprover:
    """Interactive approver backed by ``rich.prompt.Confirm``."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)

    def __call__(self, message: str) -> bool:
        self.console.print(message)
        return Confirm.ask("Allow this operation?", default=False, console=self.console)


class PermissionGate:
    """Decide allow/deny/ask for tool calls, caching decisions for the run."""

    def __init__(
        self,
        config: PermissionsConfig | None = None,
        approver: Approver | None = None,
        interactive: bool | None = None,
    ):
        cfg = config or PermissionsConfig()
        self.auto_approve = cfg.auto_approve
        self._permissions: dict[str, PermissionRule] = dict(DEFAULT_TOOL_PERMISSIONS)
        self._permissions.update(cfg.tool_permissions)
        self._approver: Approver = approver or ConsoleApprover()
        if interactive is None:
            interactive = approver is not None or sys.stdin.isatty()
        self.interactive = interactive
        self._history: dict[str, bool] = {}
        self.prompt_count = 0

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    @staticmethod
    def _command(tool: str, params: dict[str, Any]) -> str:
        if tool not in SHELL_TOOLS:
            return ""
        return str(params.get("command") or "").strip().lower()

    def is_destructive(self, tool: str, params: dict[str, Any]) -> bool:
        command = self._command(tool, params)
        if command:
            if any(pattern.search(command) for pattern in DESTRUCTIVE_PATTERNS):
                return True
            if _is_recursive_force_rm(command):
                return True
        if tool in WRITE_TOOLS:
            path = str(params.get("path") or "").lower()
            return any(marker in path for marker in SENSITIVE_PATH_MARKERS)
        return False

    def is_high_risk(self, tool: str, params: dict[str, Any]) -> bool:
        command = self._command(tool, params)
        if not command:
            return False
        return any(pattern.search(command) for pattern in HIGH_RISK_PATTERNS)

    def classify(self, tool: str, params: dict[str, Any]) -> RiskLevel:
        if self.is_destructive(tool, params):
            return "destructive"
        if self.is_high_risk(tool, params):
            return "high_risk"
        return "normal"

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def check_permission(self, tool: str, params: dict[str, Any] | None = None) -> bool:
        """Return whether ``tool`` may run with ``params``.

        Destructive and high-risk calls always go through the approver, even
        in auto-approve mode and even when the tool's rule is ``allow``.
        """
        params = params or {}
        rule = self.get_permission(tool)

        if rule == "deny":
            log.warning("Permission denied by rule", tool=tool)
            return False

        risk = self.classify(tool, params)
        if risk != "normal":
            log.warning("Risky tool call requires approval", tool=tool, risk=risk, params=params)
            return self._request_approval(tool, params, risk)

        if rule == "allow":
            return True

        if self.auto_approve:
            log.info("Auto-approved tool call", tool=tool)
            return True

        return self._request_approval(tool, params, risk)

    def _request_approval(self, tool: str, params: dict[str, Any], risk: RiskLevel) -> bool:
        key = approval_key(tool, params)
        if key in self._history:
            return self._history[key]

        if not self.interactive:
            log.error("Cannot request approval in non-interactive mode", tool=tool, risk=risk)
            return False

        label = {
            "destructive": "[DESTRUCTIVE ACTION]",
            "high_risk": "[HIGH RISK]",
        }.get(risk, "[PERMISSION REQUIRED]")
        message = f"{label} Allow {tool}?\n{json.dumps(params, indent=2, default=str)}"

        self.prompt_count += 1
        try:
            approved = bool(self._approver(message))
        except Exception as e:
            log.error("Approval prompt failed", tool=tool, error=str(e))
            return False

        self._history[key] = approved
        log.info("Approval decision", tool=tool, approved=approved, risk=risk)
        return approved

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_permission(self, tool: str, rule: PermissionRule) -> None:
        self._permissions[tool] = rule

    def get_permission(self, tool: str) -> PermissionRule:
        return self._permissions.get(tool, "ask")

    def set_auto_approve(self, value: bool) -> None:
        self.auto_approve = value

    def clear_history(self) -> None:
        self._history.clear()
