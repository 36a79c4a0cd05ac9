"""Task and execution-state data model."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from sheen.project import ProjectContext


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

TaskStatus = Literal["pending", "in_progress", "completed", "failed", "skipped"]
TaskPriority = Literal["high", "medium", "low"]
Phase = Literal["discovery", "planning", "implementation", "validation", "complete"]

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"
SKIPPED = "skipped"

TASK_STATUSES: tuple[str, ...] = (PENDING, IN_PROGRESS, COMPLETED, FAILED, SKIPPED)
TASK_PRIORITIES: tuple[str, ...] = ("high", "medium", "low")
PHASES: tuple[str, ...] = ("discovery", "planning", "implementation", "validation", "complete")


def utcnow() -> datetime:
    """Return current timezone-aware UTC timestamp."""
    return datetime.now(UTC)


def generate_task_id() -> str:
    """Return a unique task id (``task_<ms>_<random>``)."""
    return f"task_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


@dataclass
class TaskResult:
    """Outcome of a finished task."""

    success: bool
    output: Any = None
    files_modified: list[str] = field(default_factory=list)
    commits: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "files_modified": list(self.files_modified),
            "commits": list(self.commits),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskResult":
        return cls(
            success=bool(data.get("success", False)),
            output=data.get("output"),
            files_modified=list(data.get("files_modified") or []),
            commits=list(data.get("commits") or []),
        )


@dataclass
class TaskError:
    """Error recorded against a task."""

    message: str
    recoverable: bool = True
    code: str | None = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "recoverable": self.recoverable,
            "code": self.code,
            "timestamp": _iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskError":
        return cls(
            message=str(data.get("message", "")),
            recoverable=bool(data.get("recoverable", True)),
            code=data.get("code"),
            timestamp=_parse_iso(data.get("timestamp")) or utcnow(),
        )


@dataclass
class Task:
    """Single unit of work tracked by the planner."""

    id: str
    description: str
    status: TaskStatus = PENDING
    priority: TaskPriority = "medium"
    phase: Phase = "implementation"
    dependencies: list[str] = field(default_factory=list)
    attempts: int = 0
    result: TaskResult | None = None
    errors: list[TaskError] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "phase": self.phase,
            "dependencies": list(self.dependencies),
            "attempts": self.attempts,
            "result": self.result.to_dict() if self.result is not None else None,
            "errors": [error.to_dict() for error in self.errors],
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Create from dictionary."""
        raw_result = data.get("result")
        return cls(
            id=str(data["id"]),
            description=str(data.get("description", "")),
            status=data.get("status", PENDING),
            priority=data.get("priority", "medium"),
            phase=data.get("phase", "implementation"),
            dependencies=list(data.get("dependencies") or []),
            attempts=int(data.get("attempts", 0) or 0),
            result=TaskResult.from_dict(raw_result) if isinstance(raw_result, dict) else None,
            errors=[TaskError.from_dict(item) for item in data.get("errors") or []],
            created_at=_parse_iso(data.get("created_at")) or utcnow(),
            started_at=_parse_iso(data.get("started_at")),
            completed_at=_parse_iso(data.get("completed_at")),
        )


# ---------------------------------------------------------------------------
# Execution state
# ---------------------------------------------------------------------------


@dataclass
class ProgressMetrics:
    """Measurable progress counters compared between iterations."""

    test_count: int = 0
    file_count: int = 0
    commit_count: int = 0
    no_progress_count: int = 0
    last_commit_hash: str | None = None

    def snapshot(self) -> "ProgressMetrics":
        return ProgressMetrics(
            test_count=self.test_count,
            file_count=self.file_count,
            commit_count=self.commit_count,
            no_progress_count=self.no_progress_count,
            last_commit_hash=self.last_commit_hash,
        )


@dataclass
class ExecutionError:
    """Loop-level error entry (append-only)."""

    iteration: int
    phase: Phase
    error: str
    recovered: bool = False
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class UserMessage:
    """Out-of-band user input queued while the loop runs."""

    message: str
    timestamp: datetime = field(default_factory=utcnow)
    processed: bool = False


@dataclass
class ExecutionState:
    """Run-scoped state mutated by the loop (top level) and planner (tasks)."""

    project_context: ProjectContext = field(default_factory=ProjectContext)
    iteration: int = 0
    phase: Phase = "implementation"
    phase_iteration: int = 0
    current_task: Task | None = None
    tasks: list[Task] = field(default_factory=list)
    metrics: ProgressMetrics = field(default_factory=ProgressMetrics)
    errors: list[ExecutionError] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    paused: bool = False
    user_messages: list[UserMessage] = field(default_factory=list)
    stop_reason: str | None = None

    @property
    def unrecovered_error_count(self) -> int:
        return sum(1 for error in self.errors if not error.recovered)

    def pending_user_messages(self) -> list[UserMessage]:
        return [item for item in self.user_messages if not item.processed]
