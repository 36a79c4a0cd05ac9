"""Read-only project context consumed when building prompts."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from sheen.logging import get_logger

log = get_logger(__name__)


@dataclass
class GitInfo:
    """Git repository status snapshot."""

    initialized: bool = False
    branch: str | None = None
    remote: str | None = None
    has_uncommitted_changes: bool = False


@dataclass
class ProjectContext:
    """Project facts supplied by an external collaborator.

    Language/framework detection is not done here; callers fill those fields
    when they know them.
    """

    root_dir: str = field(default_factory=lambda: str(Path.cwd()))
    language: str | None = None
    framework: str | None = None
    package_manager: str | None = None
    test_framework: str | None = None
    git: GitInfo | None = None

    @classmethod
    def from_directory(cls, root_dir: Path | str, **fields: str | None) -> "ProjectContext":
        """Build a context for ``root_dir`` with a best-effort git snapshot."""
        root = Path(root_dir).expanduser().resolve()
        return cls(root_dir=str(root), git=read_git_info(root), **fields)


def _git(root: Path, *args: str) -> str | None:
    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=str(root),
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        log.debug("git probe failed", args=args, error=str(e))
        return None
    if completed.returncode != 0:
        return None
    return completed.stdout.strip()


def read_git_info(root: Path | str) -> GitInfo:
    """Return git status for ``root``; uninitialized when git is unavailable."""
    root_path = Path(root)
    inside = _git(root_path, "rev-parse", "--is-inside-work-tree")
    if inside != "true":
        return GitInfo(initialized=False)
    branch = _git(root_path, "rev-parse", "--abbrev-ref", "HEAD") or None
    remote = _git(root_path, "remote", "get-url", "origin") or None
    status = _git(root_path, "status", "--porcelain")
    return GitInfo(
        initialized=True,
        branch=branch,
        remote=remote,
        has_uncommitted_changes=bool(status),
    )
