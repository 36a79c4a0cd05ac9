"""Prompt templates.

The defaults ship in ``sheen/templates``. A project can replace any of them
by placing a file with the same name in ``<project>/.sheen/prompts/``.
Placeholders use ``$name`` syntax; unknown placeholders are left as written.
"""

from importlib import resources
from pathlib import Path
from string import Template

from sheen.logging import get_logger

log = get_logger(__name__)

PROJECT_PROMPTS_DIR = Path(".sheen") / "prompts"


class PromptTemplates:
    """Packaged prompt templates with per-project overrides."""

    def __init__(self, project_root: str | Path | None = None):
        self.override_dir = Path(project_root) / PROJECT_PROMPTS_DIR if project_root else None
        self._cache: dict[str, str] = {}

    def is_overridden(self, name: str) -> bool:
        return self.override_dir is not None and (self.override_dir / name).is_file()

    def load(self, name: str) -> str:
        if name not in self._cache:
            if self.is_overridden(name):
                log.debug("Using project prompt override", template=name)
                text = (self.override_dir / name).read_text(encoding="utf-8")
            else:
                text = resources.files("sheen").joinpath("templates", name).read_text(encoding="utf-8")
            self._cache[name] = text.strip()
        return self._cache[name]

    def render(self, name: str, **values: object) -> str:
        return Template(self.load(name)).safe_substitute({key: str(value) for key, value in values.items()})
