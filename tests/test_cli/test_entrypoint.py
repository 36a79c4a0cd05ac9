from pathlib import Path

from typer.testing import CliRunner

import sheen.main as main_module
from sheen.main import app

runner = CliRunner()


class FakeEngine:
    instances: list["FakeEngine"] = []

    def __init__(self, config, console=None):
        self.config = config
        self.prompts: list[str | None] = []
        FakeEngine.instances.append(self)

    async def run(self, prompt=None):
        self.prompts.append(prompt)
        return "max_iterations"


def test_requires_prompt_or_auto_resume(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, [])

    assert result.exit_code == 1


def test_options_reach_engine_config(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(main_module, "Engine", FakeEngine)
    monkeypatch.setattr(main_module, "configure_logging", lambda *args, **kwargs: None)
    FakeEngine.instances.clear()

    result = runner.invoke(
        app,
        ["Build it", "--max-iterations", "4", "--auto-approve", "--auto-resume", "--verbose"],
    )

    engine = FakeEngine.instances[0]
    assert result.exit_code == 2
    assert engine.prompts == ["Build it"]
    assert engine.config.loop.max_iterations == 4
    assert engine.config.permissions.auto_approve is True
    assert engine.config.loop.auto_resume is True


def test_auto_resume_without_prompt(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(main_module, "Engine", FakeEngine)
    monkeypatch.setattr(main_module, "configure_logging", lambda *args, **kwargs: None)
    FakeEngine.instances.clear()

    runner.invoke(app, ["--auto-resume"])

    assert FakeEngine.instances[0].prompts == [None]
