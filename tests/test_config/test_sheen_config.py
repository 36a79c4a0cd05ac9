import io
import json
from pathlib import Path

import structlog

import sheen.config as config_module
from sheen.config import Config
from sheen.logging import configure_logging, get_logger
from sheen.main import load_config


def test_defaults():
    cfg = Config()

    assert cfg.loop.max_iterations == 100
    assert cfg.error_recovery.max_errors == 3
    assert cfg.error_recovery.max_no_progress == 5
    assert cfg.agent.engine == "subprocess"
    assert cfg.agent.timeout == 300.0
    assert cfg.agent.kill_grace_seconds == 5.0
    assert cfg.context.prune_threshold == 0.8
    assert cfg.context.keep_recent_messages == 10
    assert cfg.permissions.auto_approve is False
    assert "todo" in cfg.tools.enabled


def test_load_prefers_local_sheen_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("loop:\n  max_iterations: 7\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    assert Config.load().loop.max_iterations == 7

    (tmp_path / "sheen.yaml").write_text(
        (
            "loop:\n"
            "  max_iterations: 12\n"
            "agent:\n"
            "  engine: native\n"
            "permissions:\n"
            "  tool_permissions:\n"
            "    shell_exec: deny\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.loop.max_iterations == 12
    assert cfg.agent.engine == "native"
    assert cfg.permissions.tool_permissions == {"shell_exec": "deny"}


def test_missing_file_falls_back_to_defaults(tmp_path: Path):
    cfg = Config.from_yaml(tmp_path / "absent.yaml")

    assert cfg.loop.max_iterations == 100


def test_environment_overrides_nested_values(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "none.yaml")
    monkeypatch.setenv("SHEEN_LOOP__SLEEP_BETWEEN_ITERATIONS", "0.5")
    monkeypatch.setenv("SHEEN_AGENT__MODEL", "local/model")

    cfg = Config.load()

    assert cfg.loop.sleep_between_iterations == 0.5
    assert cfg.agent.model == "local/model"


def test_save_round_trip(tmp_path: Path):
    cfg = Config()
    cfg.loop.max_iterations = 42
    cfg.tools.shell.timeout = 30
    target = tmp_path / "nested" / "config.yaml"

    cfg.save(target)
    loaded = Config.from_yaml(target)

    assert loaded.loop.max_iterations == 42
    assert loaded.tools.shell.timeout == 30


def test_resolved_plan_path(tmp_path: Path):
    cfg = Config()

    assert cfg.resolved_plan_path(tmp_path) == (tmp_path / ".sheen" / "plan.db").resolve()
    cfg.plan.path = str(tmp_path / "elsewhere.db")
    assert cfg.resolved_plan_path("/ignored") == (tmp_path / "elsewhere.db").resolve()


def test_cli_overrides(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    config_file = tmp_path / "custom.yaml"
    config_file.write_text("loop:\n  max_iterations: 9\n", encoding="utf-8")

    cfg = load_config(str(config_file), auto_resume=True, max_iterations=3, auto_approve=True)

    assert cfg.loop.max_iterations == 3
    assert cfg.loop.auto_resume is True
    assert cfg.permissions.auto_approve is True


def test_json_logging_writes_structured_events():
    stream = io.StringIO()
    cfg = Config()
    cfg.logging.format = "json"
    configure_logging(cfg, stream=stream)
    try:
        get_logger("sheen.test").info("Task completed", task_id="t1")
        event = json.loads(stream.getvalue().strip().splitlines()[-1])
    finally:
        structlog.reset_defaults()

    assert event["event"] == "Task completed"
    assert event["task_id"] == "t1"
    assert event["level"] == "info"


def test_verbose_level_filters_debug():
    stream = io.StringIO()
    cfg = Config()
    cfg.logging.format = "json"
    configure_logging(cfg, level="WARNING", stream=stream)
    try:
        log = get_logger("sheen.test")
        log.info("hidden")
        log.warning("shown")
    finally:
        structlog.reset_defaults()

    assert "hidden" not in stream.getvalue()
    assert "shown" in stream.getvalue()
