"""Command-line entry point."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console

from sheen.config import Config
from sheen.engine import Engine
from sheen.exceptions import SheenError
from sheen.logging import configure_logging, get_logger

log = get_logger(__name__)

app = typer.Typer(help="Sheen - autonomous coding agent loop", add_completion=False)

_EXIT_CODES = {
    "complete": 0,
    "paused": 0,
    "stopped": 0,
    "max_iterations": 2,
    "no_progress": 3,
    "too_many_errors": 4,
}


def load_config(
    config: str = "",
    auto_resume: bool = False,
    max_iterations: int | None = None,
    auto_approve: bool = False,
) -> Config:
    """Load configuration and apply command-line overrides."""
    cfg = Config.load(Path(config) if config else None)
    if auto_resume:
        cfg.loop.auto_resume = True
    if max_iterations is not None:
        cfg.loop.max_iterations = max_iterations
    if auto_approve:
        cfg.permissions.auto_approve = True
    return cfg


@app.command()
def run(
    prompt: str = typer.Argument("", help="What the agent should build"),
    auto_resume: bool = typer.Option(False, "--auto-resume", help="Resume the persisted plan"),
    max_iterations: int | None = typer.Option(None, "--max-iterations", "-n", help="Iteration limit"),
    auto_approve: bool = typer.Option(False, "--auto-approve", help="Approve non-risky tool calls"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """Run the agent loop until the task queue is done or a stop condition fires."""
    console = Console(stderr=True)
    try:
        cfg = load_config(config, auto_resume, max_iterations, auto_approve)
    except Exception as e:
        console.print(f"[red]Failed to load config:[/red] {e}")
        raise typer.Exit(code=1)

    configure_logging(cfg, level="DEBUG" if verbose else None)

    if not prompt and not cfg.loop.auto_resume:
        console.print("[red]Provide a prompt or use --auto-resume.[/red]")
        raise typer.Exit(code=1)

    try:
        engine = Engine(cfg, console=console)
        reason = asyncio.run(engine.run(prompt or None))
    except SheenError as e:
        log.error("Run failed", error=str(e))
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted.[/yellow]")
        raise typer.Exit(code=130)

    raise typer.Exit(code=_EXIT_CODES.get(reason, 0))


if __name__ == "__main__":
    app()
