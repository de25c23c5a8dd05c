"""CLI commands for vatic."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from vatic import __logo__, __version__
from vatic.errors import (
    AgentError,
    ConfigError,
    JobNotFound,
    JobRunError,
    RenderError,
    SandboxError,
    StoreError,
    VaticError,
)

app = typer.Typer(
    name="vatic",
    help=f"{__logo__} vatic - scheduled and message-triggered AI agent jobs",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_JOB_NOT_FOUND = 3
EXIT_RENDER = 4
EXIT_ENVIRONMENT = 5
EXIT_AGENT = 6


def exit_code_for(error: BaseException) -> int:
    """Map a run failure to the exit code that names its cause."""
    cause = error.cause if isinstance(error, JobRunError) else error
    if isinstance(cause, JobNotFound):
        return EXIT_JOB_NOT_FOUND
    if isinstance(cause, ConfigError):
        return EXIT_CONFIG
    if isinstance(cause, RenderError):
        return EXIT_RENDER
    if isinstance(cause, SandboxError):
        return EXIT_ENVIRONMENT
    if isinstance(cause, AgentError):
        return EXIT_AGENT
    return EXIT_FAILURE


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} vatic v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """vatic - scheduled and message-triggered AI agent jobs."""
    pass


def _load():
    """Settings, logging and configuration shared by every command."""
    from vatic.config.loader import load_config
    from vatic.config.schema import VaticSettings
    from vatic.core.logger import configure_logger

    settings = VaticSettings()
    configure_logger(settings)
    try:
        loaded = load_config(settings)
    except ConfigError as e:
        err_console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(EXIT_CONFIG)
    configure_logger(settings, loaded.secrets)
    return loaded


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    alias: str = typer.Argument(..., help="Job alias"),
    message: str = typer.Option(None, "--message", "-m", help="Simulate an inbound message"),
    sender: str = typer.Option("local", "--sender", "-s", help="Sender of the simulated message"),
):
    """Run one job now and print its result."""
    from vatic.bus.events import InboundMessage
    from vatic.core.runner import JobRunner
    from vatic.memory.sqlite_store import MemoryStore
    from vatic.routing.trigger import match_trigger

    loaded = _load()
    job = loaded.get_job(alias)
    if job is None:
        failure = loaded.failed(alias)
        if failure is not None:
            err_console.print(f"[red]Config error:[/red] {failure}")
            raise typer.Exit(EXIT_CONFIG)
        error = JobNotFound(f"job '{alias}' not found")
        err_console.print(f"[red]Error:[/red] {error}")
        raise typer.Exit(exit_code_for(error))

    inbound = None
    if message is not None:
        channel = job.input.channel if job.input else "cli"
        inbound = InboundMessage(channel=channel, sender=sender, text=message)
        if job.input:
            inbound = match_trigger(job.input, inbound) or inbound

    try:
        store = MemoryStore(loaded.settings.db_path, loaded.secrets)
        runner = JobRunner(store=store, dictionary=loaded.dictionary, secrets=loaded.secrets)
        result = asyncio.run(runner.run_job(job, inbound))
    except JobRunError as e:
        err_console.print(f"[red]Error:[/red] [{e.alias}] {e.stage} failed: {e.cause}")
        raise typer.Exit(exit_code_for(e))
    except StoreError as e:
        err_console.print(f"[red]Store error:[/red] {e}")
        raise typer.Exit(EXIT_FAILURE)

    console.print(Text(result.result))
    for error in result.outputs.errors:
        err_console.print(f"[yellow]Warning:[/yellow] {error}")


# ============================================================================
# List
# ============================================================================


def _trigger_label(job) -> str:
    if job.input is None:
        return ""
    trigger = job.input.trigger or "*"
    return f"{job.input.channel}: {trigger} ({job.input.trigger_match})"


@app.command("list")
def list_jobs():
    """List configured jobs."""
    loaded = _load()

    for error in loaded.errors:
        err_console.print(f"[yellow]Skipped:[/yellow] {error}")

    if not loaded.jobs:
        console.print("No jobs configured.")
        return

    table = Table(title="Jobs")
    table.add_column("Alias", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Agent", style="magenta")
    table.add_column("Environment", style="yellow")
    table.add_column("Schedule")
    table.add_column("Trigger", style="dim")

    for alias in sorted(loaded.jobs):
        job = loaded.jobs[alias]
        table.add_row(
            alias,
            job.name,
            job.agent.name,
            job.environment.name,
            job.interval or "",
            _trigger_label(job),
        )

    console.print(table)


# ============================================================================
# Daemon
# ============================================================================


@app.command()
def daemon():
    """Serve every channel and cron schedule until SIGINT/SIGTERM."""
    from vatic.core.daemon import Daemon

    loaded = _load()
    for error in loaded.errors:
        err_console.print(f"[yellow]Skipped:[/yellow] {error}")

    console.print(f"{__logo__} Starting vatic daemon with {len(loaded.jobs)} jobs...")
    try:
        service = Daemon(loaded)
        asyncio.run(service.run())
    except VaticError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(exit_code_for(e))
    console.print("Daemon stopped.")
