"""
MINIFACTORY CLI: The Interface

  minifactory deploy     (execute the pending assignment, if any)
  minifactory status     (check config, tools and the assignment slot)
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from minifactory.assignment import AssignmentStore, DeploymentAborted
from minifactory.audit_logger import AuditLogger
from minifactory.config_loader import ConfigError, MinifactoryConfig, load_config
from minifactory.controller import Deployer
from minifactory.editor import write_model_settings
from minifactory.event_bus import bus
from minifactory.identity import BANNER, __codename__, __tagline__, __version__

app = typer.Typer(
    name="minifactory",
    help=f"{__codename__}: {__tagline__}\nThe mini-app deployment worker.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    # Load .env from current directory
    load_dotenv()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def deploy(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config overrides"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Execute the pending deployment assignment, if there is one."""
    _configure_logging(verbose)
    config = _load(config_file)

    _prepare_data_dirs(config)
    try:
        write_model_settings(config)
    except OSError as e:
        logger.error(f"Could not set model settings at {config.model_settings_path}: {e}")

    if config.paths.audit_log:
        try:
            AuditLogger(config.paths.audit_log, bus)
        except OSError as e:
            logger.error(f"Could not open audit log at {config.paths.audit_log}: {e}")

    try:
        result = asyncio.run(Deployer(config).run())
    except DeploymentAborted as e:
        console.print(f"[red]💥 Deployment aborted: {escape(str(e))}[/]")
        raise typer.Exit(1)

    if result is None:
        console.print("[dim]Nothing to deploy.[/]")
    else:
        console.print(f"[bold green]✅ Deployed {result.git_hash.strip()}[/]")


@app.command()
def status(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config overrides"),
):
    """Check MINIFACTORY configuration and readiness."""
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} | {__tagline__}[/]\n")

    config = _load(config_file)

    paths = Table(title="Configuration", border_style="cyan")
    paths.add_column("Setting")
    paths.add_column("Value")
    paths.add_row("Data dir", str(config.data_dir))
    paths.add_row("Projects dir", str(config.projects_dir))
    paths.add_row("Assignment", str(config.assignment_path))
    paths.add_row("Model", config.model.identifier)
    paths.add_row("Remote prefix", config.remote.prefix)
    paths.add_row("Edit timeout", f"{config.edit.timeout_seconds:.0f}s")
    console.print(paths)

    assignment = AssignmentStore(config.assignment_path).read()
    if assignment is None:
        console.print("[dim]No pending assignment.[/]")
    else:
        version = assignment.version or "default branch"
        console.print(f"[bold]Pending:[/] {assignment.project} @ {version}")

    tools = Table(title="System Tools", border_style="cyan")
    tools.add_column("Tool")
    tools.add_column("Status")
    for tool in [config.tools.git, config.tools.aider, config.tools.npm]:
        found = shutil.which(tool)
        s = f"[green]✓ {found}[/]" if found else "[dim]✗ Not found[/]"
        tools.add_row(tool, s)
    console.print(tools)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load(config_file: Path | None) -> MinifactoryConfig:
    try:
        return load_config(config_file)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(2)


def _prepare_data_dirs(config: MinifactoryConfig) -> None:
    for label, directory in (("data", config.data_dir), ("projects", config.projects_dir)):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create {label} dir at {directory}: {e}")


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    # loguru terminates each message with a newline already.
    logger.add(
        lambda msg: console.print(msg, highlight=False, markup=False, end=""),
        level="DEBUG" if verbose else "INFO",
        format="{time:HH:mm:ss} | {level:<7} | {message}",
    )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
