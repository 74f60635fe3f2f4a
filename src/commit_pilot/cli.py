"""CLI interface for the commit pilot."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .cli_utils import resolve_tool_executable
from .display import ConsoleDisplay
from .models import ConfigError, PilotConfig, WorkflowState
from .orchestration import CommitOrchestrator

console = Console()


def configure_logging(verbose: bool) -> None:
    """Route library logging through Rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


async def run_commit(workspace: Path, config: PilotConfig, display: ConsoleDisplay) -> WorkflowState:
    """Run one commit workflow against the terminal display.

    Returns:
        The state the workflow ended in.
    """
    async with CommitOrchestrator(config, display) as orchestrator:
        display.attach(orchestrator)
        started = await orchestrator.start(workspace)
        if not started and orchestrator.state != WorkflowState.RUNNING:
            # Rejected before a run began
            return WorkflowState.FAILED
        # A failed spawn still finishes through the transport's error report
        return await orchestrator.wait_finished()


@click.group()
@click.version_option(package_name="commit-pilot")
def main():
    """Commit Pilot - generate and confirm commit messages with an interactive tool."""
    pass


@main.command()
@click.argument('workspace', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--executable', help='Commit tool executable (default from config, else "seshat")')
@click.option('--linger', type=float, help='Seconds to keep the final status before resetting')
@click.option('--no-auto-open', is_flag=True, help='Do not focus the display when the run starts')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def commit(
    workspace: str,
    executable: Optional[str],
    linger: Optional[float],
    no_auto_open: bool,
    verbose: bool
):
    """Generate a commit message for WORKSPACE and confirm it.

    The tool proposes a message; you can accept it, edit it, or cancel.
    An edited message is committed directly with git instead of by the tool.
    """
    configure_logging(verbose)
    root = Path(workspace).resolve()

    try:
        config = PilotConfig.load(root)
    except ConfigError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    overrides = {}
    if executable:
        overrides["executable_path"] = executable
    if linger is not None:
        overrides["linger_seconds"] = linger
    if no_auto_open:
        overrides["auto_open_panel"] = False
    if overrides:
        config = config.model_copy(update=overrides)

    config = config.model_copy(
        update={"executable_path": resolve_tool_executable(config.resolved_executable)}
    )

    display = ConsoleDisplay(console)
    try:
        outcome = asyncio.run(run_commit(root, config, display))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)

    sys.exit(0 if outcome == WorkflowState.SUCCEEDED else 1)


if __name__ == "__main__":
    main()
