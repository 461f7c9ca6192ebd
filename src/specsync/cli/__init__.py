"""
specsync CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys
from pathlib import Path

import typer
from rich.console import Console

from specsync import __version__
from specsync.cli import audit, init_cmd, spec, sync, tasks
from specsync.core.config.env import load_layered_env

# Help panel names for command grouping
PANEL_SPECS = "Work with Specs"
PANEL_GITHUB = "Sync with GitHub"
PANEL_PROJECT = "Manage Your Project"

app = typer.Typer(
    name="specsync",
    help="Keep spec documents, their records and GitHub issues in sync",
    no_args_is_help=True,
    add_completion=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug output with detailed logging",
    ),
    project_dir: Path | None = typer.Option(
        None,
        "--project-dir",
        "-C",
        help="Project directory (default: current directory)",
    ),
) -> None:
    """
    specsync - spec documents that stay in sync.

    Quick Start:
        1. specsync init --repo owner/repo     # Initialize your project
        2. specsync spec create "Login page"   # Create a spec (and its issue)
        3. specsync spec phase <id> design     # Move it through its phases

    Phases:
        requirements → design → tasks → implementation → completed
    """
    directory = (project_dir or Path.cwd()).resolve()

    # Precedence: OS env > project .env > user .env
    load_layered_env(project_dir=directory)

    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    ctx.obj = {"verbose": verbose, "project_dir": directory}


# =============================================================================
# Work with Specs
# =============================================================================

app.command(name="init", rich_help_panel=PANEL_SPECS)(init_cmd.main)
app.add_typer(spec.app, name="spec", rich_help_panel=PANEL_SPECS)
app.add_typer(tasks.app, name="tasks", rich_help_panel=PANEL_SPECS)


# =============================================================================
# Sync with GitHub
# =============================================================================

app.add_typer(sync.app, name="sync", rich_help_panel=PANEL_GITHUB)


# =============================================================================
# Manage Your Project
# =============================================================================

app.command(name="audit", rich_help_panel=PANEL_PROJECT)(audit.audit)
app.command(name="import", rich_help_panel=PANEL_PROJECT)(audit.import_cmd)


@app.command(rich_help_panel=PANEL_PROJECT)
def version() -> None:
    """Show specsync version and exit."""
    console.print(f"specsync version {__version__}")
    raise typer.Exit(0)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
