"""
Init command implementation for specsync project initialization.

Creates ``.specsync/`` with the spec directory, the SQLite database and
``config.json``. Re-running keeps existing settings unless --force is given.
"""

import json
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console

from specsync.cli.context import project_dir_from
from specsync.cli.errors import ExitCode, print_error
from specsync.core.config.loader import get_project_config_path, load_json_file
from specsync.core.config.models import PathsConfig
from specsync.core.store import init_db

console = Console()
logger = logging.getLogger(__name__)

GITIGNORE_PATTERNS = [
    "# specsync",
    ".specsync/*.db",
    ".specsync/*.db-wal",
    ".specsync/*.db-shm",
]


def _save_project_config(project_dir: Path, config: dict[str, Any]) -> Path:
    """Save project configuration to .specsync/config.json."""
    config_file = get_project_config_path(project_dir)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
        f.write("\n")
    return config_file


def _update_gitignore(project_dir: Path) -> bool:
    """Append the specsync patterns that .gitignore is missing."""
    gitignore = project_dir / ".gitignore"
    existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    lines = set(existing.splitlines())
    missing = [p for p in GITIGNORE_PATTERNS if p not in lines]
    if not missing:
        return False
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    with open(gitignore, "a", encoding="utf-8") as f:
        f.write(prefix + "\n".join(missing) + "\n")
    return True


def main(
    ctx: typer.Context,
    repo: str | None = typer.Option(
        None, "--repo", "-r", help="GitHub repository as owner/repo"
    ),
    project_number: int | None = typer.Option(
        None, "--project", "-p", help="GitHub Project number for new issues"
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite existing config.json"
    ),
) -> None:
    """
    Initialize specsync in a project.

    Examples:
        specsync init
        specsync init --repo acme/widgets --project 3
    """
    project_dir = project_dir_from(ctx)

    config = {} if force else (load_json_file(get_project_config_path(project_dir)) or {})
    github: dict[str, Any] = dict(config.get("github", {}))
    if repo is not None:
        owner, sep, name = repo.partition("/")
        if not sep or not owner or not name or "/" in name:
            print_error(f"Invalid repository: {repo}", solution="specsync init --repo owner/repo")
            raise typer.Exit(ExitCode.USER_ERROR)
        github["owner"] = owner
        github["repo"] = name
    if project_number is not None:
        github["project_number"] = project_number
    if github:
        config["github"] = github

    paths = PathsConfig(**config.get("paths", {}))
    paths.spec_dir(project_dir).mkdir(parents=True, exist_ok=True)
    conn = init_db(paths.database_path(project_dir))
    conn.close()

    config_file = _save_project_config(project_dir, config)
    if _update_gitignore(project_dir):
        logger.debug("Updated %s/.gitignore", project_dir)

    console.print(f"[green]✓[/green] Initialized specsync in {project_dir / paths.root}")
    console.print(f"  [dim]{config_file}[/dim]")
    if "owner" not in github:
        console.print(
            "[dim]GitHub sync is off. Enable it with: specsync init --repo owner/repo[/dim]"
        )
