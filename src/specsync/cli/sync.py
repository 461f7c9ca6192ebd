"""
specsync CLI - sync commands.

Narrow, re-runnable GitHub sync operations. Every warning printed by the
other commands points at one of these.
"""

import typer
from rich.console import Console

from specsync.cli.context import open_project, open_services, run_command
from specsync.cli.errors import ExitCode, print_error, print_warning
from specsync.core.exceptions import AlreadySyncedError, SpecSyncError

console = Console()
app = typer.Typer(
    name="sync",
    help="Sync specs with GitHub issues",
    no_args_is_help=True,
)


@app.command()
def push(
    ctx: typer.Context,
    spec_id: str | None = typer.Argument(None, help="Spec ID or unique prefix"),
    create: bool = typer.Option(
        False, "--create", "-c", help="Create the issue if the spec has none"
    ),
    all_specs: bool = typer.Option(False, "--all", "-a", help="Push every spec"),
) -> None:
    """
    Push specs to their GitHub issues.

    Examples:
        specsync sync push 1a2b --create
        specsync sync push --all
    """
    if not spec_id and not all_specs:
        raise typer.BadParameter("Pass a spec ID or --all")

    async def _push() -> int:
        project = open_project(ctx)
        async with open_services(project) as services:
            github = services.require_github()
            if all_specs:
                targets = [r.id for r in project.records.list_records()]
            else:
                targets = [project.records.resolve(spec_id or "").id]

            failures = 0
            for record_id in targets:
                try:
                    number = await github.sync.sync_record_to_entity(
                        record_id, create_if_absent=create
                    )
                except AlreadySyncedError:
                    print_warning(
                        f"{record_id[:8]}: another run is creating its issue",
                        solution=f"specsync sync ensure {record_id[:8]}",
                    )
                    failures += 1
                    continue
                except SpecSyncError as e:
                    if not all_specs:
                        raise
                    print_warning(f"{record_id[:8]}: {e}")
                    failures += 1
                    continue
                console.print(f"[green]✓[/green] {record_id[:8]} → #{number}")
            return failures

    if run_command(_push()):
        raise typer.Exit(ExitCode.GENERAL_ERROR)


@app.command()
def pull(
    ctx: typer.Context,
    issue_number: int = typer.Argument(..., help="GitHub issue number"),
) -> None:
    """Pull an issue's title, state and checkboxes into its spec."""

    async def _pull() -> None:
        project = open_project(ctx)
        async with open_services(project) as services:
            github = services.require_github()
            record = await github.sync.sync_entity_to_record(issue_number)
        console.print(
            f"[green]✓[/green] #{issue_number} → {record.short_id} "
            f"({record.name}, {record.phase.value})"
        )

    run_command(_pull())


@app.command()
def project(
    ctx: typer.Context,
    spec_id: str = typer.Argument(..., help="Spec ID or unique prefix"),
    project_number: int | None = typer.Option(
        None, "--project", "-p", help="Project number (defaults to github.project_number)"
    ),
) -> None:
    """Add a spec's issue to a GitHub Project."""

    async def _project() -> None:
        proj = open_project(ctx)
        number = project_number or proj.config.github.project_number
        if number is None:
            print_error(
                "No project number",
                solution="specsync sync project <spec> --project <number>",
            )
            raise typer.Exit(ExitCode.USER_ERROR)

        record = proj.records.resolve(spec_id)
        async with open_services(proj) as services:
            github = services.require_github()
            await github.sync.add_record_to_project(record.id, number)
            await github.listeners.sync_project_status(record.id, record.phase)
        console.print(f"[green]✓[/green] {record.short_id} added to project #{number}")

    run_command(_project())


@app.command()
def ensure(
    ctx: typer.Context,
    spec_id: str | None = typer.Argument(None, help="Spec ID or unique prefix"),
    all_specs: bool = typer.Option(False, "--all", "-a", help="Check every spec"),
    verify: bool = typer.Option(
        False, "--verify", help="Re-create issues that were deleted on GitHub"
    ),
) -> None:
    """Make sure specs have an issue, creating missing ones."""
    if not spec_id and not all_specs:
        raise typer.BadParameter("Pass a spec ID or --all")

    async def _ensure() -> None:
        proj = open_project(ctx)
        async with open_services(proj) as services:
            github = services.require_github()
            if all_specs:
                targets = [r.id for r in proj.records.list_records()]
            else:
                targets = [proj.records.resolve(spec_id or "").id]

            for record_id in targets:
                result = await github.sync.ensure_entity(record_id, verify=verify)
                if result.issue_number is None:
                    console.print(f"[dim]- {record_id[:8]} completed, no issue needed[/dim]")
                elif result.created:
                    console.print(
                        f"[green]✓[/green] {record_id[:8]} → #{result.issue_number} (created)"
                    )
                else:
                    console.print(f"[green]✓[/green] {record_id[:8]} → #{result.issue_number}")
                for warning in result.warnings:
                    print_warning(warning)

    run_command(_ensure())
