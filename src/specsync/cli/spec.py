"""
specsync CLI - spec commands.

Create, inspect, edit and move specs through their phases. When GitHub is
configured, changes are pushed to the spec's issue by event listeners;
pass --no-sync to skip that.
"""

import typer
from rich.console import Console
from rich.table import Table

from specsync.cli.context import open_project, open_services, run_command
from specsync.cli.errors import print_warning
from specsync.core.events import DispatchReport
from specsync.core.specs import markdown
from specsync.core.specs.models import EntityType, MappingStatus, Phase

console = Console()
app = typer.Typer(
    name="spec",
    help="Create and manage specs",
    no_args_is_help=True,
)

PHASE_COLORS: dict[Phase, str] = {
    Phase.REQUIREMENTS: "yellow",
    Phase.DESIGN: "blue",
    Phase.TASKS: "magenta",
    Phase.IMPLEMENTATION: "cyan",
    Phase.COMPLETED: "green",
}


def _parse_phase(value: str) -> Phase:
    try:
        return Phase.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


def _report_dispatch(dispatch: DispatchReport | None) -> None:
    if dispatch is None:
        return
    for failure in dispatch.failures:
        print_warning(
            f"GitHub sync failed ({failure.error})",
            solution=f"specsync sync push {dispatch.event.record_id[:8]}",
        )
    if dispatch.timed_out:
        print_warning("GitHub sync did not finish in time")


@app.command()
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Spec name"),
    description: str | None = typer.Option(
        None, "--description", "-d", help="Background for the requirements document"
    ),
    branch: str | None = typer.Option(None, "--branch", "-b", help="Branch reference"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Don't create a GitHub issue"),
) -> None:
    """
    Create a spec and its requirements document.

    Examples:
        specsync spec create "Login page"
        specsync spec create "Export" -d "Users need CSV exports" --no-sync
    """

    async def _create() -> None:
        project = open_project(ctx)
        async with open_services(project, github=not no_sync) as services:
            change = await services.specs.create(name, description, branch)
        record = change.record
        console.print(f"[green]✓[/green] Created spec {record.short_id}: {record.name}")
        console.print(f"  [dim]{markdown.spec_path(project.spec_dir, record.id)}[/dim]")
        _report_dispatch(change.dispatch)

    run_command(_create())


@app.command(name="list")
def list_specs(
    ctx: typer.Context,
    phase: str | None = typer.Option(None, "--phase", "-p", help="Only show this phase"),
) -> None:
    """List specs, newest first."""

    async def _list() -> None:
        project = open_project(ctx)
        records = project.records.list_records(_parse_phase(phase) if phase else None)
        if not records:
            console.print("[dim]No specs found.[/dim]")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Phase")
        table.add_column("Issue", justify="right")
        table.add_column("Updated", style="dim")

        mappings = project.mappings
        for record in records:
            mapping = mappings.get(EntityType.RECORD, record.id)
            issue = (
                f"#{mapping.remote_number}"
                if mapping and mapping.status == MappingStatus.SUCCESS
                else "-"
            )
            color = PHASE_COLORS[record.phase]
            table.add_row(
                record.short_id,
                record.name,
                f"[{color}]{record.phase.value}[/{color}]",
                issue,
                markdown.format_timestamp(record.updated_at),
            )
        console.print(table)

    run_command(_list())


@app.command()
def show(
    ctx: typer.Context,
    spec_id: str = typer.Argument(..., help="Spec ID or unique prefix"),
) -> None:
    """Show a spec's record and sync mappings."""

    async def _show() -> None:
        project = open_project(ctx)
        record = project.records.resolve(spec_id)

        table = Table(show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("ID", record.id)
        table.add_row("Name", record.name)
        table.add_row("Phase", record.phase.value)
        table.add_row("Description", record.description or "[dim]-[/dim]")
        table.add_row("Branch", record.branch_name or "[dim]-[/dim]")
        table.add_row("Created", markdown.format_timestamp(record.created_at))
        table.add_row("Updated", markdown.format_timestamp(record.updated_at))
        table.add_row("File", str(markdown.spec_path(project.spec_dir, record.id)))

        for mapping in project.mappings.list_for_record(record.id):
            label = f"{mapping.entity_type.value} {mapping.local_id[:20]}"
            value = f"#{mapping.remote_number}" if mapping.remote_number else "-"
            if mapping.status != MappingStatus.SUCCESS:
                value += f" [yellow]({mapping.status.value})[/yellow]"
            table.add_row(label, value)

        console.print(table)

    run_command(_show())


@app.command()
def update(
    ctx: typer.Context,
    spec_id: str = typer.Argument(..., help="Spec ID or unique prefix"),
    name: str | None = typer.Option(None, "--name", "-n", help="New name"),
    description: str | None = typer.Option(None, "--description", "-d", help="New description"),
    branch: str | None = typer.Option(None, "--branch", "-b", help="New branch reference"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Don't update the GitHub issue"),
) -> None:
    """Update a spec's name, description or branch."""
    if name is None and description is None and branch is None:
        raise typer.BadParameter("Nothing to update: pass --name, --description or --branch")

    async def _update() -> None:
        project = open_project(ctx)
        record = project.records.resolve(spec_id)
        async with open_services(project, github=not no_sync) as services:
            change = await services.specs.update(
                record.id, name=name, description=description, branch_name=branch
            )
        console.print(f"[green]✓[/green] Updated spec {change.record.short_id}")
        _report_dispatch(change.dispatch)

    run_command(_update())


@app.command()
def delete(
    ctx: typer.Context,
    spec_id: str = typer.Argument(..., help="Spec ID or unique prefix"),
    keep_file: bool = typer.Option(False, "--keep-file", help="Leave the Markdown file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Don't close the GitHub issue"),
) -> None:
    """Delete a spec (and close its issue)."""

    async def _delete() -> None:
        project = open_project(ctx)
        record = project.records.resolve(spec_id)
        if not yes and not typer.confirm(f"Delete spec {record.short_id} ({record.name})?"):
            console.print("[dim]Aborted.[/dim]")
            return
        async with open_services(project, github=not no_sync) as services:
            change = await services.specs.delete(record.id, keep_file=keep_file)
        console.print(f"[green]✓[/green] Deleted spec {record.short_id}")
        _report_dispatch(change.dispatch)

    run_command(_delete())


@app.command()
def phase(
    ctx: typer.Context,
    spec_id: str = typer.Argument(..., help="Spec ID or unique prefix"),
    target: str = typer.Argument(..., help="Target phase"),
    force: bool = typer.Option(False, "--force", "-f", help="Ignore missing sections"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only validate"),
    expected: str | None = typer.Option(
        None, "--expect", help="Fail unless the spec is currently in this phase"
    ),
    no_sync: bool = typer.Option(False, "--no-sync", help="Don't sync GitHub"),
) -> None:
    """
    Move a spec to another phase.

    Examples:
        specsync spec phase 1a2b design
        specsync spec phase 1a2b tasks --dry-run
        specsync spec phase 1a2b tasks --force
    """
    target_phase = _parse_phase(target)
    expected_phase = _parse_phase(expected) if expected else None

    async def _phase() -> None:
        project = open_project(ctx)
        record = project.records.resolve(spec_id)
        async with open_services(project, github=not no_sync and not dry_run) as services:
            result = await services.transitions.transition(
                record.id,
                target_phase,
                expected_phase=expected_phase,
                force=force,
                dry_run=dry_run,
            )

        validation = result.validation
        if dry_run:
            if validation.missing:
                console.print(
                    f"[yellow]✗[/yellow] {result.old_phase.value} → {target_phase.value} "
                    "would be rejected. Missing:"
                )
                for section in validation.missing:
                    console.print(f"  - {section}")
            else:
                console.print(
                    f"[green]✓[/green] {result.old_phase.value} → {target_phase.value} is valid"
                )
            return

        console.print(
            f"[green]✓[/green] {record.short_id}: "
            f"{result.old_phase.value} → {result.new_phase.value}"
        )
        if validation.missing:
            print_warning(f"Forced past missing sections: {', '.join(validation.missing)}")
        _report_dispatch(result.dispatch)

    run_command(_phase())
