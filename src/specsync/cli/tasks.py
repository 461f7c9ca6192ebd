"""
specsync CLI - task commands.

Tasks come from the checklist under the spec's ``## Tasks`` heading and
become sub-issues of the spec's issue.
"""

import typer
from rich.console import Console
from rich.table import Table

from specsync.cli.context import open_project, open_services, run_command
from specsync.cli.errors import ExitCode, print_warning
from specsync.core.specs import markdown
from specsync.core.specs.checkboxes import parse_task_list
from specsync.core.specs.models import EntityType, MappingStatus

console = Console()
app = typer.Typer(
    name="tasks",
    help="Manage spec tasks and their sub-issues",
    no_args_is_help=True,
)


@app.command(name="list")
def list_tasks(
    ctx: typer.Context,
    spec_id: str = typer.Argument(..., help="Spec ID or unique prefix"),
) -> None:
    """List a spec's tasks and their sub-issues."""

    async def _list() -> None:
        project = open_project(ctx)
        record = project.records.resolve(spec_id)
        path = markdown.spec_path(project.spec_dir, record.id)
        tasks = parse_task_list(record.id, path.read_text(encoding="utf-8")) if path.exists() else []
        if not tasks:
            console.print("[dim]No tasks found.[/dim]")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("Task", style="cyan")
        table.add_column("Title")
        table.add_column("Issue", justify="right")
        for task in tasks:
            mapping = project.mappings.get(EntityType.SUB_ENTITY, task.id)
            issue = "-"
            if mapping is not None and mapping.remote_number is not None:
                issue = f"#{mapping.remote_number}"
                if mapping.status != MappingStatus.SUCCESS:
                    issue += f" [yellow]({mapping.status.value})[/yellow]"
            title = f"[dim]{task.title}[/dim]" if task.completed else task.title
            table.add_row(task.id, title, issue)
        console.print(table)

    run_command(_list())


@app.command()
def create(
    ctx: typer.Context,
    spec_id: str = typer.Argument(..., help="Spec ID or unique prefix"),
) -> None:
    """
    Create sub-issues for a spec's tasks.

    Re-running is safe: tasks that already have a sub-issue are skipped and
    sub-issues that were created but never linked are relinked.
    """

    async def _create() -> bool:
        project = open_project(ctx)
        record = project.records.resolve(spec_id)
        async with open_services(project) as services:
            github = services.require_github()
            tasks = github.sub_entities.tasks_for_record(record.id)
            if not tasks:
                console.print("[dim]No tasks found.[/dim]")
                return True
            batch = await github.sub_entities.create_sub_entities_from_tasks(record.id, tasks)

        for created in batch.created:
            console.print(f"[green]✓[/green] {created.task_id} → #{created.number}")
        if batch.skipped:
            console.print(f"[dim]{len(batch.skipped)} task(s) already had a sub-issue[/dim]")
        for error in batch.errors:
            print_warning(
                f"{error.task_id}: {error.error}",
                solution=f"specsync tasks create {record.short_id}",
            )
        for warning in batch.warnings:
            print_warning(warning)
        return batch.ok

    if not run_command(_create()):
        raise typer.Exit(ExitCode.GENERAL_ERROR)


@app.command()
def complete(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
) -> None:
    """Close a task's sub-issue, and the spec's issue once every task is done."""

    async def _complete() -> None:
        project = open_project(ctx)
        async with open_services(project) as services:
            github = services.require_github()
            result = await github.sub_entities.handle_task_completion(task_id)

        if result.skipped:
            console.print(f"[dim]Task {task_id} has no sub-issue, nothing to close.[/dim]")
            return
        console.print(f"[green]✓[/green] Closed #{result.number}")
        if result.parent_closed:
            console.print("[green]✓[/green] All sub-issues closed, closed the parent issue")

    run_command(_complete())


@app.command()
def reopen(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
) -> None:
    """Reopen a task's sub-issue."""

    async def _reopen() -> None:
        project = open_project(ctx)
        async with open_services(project) as services:
            github = services.require_github()
            issue = await github.sub_entities.update_sub_entity_status(task_id, "open")
        console.print(f"[green]✓[/green] Reopened #{issue.number}")

    run_command(_reopen())
