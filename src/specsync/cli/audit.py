"""
specsync CLI - audit and import commands.

``audit`` compares the spec files with the database; ``import`` makes the
database match the files.
"""

import json

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from specsync.cli.context import open_project, run_command
from specsync.cli.errors import ExitCode, print_warning
from specsync.core.sync.importer import SpecImporter
from specsync.core.sync.integrity import IntegrityAuditor, IntegrityReport

console = Console()


def _render_report(report: IntegrityReport) -> None:
    color = "green" if report.is_consistent else "yellow"
    console.print(
        Panel(
            f"[{color}]{report.sync_rate}%[/{color}] of {report.total_files} spec file(s) in sync",
            title="Integrity audit",
            expand=False,
        )
    )
    if report.is_consistent:
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Spec", style="cyan")
    table.add_column("Problem")
    for spec_id in report.file_only:
        table.add_row(spec_id[:8], "File has no database record")
    for spec_id in report.record_only:
        table.add_row(spec_id[:8], "Record has no spec file")
    for spec_id, differences in report.mismatched.items():
        table.add_row(spec_id[:8], "\n".join(differences))
    console.print(table)
    console.print("[cyan]→ Try:[/cyan] specsync import  # the files win")


def audit(
    ctx: typer.Context,
    output_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """
    Compare spec files with the database.

    Exits with 1 when anything is out of sync.
    """

    async def _audit() -> IntegrityReport:
        project = open_project(ctx)
        return IntegrityAuditor(project.records).audit(project.spec_dir)

    report = run_command(_audit())
    if output_json:
        data = report.model_dump(mode="json")
        data["sync_rate"] = report.sync_rate
        console.print_json(json.dumps(data))
    else:
        _render_report(report)

    if not report.is_consistent:
        raise typer.Exit(ExitCode.GENERAL_ERROR)


def import_cmd(
    ctx: typer.Context,
    spec_ids: list[str] | None = typer.Argument(
        None, help="Only import these spec IDs (default: every file)"
    ),
) -> None:
    """Import spec files into the database; the file wins on conflicts."""

    async def _import() -> int:
        project = open_project(ctx)
        importer = SpecImporter(project.records)
        if spec_ids:
            result = importer.import_from_files(spec_ids, project.spec_dir)
        else:
            result = importer.import_from_directory(project.spec_dir)

        console.print(
            f"[green]✓[/green] {result.imported} imported, "
            f"{result.updated} updated, {result.unchanged} unchanged"
        )
        for failure in result.errors:
            print_warning(f"{failure.file}: {failure.error}")
        return result.failed

    if run_command(_import()):
        raise typer.Exit(ExitCode.GENERAL_ERROR)
