"""
Standardized error handling and exit codes for the specsync CLI.

Every failure is printed as a problem, an optional reason and, where one
exists, a narrower command to retry by hand.
"""

from enum import IntEnum
from pathlib import Path

from rich.console import Console

from specsync.core.exceptions import (
    AlreadySyncedError,
    AuthenticationError,
    ConfigError,
    InconsistentStateError,
    NotFoundError,
    NotLinkedError,
    PhaseConflictError,
    PhaseTransitionError,
    RateLimitError,
    RemoteError,
    SpecParseError,
    SpecSyncError,
    ValidationError,
)

console = Console()


class ExitCode(IntEnum):
    """Standard exit codes for specsync CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Generic error."""

    USER_ERROR = 2
    """User configuration or input error (actionable by user)."""

    CONFLICT = 3
    """Another caller got there first, or the spec changed underneath us."""

    INCONSISTENT_STATE = 4
    """A rollback failed; the stores need manual repair."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Spec not found: 1a2b3c",
        ...     reason="The ID may be wrong or the spec was deleted",
        ...     solution="specsync spec list",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_warning(message: str, *, solution: str | None = None) -> None:
    console.print(f"[yellow]⚠[/yellow]  {message}")
    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_not_initialized_error(project_dir: Path) -> None:
    """Print error when the project has no specsync database."""
    print_error(
        f"Not a specsync project: {project_dir}",
        reason="No .specsync/ database found",
        solution="specsync init",
    )


def print_github_not_configured_error() -> None:
    """Print error when a command needs GitHub but it isn't configured."""
    print_error(
        "GitHub is not configured",
        reason="github.owner, github.repo and a token (GITHUB_TOKEN) are required",
        solution="specsync init --repo owner/repo  # and export GITHUB_TOKEN",
    )


def _short(value: object) -> str:
    return str(value)[:8]


def exit_code_for(error: SpecSyncError) -> ExitCode:
    if isinstance(error, InconsistentStateError):
        return ExitCode.INCONSISTENT_STATE
    if isinstance(error, (AlreadySyncedError, PhaseConflictError)):
        return ExitCode.CONFLICT
    if isinstance(error, (ValidationError, NotFoundError, ConfigError, SpecParseError)):
        return ExitCode.USER_ERROR
    return ExitCode.GENERAL_ERROR


def report_error(error: SpecSyncError) -> ExitCode:
    """
    Print a SpecSyncError with a remedy drawn from its context.

    Returns:
        Exit code to use
    """
    context = error.context
    record_id = context.get("record_id")

    if isinstance(error, PhaseTransitionError):
        print_error(
            error.message,
            reason="Fill in the listed sections of the spec file",
            solution=f"specsync spec phase {_short(record_id)} {context.get('to_phase')} --force"
            if record_id
            else None,
        )
    elif isinstance(error, InconsistentStateError):
        print_error(
            error.message,
            reason="The database and the spec file may disagree",
            solution="specsync audit  # then fix the listed specs by hand",
        )
    elif isinstance(error, AlreadySyncedError):
        print_error(
            error.message,
            reason="Another run is creating (or already created) this issue",
            solution="specsync sync ensure " + _short(error.local_id),
        )
    elif isinstance(error, NotLinkedError):
        print_error(
            error.message,
            solution=f"specsync sync push {_short(record_id)} --create"
            if record_id
            else "specsync spec list",
        )
    elif isinstance(error, NotFoundError):
        print_error(error.message, solution="specsync spec list")
    elif isinstance(error, AuthenticationError):
        print_error(
            error.message,
            reason="The GitHub token was rejected",
            solution="export GITHUB_TOKEN=<token with repo and project scopes>",
        )
    elif isinstance(error, RateLimitError):
        print_error(
            error.message,
            reason="GitHub is rate limiting requests",
            solution="Wait a few minutes and re-run the command",
        )
    elif isinstance(error, RemoteError):
        print_error(error.message, reason="GitHub request failed")
    elif isinstance(error, ConfigError):
        print_error(error.message, solution="specsync init --repo owner/repo")
    else:
        print_error(error.message)

    return exit_code_for(error)


__all__ = [
    "ExitCode",
    "exit_code_for",
    "print_error",
    "print_github_not_configured_error",
    "print_not_initialized_error",
    "print_warning",
    "report_error",
]
