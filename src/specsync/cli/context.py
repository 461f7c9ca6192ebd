"""
Project and service wiring shared by the CLI commands.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import typer

from specsync.cli.errors import (
    ExitCode,
    print_github_not_configured_error,
    print_not_initialized_error,
    report_error,
)
from specsync.core.config import SpecSyncConfig, load_config
from specsync.core.events import EventBus
from specsync.core.exceptions import SpecSyncError
from specsync.core.github.client import GitHubClient
from specsync.core.github.projects import ProjectsClient
from specsync.core.github.status import ProjectStatusUpdater
from specsync.core.specs.service import SpecService
from specsync.core.store import MappingStore, RecordStore, init_db
from specsync.core.sync.entity_sync import EntitySyncService
from specsync.core.sync.listeners import GitHubListeners
from specsync.core.sync.sub_entities import SubEntityManager
from specsync.core.workflow.transition import PhaseTransitionController


@dataclass
class Project:
    """An initialized specsync project."""

    project_dir: Path
    config: SpecSyncConfig
    conn: sqlite3.Connection

    @property
    def spec_dir(self) -> Path:
        return self.config.paths.spec_dir(self.project_dir)

    @property
    def records(self) -> RecordStore:
        return RecordStore(self.conn)

    @property
    def mappings(self) -> MappingStore:
        return MappingStore(self.conn)

    @property
    def dispatch_timeout(self) -> float | None:
        return self.config.sync.dispatch_timeout_seconds


@dataclass
class GitHubServices:
    """Sync services bound to one open GitHub client."""

    client: GitHubClient
    sync: EntitySyncService
    sub_entities: SubEntityManager
    listeners: GitHubListeners


@dataclass
class Services:
    """Everything a command needs; ``github`` is None when sync is off."""

    project: Project
    bus: EventBus
    specs: SpecService
    transitions: PhaseTransitionController
    github: GitHubServices | None = None

    def require_github(self) -> GitHubServices:
        if self.github is None:
            print_github_not_configured_error()
            raise typer.Exit(ExitCode.USER_ERROR)
        return self.github


def project_dir_from(ctx: typer.Context) -> Path:
    obj = ctx.obj or {}
    return Path(obj.get("project_dir") or Path.cwd())


def open_project(ctx: typer.Context) -> Project:
    """Load config and open the database of an initialized project."""
    project_dir = project_dir_from(ctx)
    config = load_config(project_dir, use_cache=False)
    db_path = config.paths.database_path(project_dir)
    if not db_path.exists():
        print_not_initialized_error(project_dir)
        raise typer.Exit(ExitCode.USER_ERROR)
    return Project(project_dir=project_dir, config=config, conn=init_db(db_path))


def build_github(project: Project, client: GitHubClient) -> GitHubServices:
    config = project.config
    projects = ProjectsClient(client)
    sync = EntitySyncService(
        project.records,
        project.mappings,
        client,
        project.spec_dir,
        projects=projects,
        project_number=config.github.project_number,
        reservation_timeout=config.sync.reservation_timeout_seconds,
    )
    sub_entities = SubEntityManager(
        project.records,
        project.mappings,
        client,
        project.spec_dir,
        append_checklist=config.sync.append_task_checklist,
        reservation_timeout=config.sync.reservation_timeout_seconds,
    )
    status_updater = ProjectStatusUpdater(
        projects,
        config.status,
        verify_attempts=config.retry.verify_attempts,
        base_delay=config.retry.base_delay,
    )
    spec_dir_label = f"{config.paths.root}/{config.paths.specs}"
    listeners = GitHubListeners(
        sync, sub_entities, status_updater=status_updater, spec_dir_label=spec_dir_label
    )
    return GitHubServices(client=client, sync=sync, sub_entities=sub_entities, listeners=listeners)


@asynccontextmanager
async def open_services(project: Project, *, github: bool = True) -> AsyncIterator[Services]:
    """
    Wire the bus, services and (when configured) GitHub listeners.

    The GitHub client stays open until the block exits, so listeners can
    finish their work.
    """
    bus = EventBus()
    specs = SpecService(
        project.records,
        project.mappings,
        project.spec_dir,
        bus,
        dispatch_timeout=project.dispatch_timeout,
    )
    transitions = PhaseTransitionController(
        project.records, project.spec_dir, bus, dispatch_timeout=project.dispatch_timeout
    )
    services = Services(project=project, bus=bus, specs=specs, transitions=transitions)

    if not (github and project.config.github.is_configured):
        yield services
        await bus.drain()
        return

    async with GitHubClient.from_config(project.config) as client:
        services.github = build_github(project, client)
        services.github.listeners.register(bus)
        yield services
        await bus.drain()


T = TypeVar("T")


def run_command(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run a command coroutine from Typer's sync context.

    SpecSyncErrors are printed with a remedy and turned into an exit code.
    """
    try:
        return asyncio.run(coro)
    except SpecSyncError as e:
        raise typer.Exit(report_error(e)) from e
