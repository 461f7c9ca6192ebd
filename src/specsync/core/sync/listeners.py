"""
Event listeners that push spec changes to GitHub.

Handlers are registered on an EventBus by ``register_github_listeners``.
They raise on failure; the bus records the failure in its dispatch report
and the operation that emitted the event still succeeds.

- record.created: create the issue (and add it to the project)
- record.phase_changed: changelog comment, issue update, project status,
  sub-issues when entering ``tasks``, close the issue on ``completed``
- record.updated: changelog comment and issue update
- record.deleted: comment on and close the issue
"""

from __future__ import annotations

import logging
from pathlib import Path

from specsync.core.events import (
    PHASE_CHANGED,
    RECORD_CREATED,
    RECORD_DELETED,
    RECORD_UPDATED,
    EventBus,
    SpecEvent,
)
from specsync.core.github.status import ProjectStatusUpdater
from specsync.core.specs import markdown
from specsync.core.specs.changelog import build_changelog_comment, diff_sections
from specsync.core.specs.models import EntityType, MappingStatus, Phase
from specsync.core.sync.entity_sync import EntitySyncService
from specsync.core.sync.sub_entities import SubEntityManager

logger = logging.getLogger(__name__)


class GitHubListeners:
    """
    Bus handlers backed by the sync services.

    Args:
        sync: Entity sync service
        sub_entities: Sub-issue manager
        status_updater: Project status updater (None skips status sync)
        spec_dir_label: Spec directory as shown in changelog links
    """

    def __init__(
        self,
        sync: EntitySyncService,
        sub_entities: SubEntityManager,
        *,
        status_updater: ProjectStatusUpdater | None = None,
        spec_dir_label: str = ".specsync/specs",
    ) -> None:
        self.sync = sync
        self.sub_entities = sub_entities
        self.status_updater = status_updater
        self.spec_dir_label = spec_dir_label

    @property
    def spec_dir(self) -> Path:
        return self.sync.spec_dir

    def register(self, bus: EventBus) -> None:
        bus.subscribe(RECORD_CREATED, self.on_created)
        bus.subscribe(PHASE_CHANGED, self.on_phase_changed)
        bus.subscribe(RECORD_UPDATED, self.on_updated)
        bus.subscribe(RECORD_DELETED, self.on_deleted)

    async def post_changelog(self, record_id: str, issue_number: int) -> bool:
        """
        Comment the section changes between the issue body and the spec file.

        Returns:
            True if a comment was posted
        """
        path = markdown.spec_path(self.spec_dir, record_id)
        if not path.exists():
            return False

        issue = await self.sync.client.get_issue(issue_number)
        changes = diff_sections(issue.body, path.read_text(encoding="utf-8"))
        if not changes:
            return False

        await self.sync.client.add_comment(
            issue_number,
            build_changelog_comment(changes, record_id, spec_dir=self.spec_dir_label),
        )
        return True

    async def on_created(self, event: SpecEvent) -> None:
        result = await self.sync.ensure_entity(event.record_id)
        for warning in result.warnings:
            logger.warning(warning)

    async def on_updated(self, event: SpecEvent) -> None:
        mapping = self.sync.linked_issue(event.record_id)
        if mapping is None or mapping.remote_number is None:
            logger.debug("Spec %s has no issue, nothing to update", event.record_id)
            return
        await self.post_changelog(event.record_id, mapping.remote_number)
        await self.sync.sync_record_to_entity(event.record_id)

    async def on_phase_changed(self, event: SpecEvent) -> None:
        new_phase = Phase(event.payload["new_phase"])

        mapping = self.sync.linked_issue(event.record_id)
        if mapping is None or mapping.remote_number is None:
            ensured = await self.sync.ensure_entity(event.record_id)
            for warning in ensured.warnings:
                logger.warning(warning)
            number = ensured.issue_number
        else:
            number = mapping.remote_number
            await self.post_changelog(event.record_id, number)
            await self.sync.sync_record_to_entity(event.record_id)

        if number is None:
            return

        await self.sync_project_status(event.record_id, new_phase)

        if new_phase == Phase.TASKS:
            tasks = self.sub_entities.tasks_for_record(event.record_id)
            if tasks:
                batch = await self.sub_entities.create_sub_entities_from_tasks(
                    event.record_id, tasks
                )
                for error in batch.errors:
                    logger.warning("Sub-issue for task %s failed: %s", error.task_id, error.error)
        elif new_phase == Phase.COMPLETED:
            await self.sync.client.close_issue(number, "completed")

    async def sync_project_status(self, record_id: str, phase: Phase) -> None:
        if self.status_updater is None:
            return
        project = self.sync.mappings.get(EntityType.PROJECT, record_id)
        if project is None or project.status != MappingStatus.SUCCESS:
            return
        if not project.node_id or not project.remote_id:
            return

        resolution, verification = await self.status_updater.sync_phase(
            project.node_id, project.remote_id, phase
        )
        if not verification.success:
            logger.warning(
                "Project status of spec %s is '%s', expected '%s'",
                record_id,
                verification.actual,
                resolution.status,
            )

    async def on_deleted(self, event: SpecEvent) -> None:
        number = event.payload.get("issue_number")
        if not number:
            return
        await self.sync.client.add_comment(
            number, f"🗑️ Spec `{event.record_id}` was deleted. Closing this issue."
        )
        await self.sync.client.close_issue(number, "not_planned")


def register_github_listeners(bus: EventBus, listeners: GitHubListeners) -> GitHubListeners:
    """Subscribe the GitHub handlers on a bus."""
    listeners.register(bus)
    return listeners
