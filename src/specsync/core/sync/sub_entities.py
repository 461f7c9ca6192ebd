"""
Task decomposition into GitHub sub-issues.

Each task of a spec becomes an issue linked under the spec's issue with
the ``addSubIssue`` mutation. Creation follows the same reservation
protocol as the spec issue itself, so re-running a batch never creates a
task twice. The parent body can carry a ``- [ ] #<n> <title>`` checklist
that is kept in step as sub-issues open and close.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from specsync.core.exceptions import (
    NotLinkedError,
    SpecSyncError,
    SubEntityNotFoundError,
    ValidationError,
)
from specsync.core.github.client import GitHubClient
from specsync.core.github.models import GitHubIssue
from specsync.core.specs import markdown
from specsync.core.specs.checkboxes import (
    insert_task_checklist,
    parse_task_list,
    set_reference_checkbox,
)
from specsync.core.specs.models import (
    EntityType,
    MappingStatus,
    SyncMapping,
    TaskItem,
    utc_now,
)
from specsync.core.store.mappings import MappingStore
from specsync.core.store.records import RecordStore

logger = logging.getLogger(__name__)

# GitHub caps the number of sub-issues per parent issue
MAX_SUB_ENTITIES_PER_PARENT = 100

ISSUE_STATES = ("open", "closed")


@dataclass
class SubEntityResult:
    """A sub-issue created (or relinked) for a task."""

    task_id: str
    number: int
    node_id: str | None = None


@dataclass
class BatchError:
    task_id: str
    error: str


@dataclass
class SubEntityBatchResult:
    """
    Outcome of creating sub-issues for a task list.

    The batch stops at the first failure; tasks created before it stay
    linked and are listed in ``created``.
    """

    parent_number: int
    created: list[SubEntityResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class TaskCompletionResult:
    task_id: str
    number: int | None = None
    skipped: bool = False
    parent_closed: bool = False


class SubEntityManager:
    """
    Create, link and close sub-issues for a spec's tasks.

    Args:
        records: Record repository
        mappings: Mapping repository
        client: GitHub client
        spec_dir: Directory holding spec files (for task list parsing)
        append_checklist: Append a checklist of created sub-issues to the
            parent body
        reservation_timeout: Seconds before an abandoned reservation can
            be taken over
    """

    def __init__(
        self,
        records: RecordStore,
        mappings: MappingStore,
        client: GitHubClient,
        spec_dir: Path,
        *,
        append_checklist: bool = True,
        reservation_timeout: int = 300,
    ) -> None:
        self.records = records
        self.mappings = mappings
        self.client = client
        self.spec_dir = spec_dir
        self.append_checklist = append_checklist
        self.reservation_timeout = reservation_timeout

    def tasks_for_record(self, record_id: str) -> list[TaskItem]:
        """Task list parsed from a spec's Markdown file."""
        record = self.records.require(record_id)
        path = markdown.spec_path(self.spec_dir, record.id)
        if not path.exists():
            logger.warning("Spec file %s not found, no tasks to read", path)
            return []
        return parse_task_list(record.id, path.read_text(encoding="utf-8"))

    def _parent_mapping(self, record_id: str) -> SyncMapping:
        mapping = self.mappings.get(EntityType.RECORD, record_id)
        if mapping is None or mapping.status != MappingStatus.SUCCESS or not mapping.remote_number:
            raise NotLinkedError(
                f"Spec {record_id[:8]} has no issue; sub-issues need a parent",
                record_id=record_id,
                action="create sub-issues",
            )
        return mapping

    async def create_sub_entities_from_tasks(
        self, record_id: str, tasks: list[TaskItem]
    ) -> SubEntityBatchResult:
        """
        Create and link one sub-issue per task, in order.

        Tasks that already have a sub-issue are skipped. A task whose
        sub-issue was created but never linked is only relinked.

        Raises:
            ValidationError: More tasks than GitHub accepts per parent
            NotLinkedError: The spec has no issue
        """
        if len(tasks) > MAX_SUB_ENTITIES_PER_PARENT:
            raise ValidationError(
                f"Cannot create {len(tasks)} sub-issues: GitHub allows at most "
                f"{MAX_SUB_ENTITIES_PER_PARENT} per parent issue",
                record_id=record_id,
                task_count=len(tasks),
            )

        self.records.require(record_id)
        parent = self._parent_mapping(record_id)
        parent_number = parent.remote_number
        assert parent_number is not None
        result = SubEntityBatchResult(parent_number=parent_number)
        if not tasks:
            return result

        parent_node_id = parent.node_id or await self.client.get_node_id(parent_number)

        for task in tasks:
            existing = self.mappings.get(EntityType.SUB_ENTITY, task.id)
            if existing is not None and existing.status == MappingStatus.SUCCESS:
                result.skipped.append(task.id)
                continue

            try:
                if (
                    existing is not None
                    and existing.status == MappingStatus.ERROR
                    and existing.remote_number is not None
                ):
                    created = await self._relink(parent_node_id, existing)
                else:
                    created = await self._create_one(record_id, parent_number, parent_node_id, task)
            except SpecSyncError as e:
                logger.error("Failed to create sub-issue for task %s: %s", task.id, e)
                result.errors.append(BatchError(task_id=task.id, error=str(e)))
                break
            result.created.append(created)

        if self.append_checklist and result.created:
            titles = {task.id: task.title for task in tasks}
            entries = [(c.number, titles[c.task_id]) for c in result.created]
            try:
                await self._append_checklist(parent_number, entries)
            except SpecSyncError as e:
                warning = f"Could not add task checklist to issue #{parent_number}: {e}"
                logger.warning(warning)
                result.warnings.append(warning)

        logger.info(
            "Sub-issues for #%d: %d created, %d skipped, %d failed",
            parent_number,
            len(result.created),
            len(result.skipped),
            len(result.errors),
        )
        return result

    async def _create_one(
        self, record_id: str, parent_number: int, parent_node_id: str, task: TaskItem
    ) -> SubEntityResult:
        stale_before = utc_now() - timedelta(seconds=self.reservation_timeout)
        self.mappings.claim(
            EntityType.SUB_ENTITY,
            task.id,
            record_id=record_id,
            parent_number=parent_number,
            stale_before=stale_before,
        )

        body = f"{task.description}\n\n" if task.description else ""
        body += f"Part of #{parent_number}\n\n**Task ID:** {task.id}"
        try:
            issue = await self.client.create_issue(task.title, body)
        except Exception:
            self.mappings.release(EntityType.SUB_ENTITY, task.id)
            raise

        mapping = self.mappings.promote(
            EntityType.SUB_ENTITY,
            task.id,
            remote_id=str(issue.id),
            remote_number=issue.number,
            node_id=issue.node_id,
        )
        return await self._link(parent_node_id, mapping)

    async def _relink(self, parent_node_id: str, mapping: SyncMapping) -> SubEntityResult:
        assert mapping.remote_number is not None
        logger.info("Relinking existing sub-issue #%d", mapping.remote_number)
        return await self._link(parent_node_id, mapping)

    async def _link(self, parent_node_id: str, mapping: SyncMapping) -> SubEntityResult:
        assert mapping.remote_number is not None
        try:
            node_id = mapping.node_id or await self.client.get_node_id(mapping.remote_number)
            await self.client.add_sub_issue(parent_node_id, node_id)
        except SpecSyncError as e:
            self.mappings.mark_error(
                EntityType.SUB_ENTITY, mapping.local_id, f"Linking failed: {e}"
            )
            raise

        self.mappings.promote(
            EntityType.SUB_ENTITY,
            mapping.local_id,
            remote_id=mapping.remote_id or "",
            remote_number=mapping.remote_number,
            node_id=node_id,
        )
        return SubEntityResult(task_id=mapping.local_id, number=mapping.remote_number, node_id=node_id)

    async def _append_checklist(self, parent_number: int, entries: list[tuple[int, str]]) -> None:
        parent = await self.client.get_issue(parent_number)
        body = insert_task_checklist(parent.body, entries)
        await self.client.update_issue(parent_number, body=body)

    async def update_sub_entity_status(self, task_id: str, state: str) -> GitHubIssue:
        """
        Open or close a task's sub-issue and mirror it in the parent checklist.

        Raises:
            ValidationError: Unknown state
            SubEntityNotFoundError: The task has no sub-issue
        """
        if state not in ISSUE_STATES:
            raise ValidationError(f"Invalid issue state: {state}", task_id=task_id)

        mapping = self.mappings.get(EntityType.SUB_ENTITY, task_id)
        if mapping is None or mapping.status != MappingStatus.SUCCESS or not mapping.remote_number:
            raise SubEntityNotFoundError(task_id)

        if state == "closed":
            issue = await self.client.close_issue(mapping.remote_number, "completed")
        else:
            issue = await self.client.update_issue(
                mapping.remote_number, state="open", state_reason="reopened"
            )
        self.mappings.touch(EntityType.SUB_ENTITY, task_id)

        if mapping.parent_number:
            await self.sync_parent_checkbox(mapping.parent_number, mapping.remote_number, state)
        return issue

    async def sync_parent_checkbox(self, parent_number: int, child_number: int, state: str) -> bool:
        """
        Flip the parent's checklist line for a sub-issue.

        Only a line starting with ``- [ ] #<child_number>`` is touched.

        Returns:
            True if the parent body was patched
        """
        parent = await self.client.get_issue(parent_number)
        body, changed = set_reference_checkbox(parent.body, child_number, state == "closed")
        if not changed:
            logger.debug("No checklist line for #%d in #%d", child_number, parent_number)
            return False

        await self.client.update_issue(parent_number, body=body)
        return True

    async def all_sub_entities_closed(self, parent_number: int) -> bool:
        """True when the parent has sub-issues and all of them are closed."""
        children = await self.client.list_sub_issues(parent_number)
        return bool(children) and all(not child.is_open for child in children)

    async def handle_task_completion(self, task_id: str) -> TaskCompletionResult:
        """
        Close a task's sub-issue; close the parent once every sub-issue is done.

        A task without a sub-issue is logged and skipped.
        """
        try:
            issue = await self.update_sub_entity_status(task_id, "closed")
        except SubEntityNotFoundError as e:
            logger.info("Skipping task completion: %s", e)
            return TaskCompletionResult(task_id=task_id, skipped=True)

        result = TaskCompletionResult(task_id=task_id, number=issue.number)
        mapping = self.mappings.get(EntityType.SUB_ENTITY, task_id)
        parent_number = mapping.parent_number if mapping else None
        if parent_number and await self.all_sub_entities_closed(parent_number):
            await self.client.add_comment(
                parent_number, "✅ All sub-issues are closed. Closing this issue."
            )
            await self.client.close_issue(parent_number, "completed")
            result.parent_closed = True
            logger.info("Closed issue #%d: all sub-issues done", parent_number)

        return result
