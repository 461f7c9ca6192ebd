"""
Spec <-> GitHub issue synchronization.

Issue creation is idempotent. Before creating an issue the service inserts
a ``pending`` mapping row; the UNIQUE(entity_type, local_id) index is the
only arbiter of who gets to create. A caller that loses gets
AlreadySyncedError without having called GitHub. If the create call fails
the reservation is dropped, so retries are safe.

For N calls on the same unsynced spec:
- sequential: one creation, then N-1 updates
- concurrent: one creation, N-1 AlreadySyncedError
Either way exactly one mapping row exists afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from specsync.core.exceptions import (
    ConfigError,
    NotLinkedError,
    RemoteNotFoundError,
    SpecSyncError,
)
from specsync.core.github.client import GitHubClient
from specsync.core.github.models import GitHubIssue
from specsync.core.github.projects import ProjectsClient
from specsync.core.specs import markdown
from specsync.core.specs.checkboxes import (
    apply_checkbox_changes,
    detect_checkbox_changes,
    parse_checkboxes,
)
from specsync.core.specs.models import (
    EntityType,
    MappingStatus,
    Phase,
    SpecRecord,
    SyncMapping,
    utc_now,
)
from specsync.core.store.mappings import MappingStore
from specsync.core.store.records import RecordStore

logger = logging.getLogger(__name__)


def issue_title(record: SpecRecord) -> str:
    """``[<phase>] <name>``"""
    return f"[{record.phase.value}] {record.name}"


def phase_labels(phase: Phase) -> list[str]:
    return [f"phase:{phase.value}"]


def render_stub_body(record: SpecRecord) -> str:
    """Issue body used when the spec file is missing."""
    lines = [f"# {record.name}", ""]
    if record.description:
        lines += [record.description, ""]
    lines += [
        f"**Spec ID:** {record.id}",
        f"**Phase:** {record.phase.value}",
        "",
        "_The spec file was not found; this body was generated._",
    ]
    return "\n".join(lines)


@dataclass
class EnsureResult:
    """Outcome of making sure a spec has an issue."""

    issue_number: int | None
    created: bool = False
    project_item_id: str | None = None
    warnings: list[str] = field(default_factory=list)


class EntitySyncService:
    """
    Keeps a spec's GitHub issue in step with the local record.

    Args:
        records: Record repository
        mappings: Mapping repository
        client: GitHub client for the spec repository
        spec_dir: Directory holding ``<id>.md`` files
        projects: Projects v2 client (needed for project membership)
        project_number: Default project for ``ensure_entity``
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
        projects: ProjectsClient | None = None,
        project_number: int | None = None,
        reservation_timeout: int = 300,
    ) -> None:
        self.records = records
        self.mappings = mappings
        self.client = client
        self.spec_dir = spec_dir
        self.projects = projects
        self.project_number = project_number
        self.reservation_timeout = reservation_timeout

    def read_body(self, record: SpecRecord) -> str:
        """Spec file content, or a generated stub."""
        path = markdown.spec_path(self.spec_dir, record.id)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Spec file %s not found, using generated body", path)
            return render_stub_body(record)

    def linked_issue(self, record_id: str) -> SyncMapping | None:
        """The spec's issue mapping, if it has been created."""
        mapping = self.mappings.get(EntityType.RECORD, record_id)
        if mapping is not None and mapping.status == MappingStatus.SUCCESS:
            return mapping
        return None

    async def sync_record_to_entity(self, record_id: str, create_if_absent: bool = False) -> int:
        """
        Push a spec to its issue, creating the issue if allowed.

        Args:
            record_id: Spec ID
            create_if_absent: Create the issue when the spec has none

        Returns:
            Issue number

        Raises:
            RecordNotFoundError: Unknown spec
            NotLinkedError: No issue and ``create_if_absent`` is False
            AlreadySyncedError: Another caller is creating the issue
        """
        record = self.records.require(record_id)
        mapping = self.mappings.get(EntityType.RECORD, record_id)

        if mapping is not None and mapping.status == MappingStatus.SUCCESS:
            return await self._update_entity(record, mapping)

        if not create_if_absent:
            raise NotLinkedError(
                f"Spec {record.short_id} is not linked to an issue",
                record_id=record_id,
                action="sync",
            )

        return await self._create_entity(record)

    async def _create_entity(self, record: SpecRecord) -> int:
        stale_before = utc_now() - timedelta(seconds=self.reservation_timeout)
        self.mappings.claim(
            EntityType.RECORD, record.id, record_id=record.id, stale_before=stale_before
        )

        try:
            issue = await self.client.create_issue(
                issue_title(record), self.read_body(record), phase_labels(record.phase)
            )
        except Exception:
            self.mappings.release(EntityType.RECORD, record.id)
            raise

        self.mappings.promote(
            EntityType.RECORD,
            record.id,
            remote_id=str(issue.id),
            remote_number=issue.number,
            node_id=issue.node_id,
        )
        logger.info("Linked spec %s to issue #%d", record.id, issue.number)
        return issue.number

    async def _update_entity(self, record: SpecRecord, mapping: SyncMapping) -> int:
        assert mapping.remote_number is not None
        number = mapping.remote_number

        await self.client.update_issue(
            number,
            title=issue_title(record),
            body=self.read_body(record),
            labels=phase_labels(record.phase),
        )

        try:
            await self.client.add_comment(
                number,
                f"🔄 Synced from spec `{record.id}` (phase: {record.phase.value}) at "
                f"{markdown.format_timestamp(utc_now())}",
            )
        except SpecSyncError as e:
            logger.warning("Failed to add sync comment to issue #%d: %s", number, e)

        self.mappings.touch(EntityType.RECORD, record.id)
        logger.info("Updated issue #%d from spec %s", number, record.id)
        return number

    async def sync_entity_to_record(self, remote_number: int) -> SpecRecord:
        """
        Pull an issue's title, state and checkboxes into its spec.

        A closed issue forces the spec to ``completed``.

        Raises:
            NotLinkedError: No spec is linked to the issue
        """
        mapping = self.mappings.find_by_number(EntityType.RECORD, remote_number)
        if mapping is None:
            raise NotLinkedError(
                f"No spec linked to issue #{remote_number}", issue_number=remote_number
            )

        issue = await self.client.get_issue(remote_number)
        record = self.records.require(mapping.local_id)

        name = issue.untagged_title or record.name
        phase = Phase.COMPLETED if issue.state == "closed" else record.phase
        now = utc_now()

        if name != record.name:
            record = self.records.update_fields(record.id, name=name, updated_at=now)
        if phase != record.phase:
            self.records.update_phase(record.id, phase, now)
        record = self.records.require(record.id)

        try:
            self._pull_into_file(record, issue)
        except (SpecSyncError, OSError) as e:
            logger.warning(
                "Spec file of %s not updated from issue #%d (%s); "
                "run 'specsync audit' and fix the file, then 'specsync import'",
                record.id,
                remote_number,
                e,
            )
        self.mappings.touch(EntityType.RECORD, record.id)
        logger.info("Updated spec %s from issue #%d", record.id, remote_number)
        return record

    def _pull_into_file(self, record: SpecRecord, issue: GitHubIssue) -> None:
        path = markdown.spec_path(self.spec_dir, record.id)
        if not path.exists():
            logger.warning("Spec file %s not found, only the record was updated", path)
            return

        content = path.read_text(encoding="utf-8")
        changes = detect_checkbox_changes(
            parse_checkboxes(issue.body), parse_checkboxes(content)
        )
        updated = apply_checkbox_changes(content, changes)
        updated = markdown.replace_metadata(
            updated, phase=record.phase, updated_at=record.updated_at, name=record.name
        )
        if updated != content:
            markdown.write_durable(path, updated)
            if changes:
                logger.info("Mirrored %d checkbox change(s) into %s", len(changes), path)

    async def add_record_to_project(self, record_id: str, project_number: int) -> str:
        """
        Put a spec's issue on a Projects v2 board.

        Returns:
            Project item ID

        Raises:
            NotLinkedError: The spec has no issue yet
            ConfigError: No Projects client configured
        """
        record = self.records.require(record_id)
        mapping = self.linked_issue(record_id)
        if mapping is None or mapping.remote_number is None:
            raise NotLinkedError(
                f"Spec {record.short_id} has no issue; create one before adding it to a project",
                record_id=record_id,
                action="add to project",
            )
        if self.projects is None:
            raise ConfigError("Projects client is not configured")

        project_id = await self.projects.get_project_id(self.client.owner, project_number)
        node_id = mapping.node_id or await self.client.get_node_id(mapping.remote_number)
        item_id = await self.projects.add_item(project_id, node_id)

        self.mappings.upsert(
            SyncMapping(
                entity_type=EntityType.PROJECT,
                local_id=record.id,
                record_id=record.id,
                remote_id=item_id,
                remote_number=project_number,
                node_id=project_id,
            )
        )
        logger.info("Added issue #%d to project #%d", mapping.remote_number, project_number)
        return item_id

    async def ensure_entity(self, record_id: str, *, verify: bool = False) -> EnsureResult:
        """
        Make sure a spec has an issue, creating it when missing.

        Completed specs without an issue are left alone. Adding the new
        issue to the configured project is best effort: failures become
        warnings with the command to retry.

        Args:
            record_id: Spec ID
            verify: Also check that a linked issue still exists on GitHub
        """
        record = self.records.require(record_id)
        mapping = self.linked_issue(record_id)

        if mapping is not None and mapping.remote_number is not None:
            if not verify:
                return EnsureResult(issue_number=mapping.remote_number)
            try:
                await self.client.get_issue(mapping.remote_number)
                return EnsureResult(issue_number=mapping.remote_number)
            except RemoteNotFoundError:
                logger.warning(
                    "Issue #%d for spec %s no longer exists, re-creating",
                    mapping.remote_number,
                    record.id,
                )
                self.mappings.mark_error(
                    EntityType.RECORD, record.id, f"Issue #{mapping.remote_number} not found"
                )
        elif record.phase == Phase.COMPLETED:
            return EnsureResult(issue_number=None)

        number = await self.sync_record_to_entity(record_id, create_if_absent=True)
        result = EnsureResult(issue_number=number, created=True)

        if self.project_number is not None and self.projects is not None:
            try:
                result.project_item_id = await self.add_record_to_project(
                    record_id, self.project_number
                )
            except SpecSyncError as e:
                warning = (
                    f"Issue #{number} was created but could not be added to project "
                    f"#{self.project_number}: {e}. "
                    f"Retry with: specsync sync project {record.short_id}"
                )
                logger.warning(warning)
                result.warnings.append(warning)

        return result
