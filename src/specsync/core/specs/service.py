"""
Spec service: create, update and delete specs.

Keeps the record and its Markdown file together and announces every change
on the event bus so listeners (GitHub sync) can follow. Phase changes go
through PhaseTransitionController instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from specsync.core.events import (
    RECORD_CREATED,
    RECORD_DELETED,
    RECORD_UPDATED,
    DispatchReport,
    EventBus,
)
from specsync.core.specs import markdown
from specsync.core.specs.models import EntityType, MappingStatus, SpecRecord, utc_now
from specsync.core.store.mappings import MappingStore
from specsync.core.store.records import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class SpecChange:
    """A changed spec and the report of the event announcing it."""

    record: SpecRecord
    dispatch: DispatchReport


class SpecService:
    """
    Record + file operations that emit lifecycle events.

    Args:
        records: Record repository
        mappings: Mapping repository (read before deletion cascades)
        spec_dir: Directory holding spec files
        bus: Event bus
        dispatch_timeout: Seconds to wait for listeners
    """

    def __init__(
        self,
        records: RecordStore,
        mappings: MappingStore,
        spec_dir: Path,
        bus: EventBus,
        *,
        dispatch_timeout: float | None = None,
    ) -> None:
        self.records = records
        self.mappings = mappings
        self.spec_dir = spec_dir
        self.bus = bus
        self.dispatch_timeout = dispatch_timeout

    def _report(self, dispatch: DispatchReport) -> None:
        for failure in dispatch.failures:
            logger.warning(
                "%s listener %s failed: %s", dispatch.event.name, failure.handler, failure.error
            )

    async def create(
        self,
        name: str,
        description: str | None = None,
        branch_name: str | None = None,
    ) -> SpecChange:
        """
        Create a spec record and its requirements document.

        If the file cannot be written the record is removed again.
        """
        record = self.records.create(
            SpecRecord(name=name, description=description, branch_name=branch_name)
        )
        path = markdown.spec_path(self.spec_dir, record.id)
        try:
            markdown.write_durable(path, markdown.render_template(record))
        except OSError:
            self.records.delete(record.id)
            raise

        logger.info("Created spec %s (%s)", record.id, record.name)
        dispatch = await self.bus.emit(
            RECORD_CREATED,
            record.id,
            {"name": record.name, "phase": record.phase.value},
            timeout=self.dispatch_timeout,
        )
        self._report(dispatch)
        return SpecChange(record=record, dispatch=dispatch)

    async def update(
        self,
        record_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        branch_name: str | None = None,
    ) -> SpecChange:
        """Update a spec's fields and mirror name and timestamp into its file."""
        before = self.records.require(record_id)
        record = self.records.update_fields(
            record_id,
            name=name,
            description=description,
            branch_name=branch_name,
            updated_at=utc_now(),
        )

        path = markdown.spec_path(self.spec_dir, record.id)
        if path.exists():
            content = path.read_text(encoding="utf-8")
            markdown.write_durable(
                path,
                markdown.replace_metadata(
                    content,
                    updated_at=record.updated_at,
                    name=record.name if record.name != before.name else None,
                ),
            )
        else:
            logger.warning("Spec file %s not found, only the record was updated", path)

        changed = [
            key
            for key in ("name", "description", "branch_name")
            if getattr(before, key) != getattr(record, key)
        ]
        dispatch = await self.bus.emit(
            RECORD_UPDATED, record.id, {"fields": changed}, timeout=self.dispatch_timeout
        )
        self._report(dispatch)
        return SpecChange(record=record, dispatch=dispatch)

    async def delete(self, record_id: str, *, keep_file: bool = False) -> SpecChange:
        """
        Delete a spec, its mappings and (unless ``keep_file``) its file.

        The linked issue number is put in the event payload because the
        mapping is gone by the time listeners run.
        """
        record = self.records.require(record_id)
        mapping = self.mappings.get(EntityType.RECORD, record.id)
        issue_number = (
            mapping.remote_number
            if mapping is not None and mapping.status == MappingStatus.SUCCESS
            else None
        )

        self.records.delete(record.id)
        if not keep_file:
            markdown.spec_path(self.spec_dir, record.id).unlink(missing_ok=True)

        logger.info("Deleted spec %s (%s)", record.id, record.name)
        dispatch = await self.bus.emit(
            RECORD_DELETED,
            record.id,
            {"name": record.name, "issue_number": issue_number},
            timeout=self.dispatch_timeout,
        )
        self._report(dispatch)
        return SpecChange(record=record, dispatch=dispatch)
