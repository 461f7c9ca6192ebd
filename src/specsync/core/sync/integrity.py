"""
Cross-store integrity audit.

Compares the spec files on disk with the records in the database. Nothing
is repaired here; the report says what drifted so it can be fixed by hand
(or by ``specsync import``).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

from specsync.core.exceptions import SpecParseError
from specsync.core.specs import markdown
from specsync.core.specs.markdown import SpecDocument
from specsync.core.specs.models import SpecRecord
from specsync.core.store.records import RecordStore

logger = logging.getLogger(__name__)


class IntegrityReport(BaseModel):
    """
    Result of comparing spec files with database records.

    The four ID sets are disjoint.
    """

    file_only: list[str] = Field(
        default_factory=list, description="Specs with a file but no record"
    )
    record_only: list[str] = Field(
        default_factory=list, description="Specs with a record but no file"
    )
    mismatched: dict[str, list[str]] = Field(
        default_factory=dict, description="Spec ID -> differences between file and record"
    )
    synced: list[str] = Field(default_factory=list, description="Specs whose file matches")
    total_files: int = Field(default=0, ge=0, description="Number of spec files found")

    @property
    def sync_rate(self) -> int:
        """Percentage of files that are synced (0 when there are no files)."""
        if self.total_files == 0:
            return 0
        return len(self.synced) * 100 // self.total_files

    @property
    def is_consistent(self) -> bool:
        return not (self.file_only or self.record_only or self.mismatched)


def _to_second(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def compare(document: SpecDocument, record: SpecRecord) -> list[str]:
    """
    Differences between a parsed file and its record.

    Timestamps are compared in UTC truncated to whole seconds.
    """
    differences: list[str] = []
    if document.name != record.name:
        differences.append(f'Name mismatch: file="{document.name}" db="{record.name}"')
    if document.phase != record.phase:
        differences.append(
            f'Phase mismatch: file="{document.phase.value}" db="{record.phase.value}"'
        )
    if _to_second(document.updated_at) != _to_second(record.updated_at):
        differences.append(
            f'Updated time mismatch: file="{markdown.format_timestamp(document.updated_at)}" '
            f'db="{markdown.format_timestamp(record.updated_at)}"'
        )
    return differences


class IntegrityAuditor:
    """Audit spec files against the record store."""

    def __init__(self, records: RecordStore) -> None:
        self.records = records

    def audit(self, spec_dir: Path) -> IntegrityReport:
        """
        Classify every spec file and record.

        A file that fails to parse is reported as a mismatch
        (``Parse error: ...``) and the audit carries on.
        """
        report = IntegrityReport()
        records = {record.id: record for record in self.records.list_records()}
        files = sorted(spec_dir.glob("*.md")) if spec_dir.is_dir() else []
        report.total_files = len(files)
        seen: set[str] = set()

        for path in files:
            spec_id = path.stem
            seen.add(spec_id)
            record = records.get(spec_id)
            if record is None:
                report.file_only.append(spec_id)
                continue

            try:
                document = markdown.parse_file(path)
            except SpecParseError as e:
                logger.warning("Failed to parse %s: %s", path, e)
                report.mismatched[spec_id] = [f"Parse error: {e}"]
                continue

            differences = compare(document, record)
            if differences:
                report.mismatched[spec_id] = differences
            else:
                report.synced.append(spec_id)

        report.record_only = sorted(set(records) - seen)

        logger.info(
            "Audit of %s: %d synced, %d mismatched, %d file-only, %d record-only",
            spec_dir,
            len(report.synced),
            len(report.mismatched),
            len(report.file_only),
            len(report.record_only),
        )
        return report
