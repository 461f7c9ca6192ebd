"""
Import spec files into the record store.

The file wins: existing records take the name, phase and updated time of
their file, new files become new records. Files that fail to parse are
collected in the result and the import carries on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from specsync.core.exceptions import SpecParseError, SpecSyncError
from specsync.core.specs import markdown
from specsync.core.specs.markdown import SpecDocument
from specsync.core.specs.models import SpecRecord
from specsync.core.store.records import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class ImportFailure:
    file: str
    error: str


@dataclass
class ImportResult:
    """Counts and per-file failures of an import run."""

    imported: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: list[ImportFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


class SpecImporter:
    """Upsert records from spec files (file takes precedence)."""

    def __init__(self, records: RecordStore) -> None:
        self.records = records

    def import_from_directory(self, spec_dir: Path) -> ImportResult:
        """
        Import every ``*.md`` file in a directory.

        Raises:
            SpecParseError: If the directory itself does not exist
        """
        if not spec_dir.is_dir():
            raise SpecParseError(f"Spec directory not found: {spec_dir}", str(spec_dir))
        return self._import_paths(sorted(spec_dir.glob("*.md")))

    def import_from_files(self, spec_ids: list[str], spec_dir: Path) -> ImportResult:
        """Import the files of specific specs."""
        result = ImportResult()
        paths: list[Path] = []
        for spec_id in spec_ids:
            if not markdown.SPEC_ID_PATTERN.match(spec_id):
                result.errors.append(ImportFailure(file=f"{spec_id}.md", error="Invalid spec ID"))
                continue
            paths.append(markdown.spec_path(spec_dir, spec_id))

        partial = self._import_paths(paths)
        partial.errors = result.errors + partial.errors
        return partial

    def _import_paths(self, paths: list[Path]) -> ImportResult:
        result = ImportResult()
        for path in paths:
            try:
                document = markdown.parse_file(path)
                outcome = self._upsert(document)
            except SpecSyncError as e:
                logger.warning("Failed to import %s: %s", path.name, e)
                result.errors.append(ImportFailure(file=path.name, error=str(e)))
                continue

            if outcome == "imported":
                result.imported += 1
            elif outcome == "updated":
                result.updated += 1
            else:
                result.unchanged += 1

        logger.info(
            "Import finished: %d imported, %d updated, %d failed",
            result.imported,
            result.updated,
            result.failed,
        )
        return result

    def _upsert(self, document: SpecDocument) -> str:
        existing = self.records.get(document.id)
        if existing is None:
            self.records.create(
                SpecRecord(
                    id=document.id,
                    name=document.name,
                    phase=document.phase,
                    created_at=document.created_at or document.updated_at,
                    updated_at=document.updated_at,
                )
            )
            return "imported"

        if (
            existing.name == document.name
            and existing.phase == document.phase
            and existing.updated_at.replace(microsecond=0) == document.updated_at
        ):
            return "unchanged"

        if existing.name != document.name:
            self.records.update_fields(
                document.id, name=document.name, updated_at=document.updated_at
            )
        self.records.update_phase(document.id, document.phase, document.updated_at)
        return "updated"
