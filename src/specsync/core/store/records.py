"""
Repository for spec records.

All writes commit immediately: the database is the durability boundary
for a phase change.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any

from specsync.core.exceptions import ConflictError, RecordNotFoundError, ValidationError
from specsync.core.specs.models import Phase, SpecRecord, utc_now
from specsync.core.store.connection import execute_one, execute_query

logger = logging.getLogger(__name__)


def _to_db(value: datetime) -> str:
    return value.isoformat()


def _from_row(row: dict[str, Any]) -> SpecRecord:
    return SpecRecord(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        phase=Phase(row["phase"]),
        branch_name=row["branch_name"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class RecordStore:
    """
    CRUD access to the ``records`` table.

    Example:
        >>> store = RecordStore(init_db(":memory:"))
        >>> record = store.create(SpecRecord(name="Login page"))
        >>> store.require(record.id).phase
        <Phase.REQUIREMENTS: 'requirements'>
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def create(self, record: SpecRecord) -> SpecRecord:
        """
        Insert a new record.

        Raises:
            ConflictError: If a record with the same ID already exists
        """
        try:
            self.conn.execute(
                """
                INSERT INTO records (id, name, description, phase, branch_name,
                                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.name,
                    record.description,
                    record.phase.value,
                    record.branch_name,
                    _to_db(record.created_at),
                    _to_db(record.updated_at),
                ),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            raise ConflictError(f"Spec already exists: {record.id}", record_id=record.id) from e
        return record

    def get(self, record_id: str) -> SpecRecord | None:
        """Fetch a record by ID."""
        row = execute_one(self.conn, "SELECT * FROM records WHERE id = ?", (record_id,))
        return _from_row(row) if row else None

    def require(self, record_id: str) -> SpecRecord:
        """
        Fetch a record by ID.

        Raises:
            RecordNotFoundError: If it doesn't exist
        """
        record = self.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def resolve(self, id_or_prefix: str) -> SpecRecord:
        """
        Find a record by full ID or unique ID prefix.

        Raises:
            RecordNotFoundError: If nothing matches
            ValidationError: If the prefix is ambiguous
        """
        record = self.get(id_or_prefix)
        if record is not None:
            return record

        rows = execute_query(
            self.conn,
            "SELECT * FROM records WHERE id LIKE ? ESCAPE '\\' ORDER BY id LIMIT 2",
            (id_or_prefix.replace("%", "\\%").replace("_", "\\_") + "%",),
        )
        if not rows:
            raise RecordNotFoundError(id_or_prefix)
        if len(rows) > 1:
            raise ValidationError(
                f"Spec ID prefix '{id_or_prefix}' is ambiguous", record_id=id_or_prefix
            )
        return _from_row(rows[0])

    def list_records(self, phase: Phase | None = None) -> list[SpecRecord]:
        """List records, newest first, optionally filtered by phase."""
        if phase is None:
            rows = execute_query(self.conn, "SELECT * FROM records ORDER BY created_at DESC")
        else:
            rows = execute_query(
                self.conn,
                "SELECT * FROM records WHERE phase = ? ORDER BY created_at DESC",
                (phase.value,),
            )
        return [_from_row(row) for row in rows]

    def ids(self) -> set[str]:
        """All record IDs."""
        return {row["id"] for row in execute_query(self.conn, "SELECT id FROM records")}

    def update_phase(
        self, record_id: str, phase: Phase, updated_at: datetime | None = None
    ) -> datetime:
        """
        Set a record's phase and updated timestamp.

        Returns:
            The timestamp that was written

        Raises:
            RecordNotFoundError: If the record doesn't exist
        """
        stamp = updated_at or utc_now()
        cursor = self.conn.execute(
            "UPDATE records SET phase = ?, updated_at = ? WHERE id = ?",
            (phase.value, _to_db(stamp), record_id),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            raise RecordNotFoundError(record_id)
        logger.debug("Record %s phase set to %s", record_id, phase.value)
        return stamp

    def update_fields(
        self,
        record_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        branch_name: str | None = None,
        updated_at: datetime | None = None,
    ) -> SpecRecord:
        """
        Update name, description and/or branch, bumping updated_at.

        Raises:
            RecordNotFoundError: If the record doesn't exist
        """
        record = self.require(record_id)
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if branch_name is not None:
            changes["branch_name"] = branch_name

        updated = record.model_copy(update={**changes, "updated_at": updated_at or utc_now()})
        # Re-validate (e.g. blank names)
        updated = SpecRecord.model_validate(updated.model_dump(exclude={"short_id"}))

        self.conn.execute(
            """
            UPDATE records SET name = ?, description = ?, branch_name = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                updated.name,
                updated.description,
                updated.branch_name,
                _to_db(updated.updated_at),
                record_id,
            ),
        )
        self.conn.commit()
        return updated

    def delete(self, record_id: str) -> bool:
        """Delete a record and, through the foreign key, its mappings."""
        cursor = self.conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
        self.conn.commit()
        return cursor.rowcount > 0
