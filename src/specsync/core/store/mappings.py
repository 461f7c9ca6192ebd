"""
Repository for sync mappings.

Creating a GitHub entity is guarded by a reservation: a ``pending`` row is
inserted before the remote call. The UNIQUE(entity_type, local_id) index
decides which caller wins; the loser gets AlreadySyncedError and never
touches GitHub. The winner promotes the row to ``success`` once the
remote entity exists, or releases it if the remote call failed.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any

from specsync.core.exceptions import AlreadySyncedError, RecordNotFoundError
from specsync.core.specs.models import EntityType, MappingStatus, SyncMapping, utc_now
from specsync.core.store.connection import execute_one, execute_query

logger = logging.getLogger(__name__)


def _from_row(row: dict[str, Any]) -> SyncMapping:
    return SyncMapping(
        entity_type=EntityType(row["entity_type"]),
        local_id=row["local_id"],
        remote_id=row["remote_id"],
        remote_number=row["remote_number"],
        node_id=row["node_id"],
        parent_number=row["parent_number"],
        record_id=row["record_id"],
        status=MappingStatus(row["status"]),
        error_message=row["error_message"],
        last_synced_at=datetime.fromisoformat(row["last_synced_at"]),
    )


class MappingStore:
    """Access to the ``sync_mappings`` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get(self, entity_type: EntityType, local_id: str) -> SyncMapping | None:
        row = execute_one(
            self.conn,
            "SELECT * FROM sync_mappings WHERE entity_type = ? AND local_id = ?",
            (entity_type.value, local_id),
        )
        return _from_row(row) if row else None

    def find_by_number(self, entity_type: EntityType, remote_number: int) -> SyncMapping | None:
        row = execute_one(
            self.conn,
            """
            SELECT * FROM sync_mappings
            WHERE entity_type = ? AND remote_number = ? AND status = 'success'
            ORDER BY last_synced_at DESC LIMIT 1
            """,
            (entity_type.value, remote_number),
        )
        return _from_row(row) if row else None

    def list_for_record(self, record_id: str) -> list[SyncMapping]:
        rows = execute_query(
            self.conn,
            "SELECT * FROM sync_mappings WHERE record_id = ? ORDER BY id",
            (record_id,),
        )
        return [_from_row(row) for row in rows]

    def list_children(self, parent_number: int) -> list[SyncMapping]:
        """Sub-entity mappings under a parent issue."""
        rows = execute_query(
            self.conn,
            """
            SELECT * FROM sync_mappings
            WHERE entity_type = 'sub_entity' AND parent_number = ?
            ORDER BY id
            """,
            (parent_number,),
        )
        return [_from_row(row) for row in rows]

    def count(self, entity_type: EntityType, local_id: str) -> int:
        row = execute_one(
            self.conn,
            "SELECT COUNT(*) AS n FROM sync_mappings WHERE entity_type = ? AND local_id = ?",
            (entity_type.value, local_id),
        )
        return int(row["n"]) if row else 0

    def reserve(
        self,
        entity_type: EntityType,
        local_id: str,
        *,
        record_id: str | None = None,
        parent_number: int | None = None,
    ) -> SyncMapping:
        """
        Claim the right to create the remote entity for a local entity.

        Raises:
            AlreadySyncedError: If a mapping (of any status) already exists
            RecordNotFoundError: If ``record_id`` does not exist
        """
        now = utc_now()
        try:
            self.conn.execute(
                """
                INSERT INTO sync_mappings (entity_type, local_id, record_id, parent_number,
                                           status, last_synced_at)
                VALUES (?, ?, ?, ?, 'pending', ?)
                """,
                (entity_type.value, local_id, record_id, parent_number, now.isoformat()),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            if "FOREIGN KEY" in str(e) and record_id is not None:
                raise RecordNotFoundError(record_id) from e
            raise AlreadySyncedError(entity_type.value, local_id) from e

        logger.debug("Reserved %s mapping for %s", entity_type.value, local_id)
        return SyncMapping(
            entity_type=entity_type,
            local_id=local_id,
            record_id=record_id,
            parent_number=parent_number,
            status=MappingStatus.PENDING,
            last_synced_at=now,
        )

    def take_over_stale(
        self, entity_type: EntityType, local_id: str, older_than: datetime
    ) -> bool:
        """
        Claim a pending reservation abandoned before ``older_than``.

        The conditional UPDATE makes this safe under concurrency: only one
        caller sees a row count of 1.
        """
        cursor = self.conn.execute(
            """
            UPDATE sync_mappings SET last_synced_at = ?
            WHERE entity_type = ? AND local_id = ? AND status = 'pending'
              AND last_synced_at < ?
            """,
            (utc_now().isoformat(), entity_type.value, local_id, older_than.isoformat()),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    def replace_errored(self, entity_type: EntityType, local_id: str) -> bool:
        """Turn an ``error`` mapping back into a reservation for re-creation."""
        cursor = self.conn.execute(
            """
            UPDATE sync_mappings
            SET status = 'pending', error_message = NULL, last_synced_at = ?
            WHERE entity_type = ? AND local_id = ? AND status = 'error'
            """,
            (utc_now().isoformat(), entity_type.value, local_id),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    def claim(
        self,
        entity_type: EntityType,
        local_id: str,
        *,
        record_id: str | None = None,
        parent_number: int | None = None,
        stale_before: datetime | None = None,
    ) -> SyncMapping:
        """
        Reserve creation of a remote entity, whatever state the row is in.

        - no row: insert a reservation
        - ``error`` row: turn it back into a reservation
        - ``pending`` row older than ``stale_before``: take it over

        Raises:
            AlreadySyncedError: If another caller owns the row or it is synced
        """
        existing = self.get(entity_type, local_id)
        if existing is None:
            return self.reserve(
                entity_type, local_id, record_id=record_id, parent_number=parent_number
            )

        if existing.status == MappingStatus.ERROR and self.replace_errored(entity_type, local_id):
            logger.info("Re-creating %s for %s after error", entity_type.value, local_id)
        elif (
            existing.status == MappingStatus.PENDING
            and stale_before is not None
            and self.take_over_stale(entity_type, local_id, stale_before)
        ):
            logger.warning(
                "Taking over abandoned %s reservation for %s", entity_type.value, local_id
            )
        else:
            raise AlreadySyncedError(entity_type.value, local_id, status=existing.status.value)

        mapping = self.get(entity_type, local_id)
        assert mapping is not None
        return mapping

    def promote(
        self,
        entity_type: EntityType,
        local_id: str,
        *,
        remote_id: str,
        remote_number: int,
        node_id: str | None = None,
    ) -> SyncMapping:
        """Record the created remote entity on a reservation."""
        self.conn.execute(
            """
            UPDATE sync_mappings
            SET remote_id = ?, remote_number = ?, node_id = ?, status = 'success',
                error_message = NULL, last_synced_at = ?
            WHERE entity_type = ? AND local_id = ?
            """,
            (
                remote_id,
                remote_number,
                node_id,
                utc_now().isoformat(),
                entity_type.value,
                local_id,
            ),
        )
        self.conn.commit()
        mapping = self.get(entity_type, local_id)
        assert mapping is not None
        return mapping

    def release(self, entity_type: EntityType, local_id: str) -> None:
        """Drop a reservation after a failed remote call."""
        self.conn.execute(
            """
            DELETE FROM sync_mappings
            WHERE entity_type = ? AND local_id = ? AND status = 'pending'
            """,
            (entity_type.value, local_id),
        )
        self.conn.commit()
        logger.debug("Released %s reservation for %s", entity_type.value, local_id)

    def upsert(self, mapping: SyncMapping) -> SyncMapping:
        """Insert or overwrite the mapping for (entity_type, local_id)."""
        self.conn.execute(
            """
            INSERT INTO sync_mappings (entity_type, local_id, record_id, remote_id,
                                       remote_number, node_id, parent_number, status,
                                       error_message, last_synced_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(entity_type, local_id) DO UPDATE SET
                record_id = excluded.record_id,
                remote_id = excluded.remote_id,
                remote_number = excluded.remote_number,
                node_id = excluded.node_id,
                parent_number = excluded.parent_number,
                status = excluded.status,
                error_message = excluded.error_message,
                last_synced_at = excluded.last_synced_at
            """,
            (
                mapping.entity_type.value,
                mapping.local_id,
                mapping.record_id,
                mapping.remote_id,
                mapping.remote_number,
                mapping.node_id,
                mapping.parent_number,
                mapping.status.value,
                mapping.error_message,
                mapping.last_synced_at.isoformat(),
            ),
        )
        self.conn.commit()
        return mapping

    def touch(self, entity_type: EntityType, local_id: str) -> None:
        """Refresh last_synced_at after a successful sync."""
        self.conn.execute(
            """
            UPDATE sync_mappings SET last_synced_at = ?
            WHERE entity_type = ? AND local_id = ?
            """,
            (utc_now().isoformat(), entity_type.value, local_id),
        )
        self.conn.commit()

    def mark_error(self, entity_type: EntityType, local_id: str, message: str) -> None:
        """Flag a mapping whose remote entity turned out to be gone."""
        self.conn.execute(
            """
            UPDATE sync_mappings SET status = 'error', error_message = ?
            WHERE entity_type = ? AND local_id = ?
            """,
            (message, entity_type.value, local_id),
        )
        self.conn.commit()

    def delete(self, entity_type: EntityType, local_id: str) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM sync_mappings WHERE entity_type = ? AND local_id = ?",
            (entity_type.value, local_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0
