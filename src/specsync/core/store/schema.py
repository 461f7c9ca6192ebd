"""
SQLite schema for the specsync record store.

Schema Design:
- records: One row per spec (the authoritative local copy)
- sync_mappings: Links from local entities to GitHub entities
- schema_info: Version tracking for migrations

Mapping Entity Types:
- record: The spec's issue
- sub_entity: A task's sub-issue (local_id is the task ID)
- project: The spec's Projects v2 item (local_id is the spec ID)

The UNIQUE(entity_type, local_id) constraint on sync_mappings is what makes
issue creation idempotent: whoever inserts the row first owns the creation.
"""

import sqlite3

# Schema version for migrations
SCHEMA_VERSION = 1

PHASES = ["requirements", "design", "tasks", "implementation", "completed"]
MAPPING_ENTITY_TYPES = ["record", "sub_entity", "project"]
MAPPING_STATUSES = ["success", "error", "pending"]

SCHEMA_DDL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    description TEXT
);

-- Spec records
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    phase TEXT NOT NULL CHECK(phase IN ('requirements', 'design', 'tasks',
                                        'implementation', 'completed')),
    branch_name TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Local entity -> GitHub entity
CREATE TABLE IF NOT EXISTS sync_mappings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL CHECK(entity_type IN ('record', 'sub_entity', 'project')),
    local_id TEXT NOT NULL,
    record_id TEXT,
    remote_id TEXT,
    remote_number INTEGER,
    node_id TEXT,
    parent_number INTEGER,
    status TEXT NOT NULL DEFAULT 'success' CHECK(status IN ('success', 'error', 'pending')),
    error_message TEXT,
    last_synced_at TEXT NOT NULL,

    FOREIGN KEY (record_id) REFERENCES records(id) ON DELETE CASCADE,

    UNIQUE(entity_type, local_id)
);

CREATE INDEX IF NOT EXISTS idx_records_phase ON records(phase);
CREATE INDEX IF NOT EXISTS idx_sync_mappings_record ON sync_mappings(record_id);
CREATE INDEX IF NOT EXISTS idx_sync_mappings_number ON sync_mappings(entity_type, remote_number);
CREATE INDEX IF NOT EXISTS idx_sync_mappings_parent ON sync_mappings(parent_number);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """
    Create the database schema.

    Idempotent: safe to call on an existing database.

    Args:
        conn: SQLite database connection
    """
    conn.executescript(SCHEMA_DDL)

    conn.execute(
        """
        INSERT OR REPLACE INTO schema_info (version, description)
        VALUES (?, ?)
        """,
        (SCHEMA_VERSION, "Initial schema with records and sync mappings"),
    )

    conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """
    Get the current schema version from the database.

    Returns:
        Current schema version, or None if schema_info doesn't exist
    """
    try:
        cursor = conn.execute("SELECT MAX(version) AS version FROM schema_info")
        row = cursor.fetchone()
    except sqlite3.OperationalError:
        # schema_info table doesn't exist
        return None

    if row is None:
        return None
    value = row["version"] if isinstance(row, dict) else row[0]
    return int(value) if value is not None else None


def needs_migration(conn: sqlite3.Connection) -> bool:
    """Check whether the database is missing the current schema."""
    current_version = get_schema_version(conn)
    if current_version is None:
        return True
    return current_version < SCHEMA_VERSION
