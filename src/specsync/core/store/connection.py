"""
Database connection management for specsync.

Connections are opened with:
- WAL journal mode
- Foreign key enforcement (mapping rows cascade with their record)
- Row factory for dict-like access

Usage:
    from specsync.core.store import init_db, get_connection

    conn = init_db(Path(".specsync/specsync.db"))

    with get_connection(db_path) as conn:
        for row in conn.execute("SELECT * FROM records WHERE phase = ?", ("design",)):
            print(row["id"], row["name"])
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from specsync.core.store.schema import create_schema, needs_migration


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Row factory that returns rows as dictionaries keyed by column name."""
    fields = [column[0] for column in cursor.description]
    return dict(zip(fields, row))


def configure_connection(conn: sqlite3.Connection) -> None:
    """
    Configure a SQLite connection.

    Settings applied:
    - WAL mode
    - Foreign keys
    - dict_factory
    """
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = dict_factory


def init_db(db_path: Path | str, *, force_recreate: bool = False) -> sqlite3.Connection:
    """
    Initialize the record database.

    Creates the file if needed, applies the schema and returns a configured
    connection.

    Args:
        db_path: Path to the SQLite database file (or ":memory:")
        force_recreate: If True, delete an existing database first

    Returns:
        Configured SQLite connection
    """
    if str(db_path) != ":memory:":
        db_path = Path(db_path)
        if force_recreate and db_path.exists():
            db_path.unlink()
        db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    configure_connection(conn)

    if needs_migration(conn):
        create_schema(conn)

    return conn


@contextmanager
def get_connection(db_path: Path | str) -> Iterator[sqlite3.Connection]:
    """
    Get a database connection as a context manager.

    The connection is closed when the context exits and rolled back if an
    exception escapes.

    Args:
        db_path: Path to the SQLite database file

    Yields:
        Configured SQLite connection
    """
    conn = init_db(db_path)

    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def execute_query(
    conn: sqlite3.Connection,
    query: str,
    params: tuple[Any, ...] | dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """Execute a query and return all rows as dicts."""
    if params is None:
        params = ()

    cursor = conn.execute(query, params)
    return cursor.fetchall()


def execute_one(
    conn: sqlite3.Connection,
    query: str,
    params: tuple[Any, ...] | dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Execute a query and return the first row as a dict, or None."""
    if params is None:
        params = ()

    cursor = conn.execute(query, params)
    result = cursor.fetchone()
    # fetchone() returns dict[str, Any] or None when dict_factory is configured
    return result  # type: ignore[no-any-return]
