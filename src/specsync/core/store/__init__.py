"""
Local SQLite store for spec records and sync mappings.
"""

from specsync.core.store.connection import (
    configure_connection,
    dict_factory,
    execute_one,
    execute_query,
    get_connection,
    init_db,
)
from specsync.core.store.mappings import MappingStore
from specsync.core.store.records import RecordStore
from specsync.core.store.schema import SCHEMA_VERSION, create_schema

__all__ = [
    "MappingStore",
    "RecordStore",
    "SCHEMA_VERSION",
    "configure_connection",
    "create_schema",
    "dict_factory",
    "execute_one",
    "execute_query",
    "get_connection",
    "init_db",
]
