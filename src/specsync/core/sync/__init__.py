"""
Synchronization between spec records, spec files and GitHub.
"""

from specsync.core.sync.entity_sync import EnsureResult, EntitySyncService
from specsync.core.sync.importer import ImportResult, SpecImporter
from specsync.core.sync.integrity import IntegrityAuditor, IntegrityReport
from specsync.core.sync.listeners import GitHubListeners, register_github_listeners
from specsync.core.sync.sub_entities import (
    MAX_SUB_ENTITIES_PER_PARENT,
    SubEntityBatchResult,
    SubEntityManager,
    TaskCompletionResult,
)

__all__ = [
    "EnsureResult",
    "EntitySyncService",
    "GitHubListeners",
    "ImportResult",
    "IntegrityAuditor",
    "IntegrityReport",
    "MAX_SUB_ENTITIES_PER_PARENT",
    "SpecImporter",
    "SubEntityBatchResult",
    "SubEntityManager",
    "TaskCompletionResult",
    "register_github_listeners",
]
