"""
GitHub integration: REST/GraphQL client, retry loop, Projects v2 and
status resolution.
"""

from specsync.core.github.client import GitHubClient
from specsync.core.github.models import GitHubIssue, ProjectField, RepoInfo
from specsync.core.github.projects import ProjectsClient
from specsync.core.github.retry import RetryPolicy, send_with_retry
from specsync.core.github.status import (
    DEFAULT_STATUS_CONFIG,
    LEGACY_STATUS_CONFIG,
    ProjectStatusUpdater,
    StatusResolver,
    map_phase_to_status,
)

__all__ = [
    "DEFAULT_STATUS_CONFIG",
    "GitHubClient",
    "GitHubIssue",
    "LEGACY_STATUS_CONFIG",
    "ProjectField",
    "ProjectStatusUpdater",
    "ProjectsClient",
    "RepoInfo",
    "RetryPolicy",
    "StatusResolver",
    "map_phase_to_status",
    "send_with_retry",
]
