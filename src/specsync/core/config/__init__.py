"""
Configuration for specsync.

Layered loading (defaults < user < project < env) into Pydantic models.
"""

from specsync.core.config.env import load_layered_env
from specsync.core.config.loader import clear_cache, deep_merge, load_config
from specsync.core.config.models import (
    GitHubConfig,
    PathsConfig,
    RetrySettings,
    SpecSyncConfig,
    StatusConfig,
    SyncSettings,
)

__all__ = [
    "GitHubConfig",
    "PathsConfig",
    "RetrySettings",
    "SpecSyncConfig",
    "StatusConfig",
    "SyncSettings",
    "clear_cache",
    "deep_merge",
    "load_config",
    "load_layered_env",
]
