"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from .models import SpecSyncConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per session
_config_cache: SpecSyncConfig | None = None


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/specsync/config.json (or XDG equivalent)."""
    return get_xdg_config_home() / "specsync" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """
    Get path to project configuration file.

    Args:
        cwd: Project directory (defaults to current directory)

    Returns:
        Path to .specsync/config.json in the project
    """
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".specsync" / "config.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`. Nested dicts
    are merged, not replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 20}})
        {'a': 1, 'b': {'x': 10, 'y': 20}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON object, or None
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            logger.warning("Ignoring config at %s: top level is not an object", path)
            return None
    except (json.JSONDecodeError, OSError) as e:
        # Config system should be resilient
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None


def _set(result: dict[str, Any], section: str, key: str, value: Any) -> None:
    result.setdefault(section, {})
    result[section][key] = value


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        GITHUB_TOKEN / SPECSYNC_GITHUB_TOKEN - github.token
        SPECSYNC_GITHUB_OWNER - github.owner
        SPECSYNC_GITHUB_REPO - github.repo
        SPECSYNC_PROJECT_NUMBER - github.project_number
        SPECSYNC_GITHUB_API_URL - github.api_url
        SPECSYNC_MAX_RETRIES - retry.max_attempts
        SPECSYNC_STATUS_FALLBACK - status.fallback_status

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = {k: (dict(v) if isinstance(v, dict) else v) for k, v in config_dict.items()}

    if token := os.environ.get("SPECSYNC_GITHUB_TOKEN") or os.environ.get("GITHUB_TOKEN"):
        _set(result, "github", "token", token)

    if owner := os.environ.get("SPECSYNC_GITHUB_OWNER"):
        _set(result, "github", "owner", owner)

    if repo := os.environ.get("SPECSYNC_GITHUB_REPO"):
        _set(result, "github", "repo", repo)

    if api_url := os.environ.get("SPECSYNC_GITHUB_API_URL"):
        _set(result, "github", "api_url", api_url.rstrip("/"))

    if project_str := os.environ.get("SPECSYNC_PROJECT_NUMBER"):
        try:
            _set(result, "github", "project_number", int(project_str))
        except ValueError:
            logger.warning("Invalid SPECSYNC_PROJECT_NUMBER value '%s', ignoring", project_str)

    if retries_str := os.environ.get("SPECSYNC_MAX_RETRIES"):
        try:
            retries = int(retries_str)
            if retries < 1:
                logger.warning("SPECSYNC_MAX_RETRIES must be >= 1, got %d, ignoring", retries)
            else:
                _set(result, "retry", "max_attempts", retries)
        except ValueError:
            logger.warning("Invalid SPECSYNC_MAX_RETRIES value '%s', ignoring", retries_str)

    if fallback := os.environ.get("SPECSYNC_STATUS_FALLBACK"):
        _set(result, "status", "fallback_status", fallback)

    return result


def get_default_config() -> dict[str, Any]:
    """
    Get hardcoded default configuration.

    Returns:
        Dictionary with default configuration values
    """
    return {
        "retry": {"max_attempts": 3, "base_delay": 1.0},
        "sync": {"reservation_timeout_seconds": 300},
    }


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> SpecSyncConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (SPECSYNC_*, GITHUB_TOKEN)
        2. Project config (.specsync/config.json)
        3. User config (~/.config/specsync/config.json)
        4. Hardcoded defaults

    Args:
        project_dir: Project directory (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated SpecSyncConfig instance

    Raises:
        pydantic.ValidationError: If the merged config is invalid
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    config = SpecSyncConfig(**merged)

    _config_cache = config

    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None
