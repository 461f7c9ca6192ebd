"""
Configuration data models for specsync.

These models define the structure of .specsync/config.json and
~/.config/specsync/config.json, validated with Pydantic.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_STATUS_MAPPING = {
    "requirements": "Todo",
    "design": "In Progress",
    "tasks": "In Progress",
    "implementation": "In Review",
    "completed": "Done",
}


class GitHubConfig(BaseModel):
    """
    Where specs are mirrored on GitHub.

    The token is normally taken from GITHUB_TOKEN rather than a config file.
    """
    owner: Optional[str] = Field(default=None, description="Repository owner")
    repo: Optional[str] = Field(default=None, description="Repository name")
    project_number: Optional[int] = Field(
        default=None,
        ge=1,
        description="Projects v2 number that specs are added to"
    )
    token: Optional[str] = Field(default=None, description="API token", repr=False)
    api_url: str = Field(
        default="https://api.github.com",
        description="REST base URL (GraphQL is served at <api_url>/graphql)"
    )

    @property
    def is_configured(self) -> bool:
        """True when owner, repo and token are all set."""
        return bool(self.owner and self.repo and self.token)


class StatusConfig(BaseModel):
    """
    How spec phases map onto the project's status field.

    A deployment may rename the field, remap phases or restrict the
    available options.
    """
    field_name: str = Field(default="Status", description="Single-select field to update")
    mapping: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_STATUS_MAPPING),
        description="Phase -> status option name"
    )
    available_statuses: list[str] = Field(
        default_factory=lambda: ["Todo", "In Progress", "In Review", "Done"],
        description="Options expected on the field"
    )
    fallback_status: str = Field(
        default="In Progress",
        description="Used when the mapped option doesn't exist on the project"
    )

    model_config = ConfigDict(extra="forbid")


class RetrySettings(BaseModel):
    """Rate-limit retry behaviour for GitHub calls."""
    max_attempts: int = Field(default=3, ge=1, description="Total attempts per call")
    base_delay: float = Field(
        default=1.0,
        gt=0.0,
        description="Seconds before the first retry (doubles each attempt)"
    )
    verify_attempts: int = Field(
        default=3,
        ge=1,
        description="Re-reads when verifying a project status update"
    )


class SyncSettings(BaseModel):
    """Tuning for the sync engine."""
    reservation_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="Age after which an abandoned creation reservation may be taken over"
    )
    dispatch_timeout_seconds: Optional[float] = Field(
        default=60.0,
        description="How long a phase change waits for event handlers (None = forever)"
    )
    append_task_checklist: bool = Field(
        default=True,
        description="Append '- [ ] #N title' lines to the parent issue for new sub-issues"
    )


class PathsConfig(BaseModel):
    """Locations of the local stores, relative to the project directory."""
    root: str = Field(default=".specsync", description="specsync directory")
    specs: str = Field(default="specs", description="Spec files, under root")
    database: str = Field(default="specsync.db", description="SQLite file, under root")

    def spec_dir(self, project_dir: Path) -> Path:
        return project_dir / self.root / self.specs

    def database_path(self, project_dir: Path) -> Path:
        return project_dir / self.root / self.database


class SpecSyncConfig(BaseModel):
    """Top-level specsync configuration."""
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    model_config = ConfigDict(extra="ignore")

    @field_validator("github", mode="before")
    @classmethod
    def allow_repo_shorthand(cls, v: object) -> object:
        """Accept ``"github": {"repository": "owner/repo"}`` as shorthand."""
        if isinstance(v, dict) and "repository" in v and "/" in str(v["repository"]):
            v = dict(v)
            owner, _, repo = str(v.pop("repository")).partition("/")
            v.setdefault("owner", owner)
            v.setdefault("repo", repo)
        return v
