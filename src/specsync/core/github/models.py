"""
GitHub data models for specsync.

Pydantic models for the parts of issues and Projects v2 that are consumed.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field, computed_field

TITLE_TAG_PATTERN = re.compile(r"^\[.*?\]\s*(.+)$")


class RepoInfo(BaseModel):
    """
    GitHub repository coordinates.

    Example:
        >>> RepoInfo.from_remote_url("git@github.com:user/repo.git")
        RepoInfo(owner='user', repo='repo')
    """

    owner: str = Field(..., description="Repository owner (user or organization)")
    repo: str = Field(..., description="Repository name")

    @computed_field
    @property
    def full_name(self) -> str:
        """Full repository name (owner/repo)."""
        return f"{self.owner}/{self.repo}"

    def issue_url(self, issue_number: int) -> str:
        """Web URL for an issue."""
        return f"https://github.com/{self.full_name}/issues/{issue_number}"

    @classmethod
    def from_remote_url(cls, remote_url: str) -> RepoInfo | None:
        """
        Parse repository info from a git remote URL (SSH or HTTPS).

        Returns:
            RepoInfo or None if not a GitHub URL
        """
        if not remote_url:
            return None

        ssh_match = re.match(r"git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$", remote_url)
        if ssh_match:
            return cls(owner=ssh_match.group(1), repo=ssh_match.group(2))

        https_match = re.match(r"https?://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$", remote_url)
        if https_match:
            return cls(owner=https_match.group(1), repo=https_match.group(2))

        return None


class GitHubIssue(BaseModel):
    """A GitHub issue as returned by the REST API."""

    id: int = Field(..., description="Database ID")
    number: int = Field(..., description="Issue number")
    node_id: str | None = Field(default=None, description="GraphQL node ID")
    title: str = Field(..., description="Issue title")
    body: str = Field(default="", description="Issue body (markdown)")
    state: str = Field(default="open", description="open or closed")
    state_reason: str | None = None
    labels: list[str] = Field(default_factory=list, description="Label names")
    url: str = Field(default="", description="HTML URL for the issue")

    @computed_field
    @property
    def is_open(self) -> bool:
        """Check if issue is open."""
        return self.state == "open"

    @property
    def untagged_title(self) -> str:
        """Title without a leading ``[phase]`` tag."""
        match = TITLE_TAG_PATTERN.match(self.title)
        return match.group(1).strip() if match else self.title.strip()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> GitHubIssue:
        """
        Create a GitHubIssue from a REST response.

        Labels may be objects (``{"name": ...}``) or plain strings.
        """
        labels: list[str] = []
        for label in data.get("labels") or []:
            if isinstance(label, dict):
                if label.get("name"):
                    labels.append(str(label["name"]))
            elif label:
                labels.append(str(label))

        return cls(
            id=int(data["id"]),
            number=int(data["number"]),
            node_id=data.get("node_id"),
            title=str(data.get("title") or ""),
            body=str(data.get("body") or ""),
            state=str(data.get("state") or "open"),
            state_reason=data.get("state_reason"),
            labels=labels,
            url=str(data.get("html_url") or ""),
        )


class FieldOption(BaseModel):
    """One option of a single-select project field."""

    id: str
    name: str


class ProjectField(BaseModel):
    """A single-select field of a Projects v2 board."""

    id: str
    name: str
    options: list[FieldOption] = Field(default_factory=list)

    def option_names(self) -> list[str]:
        return [option.name for option in self.options]

    def option_id(self, name: str) -> str | None:
        """ID of the option with this name, or None."""
        for option in self.options:
            if option.name == name:
                return option.id
        return None
