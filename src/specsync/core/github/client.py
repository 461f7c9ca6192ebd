"""
Async GitHub API client.

Wraps the REST API (issues, comments, sub-issues) and the GraphQL endpoint
with httpx. Every call goes through the shared retry loop in
``specsync.core.github.retry``.

Example:
    >>> async with GitHubClient(token, "owner", "repo") as client:
    ...     issue = await client.create_issue("[requirements] Login", "body", ["phase:requirements"])
    ...     await client.add_comment(issue.number, "Hello")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from specsync.core.config.models import SpecSyncConfig
from specsync.core.exceptions import ConfigError, GraphQLError
from specsync.core.github.models import GitHubIssue
from specsync.core.github.retry import RetryPolicy, Sleep, send_with_retry

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
PER_PAGE = 100

ADD_SUB_ISSUE_MUTATION = """
mutation($parentId: ID!, $childId: ID!) {
  addSubIssue(input: {issueId: $parentId, subIssueId: $childId}) {
    issue { id }
    subIssue { id number }
  }
}
"""


class GitHubClient:
    """
    Client for one repository.

    Args:
        token: API token
        owner: Repository owner
        repo: Repository name
        api_url: REST base URL; GraphQL lives at ``<api_url>/graphql``
        retry: Retry policy shared by every call
        transport: Optional httpx transport (tests use httpx.MockTransport)
        sleep: Awaitable sleep used between retries
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        *,
        api_url: str = DEFAULT_API_URL,
        retry: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        timeout: float = 30.0,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            transport=transport,
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, config: SpecSyncConfig, **kwargs: Any) -> GitHubClient:
        """
        Build a client from configuration.

        Raises:
            ConfigError: If owner, repo or token is missing
        """
        github = config.github
        if not github.is_configured:
            raise ConfigError(
                "GitHub is not configured (need github.owner, github.repo and GITHUB_TOKEN)"
            )
        kwargs.setdefault(
            "retry",
            RetryPolicy(
                max_attempts=config.retry.max_attempts,
                base_delay=config.retry.base_delay,
            ),
        )
        return cls(
            github.token or "",
            github.owner or "",
            github.repo or "",
            api_url=github.api_url,
            **kwargs,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request through the retry loop."""

        async def send() -> httpx.Response:
            return await self._http.request(
                method, path, json=json, params=params, headers=headers
            )

        logger.debug("%s %s (%s)", method, path, operation)
        return await send_with_retry(send, self.retry, operation=operation, sleep=self._sleep)

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def create_issue(
        self, title: str, body: str, labels: list[str] | None = None
    ) -> GitHubIssue:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        response = await self.request(
            "POST", f"{self.repo_path}/issues", json=payload, operation="create issue"
        )
        issue = GitHubIssue.from_api(response.json())
        logger.info("Created issue #%d: %s", issue.number, title)
        return issue

    async def get_issue(self, number: int) -> GitHubIssue:
        response = await self.request(
            "GET", f"{self.repo_path}/issues/{number}", operation=f"get issue #{number}"
        )
        return GitHubIssue.from_api(response.json())

    async def update_issue(
        self,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        labels: list[str] | None = None,
        state: str | None = None,
        state_reason: str | None = None,
    ) -> GitHubIssue:
        """Patch the given fields of an issue (None means unchanged)."""
        payload: dict[str, Any] = {}
        if title is not None:
            payload["title"] = title
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = labels
        if state is not None:
            payload["state"] = state
        if state_reason is not None:
            payload["state_reason"] = state_reason

        response = await self.request(
            "PATCH",
            f"{self.repo_path}/issues/{number}",
            json=payload,
            operation=f"update issue #{number}",
        )
        return GitHubIssue.from_api(response.json())

    async def close_issue(self, number: int, state_reason: str = "completed") -> GitHubIssue:
        return await self.update_issue(number, state="closed", state_reason=state_reason)

    async def add_comment(self, number: int, body: str) -> int:
        """
        Comment on an issue.

        Returns:
            Comment ID
        """
        response = await self.request(
            "POST",
            f"{self.repo_path}/issues/{number}/comments",
            json={"body": body},
            operation=f"comment on issue #{number}",
        )
        return int(response.json().get("id", 0))

    async def get_node_id(self, number: int) -> str:
        """GraphQL node ID of an issue."""
        issue = await self.get_issue(number)
        if not issue.node_id:
            raise GraphQLError(f"Issue #{number} has no node ID", issue_number=number)
        return issue.node_id

    async def _paginate(self, path: str, params: dict[str, Any], operation: str) -> list[Any]:
        items: list[Any] = []
        page = 1
        while True:
            response = await self.request(
                "GET",
                path,
                params={**params, "per_page": PER_PAGE, "page": page},
                operation=operation,
            )
            batch = response.json()
            items.extend(batch)
            if len(batch) < PER_PAGE:
                return items
            page += 1

    async def list_issues(
        self, state: str = "open", labels: list[str] | None = None
    ) -> list[GitHubIssue]:
        """List issues (pull requests excluded), following pagination."""
        params: dict[str, Any] = {"state": state}
        if labels:
            params["labels"] = ",".join(labels)
        raw = await self._paginate(f"{self.repo_path}/issues", params, "list issues")
        return [GitHubIssue.from_api(item) for item in raw if "pull_request" not in item]

    async def list_sub_issues(self, number: int) -> list[GitHubIssue]:
        raw = await self._paginate(
            f"{self.repo_path}/issues/{number}/sub_issues", {}, f"list sub-issues of #{number}"
        )
        return [GitHubIssue.from_api(item) for item in raw]

    # ------------------------------------------------------------------
    # GraphQL
    # ------------------------------------------------------------------

    async def graphql(
        self, query: str, variables: dict[str, Any] | None = None, *, operation: str = "graphql"
    ) -> dict[str, Any]:
        """
        Run a GraphQL query.

        Returns:
            The ``data`` object

        Raises:
            GraphQLError: If the response carries errors
        """
        response = await self.request(
            "POST",
            "/graphql",
            json={"query": query, "variables": variables or {}},
            headers={"GraphQL-Features": "sub_issues"},
            operation=operation,
        )
        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(str(e.get("message", e)) for e in payload["errors"])
            raise GraphQLError(f"Failed to {operation}: {messages}", operation=operation)
        return payload.get("data") or {}

    async def add_sub_issue(self, parent_node_id: str, child_node_id: str) -> None:
        await self.graphql(
            ADD_SUB_ISSUE_MUTATION,
            {"parentId": parent_node_id, "childId": child_node_id},
            operation="link sub-issue",
        )
