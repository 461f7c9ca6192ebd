"""
Pytest configuration and shared fixtures.

Provides an in-memory record store, spec files in a temp directory and a
fake GitHub API served through httpx.MockTransport.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from specsync.core.config import clear_cache
from specsync.core.events import EventBus
from specsync.core.github.client import GitHubClient
from specsync.core.github.projects import ProjectsClient
from specsync.core.github.retry import RetryPolicy
from specsync.core.specs import markdown
from specsync.core.specs.models import Phase, SpecRecord
from specsync.core.store import MappingStore, RecordStore, init_db

OWNER = "acme"
REPO = "widgets"

# ==============================================================================
# Fake GitHub
# ==============================================================================


class FakeGitHub:
    """
    In-memory stand-in for the GitHub REST and GraphQL endpoints.

    Failures can be queued with ``fail(method, marker, status)``: the next
    request with that method whose path (or GraphQL query) contains the
    marker gets the given status instead.
    """

    def __init__(self, owner: str = OWNER, repo: str = REPO) -> None:
        self.prefix = f"/repos/{owner}/{repo}/issues"
        self.issues: dict[int, dict[str, Any]] = {}
        self.comments: dict[int, list[str]] = {}
        self.sub_issues: dict[int, list[int]] = {}
        self.requests: list[httpx.Request] = []
        self.failures: list[tuple[str, str, int, dict[str, str]]] = []
        self.project_id = "PVT_1"
        self.project_items: dict[str, str] = {}
        self.status_options = ["Todo", "In Progress", "In Review", "Done"]
        self.item_status: dict[str, str] = {}
        self.stale_status_reads = 0
        self._next_number = 1

    # -- helpers for tests -------------------------------------------------

    def fail(
        self,
        method: str,
        marker: str,
        status: int = 500,
        *,
        times: int = 1,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.failures.extend([(method, marker, status, headers or {})] * times)

    def add_issue(self, title: str, body: str = "", state: str = "open") -> dict[str, Any]:
        number = self._next_number
        self._next_number += 1
        issue = {
            "id": 1000 + number,
            "number": number,
            "node_id": f"I_{number}",
            "title": title,
            "body": body,
            "state": state,
            "state_reason": None,
            "labels": [],
            "html_url": f"https://github.com/{OWNER}/{REPO}/issues/{number}",
        }
        self.issues[number] = issue
        return issue

    def count(self, method: str, path_suffix: str = "") -> int:
        return sum(
            1
            for r in self.requests
            if r.method == method and r.url.path == self.prefix + path_suffix
        )

    @property
    def created(self) -> int:
        return self.count("POST")

    # -- transport ---------------------------------------------------------

    def _injected(self, request: httpx.Request, text: str) -> httpx.Response | None:
        for index, (method, marker, status, headers) in enumerate(self.failures):
            if request.method == method and (marker in request.url.path or marker in text):
                del self.failures[index]
                return httpx.Response(
                    status, json={"message": "injected failure"}, headers=headers
                )
        return None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0)
        self.requests.append(request)
        text = request.content.decode() if request.content else ""

        injected = self._injected(request, text)
        if injected is not None:
            return injected

        if request.url.path == "/graphql":
            return self._graphql(json.loads(text))

        path = request.url.path
        if not path.startswith(self.prefix):
            return httpx.Response(404, json={"message": "Not Found"})
        parts = [p for p in path[len(self.prefix) :].split("/") if p]

        if not parts:
            if request.method == "POST":
                data = json.loads(text)
                issue = self.add_issue(data["title"], data.get("body", ""))
                issue["labels"] = [{"name": name} for name in data.get("labels", [])]
                return httpx.Response(201, json=issue)
            return httpx.Response(200, json=list(self.issues.values()))

        number = int(parts[0])
        issue = self.issues.get(number)
        if issue is None:
            return httpx.Response(404, json={"message": "Not Found"})

        if len(parts) == 1:
            if request.method == "PATCH":
                data = json.loads(text)
                for key in ("title", "body", "state", "state_reason"):
                    if key in data:
                        issue[key] = data[key]
                if "labels" in data:
                    issue["labels"] = [{"name": name} for name in data["labels"]]
            return httpx.Response(200, json=issue)

        if parts[1] == "comments":
            self.comments.setdefault(number, []).append(json.loads(text)["body"])
            return httpx.Response(201, json={"id": len(self.comments[number])})

        if parts[1] == "sub_issues":
            page = int(request.url.params.get("page", "1"))
            children = [self.issues[n] for n in self.sub_issues.get(number, [])]
            return httpx.Response(200, json=children if page == 1 else [])

        return httpx.Response(404, json={"message": "Not Found"})

    def _graphql(self, payload: dict[str, Any]) -> httpx.Response:
        query = payload["query"]
        variables = payload.get("variables", {})

        if "addSubIssue" in query:
            parent = int(variables["parentId"].removeprefix("I_"))
            child = int(variables["childId"].removeprefix("I_"))
            self.sub_issues.setdefault(parent, []).append(child)
            data: dict[str, Any] = {"addSubIssue": {"issue": {"id": variables["parentId"]}}}
        elif "user(login" in query:
            data = {"user": {"projectV2": {"id": self.project_id, "title": "Board"}}}
        elif "addProjectV2ItemById" in query:
            item_id = f"PVTI_{variables['contentId']}"
            self.project_items[item_id] = variables["contentId"]
            data = {"addProjectV2ItemById": {"item": {"id": item_id}}}
        elif "fields(first" in query:
            options = [{"id": f"OPT_{name}", "name": name} for name in self.status_options]
            data = {
                "node": {
                    "fields": {
                        "nodes": [{}, {"id": "FIELD_status", "name": "Status", "options": options}]
                    }
                }
            }
        elif "updateProjectV2ItemFieldValue" in query:
            self.item_status[variables["itemId"]] = variables["optionId"].removeprefix("OPT_")
            data = {"updateProjectV2ItemFieldValue": {"projectV2Item": {"id": variables["itemId"]}}}
        elif "fieldValueByName" in query:
            if self.stale_status_reads > 0:
                self.stale_status_reads -= 1
                value = None
            else:
                value = self.item_status.get(variables["itemId"])
            data = {"node": {"fieldValueByName": {"name": value} if value else None}}
        else:
            return httpx.Response(200, json={"errors": [{"message": "Unknown query"}]})

        return httpx.Response(200, json={"data": data})


# ==============================================================================
# Store Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep user config, env vars and the config cache out of every test."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for name in (
        "GITHUB_TOKEN",
        "SPECSYNC_GITHUB_TOKEN",
        "SPECSYNC_GITHUB_OWNER",
        "SPECSYNC_GITHUB_REPO",
        "SPECSYNC_PROJECT_NUMBER",
        "SPECSYNC_GITHUB_API_URL",
        "SPECSYNC_MAX_RETRIES",
        "SPECSYNC_STATUS_FALLBACK",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def conn():
    """In-memory database with the schema applied."""
    connection = init_db(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def records(conn):
    return RecordStore(conn)


@pytest.fixture
def mappings(conn):
    return MappingStore(conn)


@pytest.fixture
def spec_dir(tmp_path):
    directory = tmp_path / "specs"
    directory.mkdir()
    return directory


@pytest.fixture
def bus():
    return EventBus()


# ==============================================================================
# Spec Fixtures
# ==============================================================================


FIXED_TIME = datetime(2026, 1, 5, 10, 47, 58, tzinfo=timezone.utc)


def filled_spec_content(record: SpecRecord, *, design: bool = True, tasks: list[str] | None = None) -> str:
    """A spec whose requirements (and optionally design) sections are filled in."""
    lines = [
        f"# {record.name}",
        "",
        f"**Spec ID:** {record.id}",
        f"**Phase:** {record.phase.value}",
        f"**Created:** {markdown.format_timestamp(record.created_at)}",
        f"**Updated:** {markdown.format_timestamp(record.updated_at)}",
        "",
        "---",
        "",
        "## 1. Background and Purpose",
        "",
        "Users cannot sign in with their company account.",
        "",
        "## 2. Target Users",
        "",
        "Administrators of enterprise workspaces.",
        "",
        "## 3. Acceptance Criteria",
        "",
        "- [ ] Sign-in with OIDC works",
        "- [ ] Sessions expire after 8 hours",
        "",
        "## 4. Constraints",
        "",
        "Must reuse the existing session store.",
        "",
        "## 5. Dependencies",
        "",
        "None.",
        "",
    ]
    if design:
        lines += [
            "## 7. Design Details",
            "",
            "### 7.1. Architecture",
            "",
            "A new auth module behind the login route.",
            "",
            "### 7.5. Test Strategy",
            "",
            "Unit tests plus one end-to-end login test.",
            "",
        ]
    if tasks:
        lines += ["## Tasks", ""] + [f"- [ ] {title}" for title in tasks] + [""]
    return "\n".join(lines)


@pytest.fixture
def make_spec(records, spec_dir):
    """
    Factory creating a record and its spec file.

    ``content`` may be "template" (the blank requirements template),
    "filled" (all required sections written) or an explicit string.
    """

    def _make(
        name: str = "Login page",
        *,
        phase: Phase = Phase.REQUIREMENTS,
        content: str = "filled",
        tasks: list[str] | None = None,
        write_file: bool = True,
    ) -> SpecRecord:
        record = records.create(
            SpecRecord(name=name, phase=phase, created_at=FIXED_TIME, updated_at=FIXED_TIME)
        )
        if write_file:
            if content == "template":
                text = markdown.render_template(record)
            elif content == "filled":
                text = filled_spec_content(record, tasks=tasks)
            else:
                text = content
            markdown.spec_path(spec_dir, record.id).write_text(text, encoding="utf-8")
        return record

    return _make


# ==============================================================================
# GitHub Fixtures
# ==============================================================================


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def sleeps():
    """Delays requested by the code under test (nothing actually sleeps)."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def github_client(fake_github, fake_sleep):
    """GitHubClient wired to the fake API."""
    return GitHubClient(
        "test-token",
        OWNER,
        REPO,
        retry=RetryPolicy(max_attempts=3, base_delay=1.0),
        transport=httpx.MockTransport(fake_github.handler),
        sleep=fake_sleep,
    )


@pytest.fixture
def projects_client(github_client):
    return ProjectsClient(github_client)


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Empty project directory for CLI tests."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def filled_content():
    """Builder for spec content with every required section filled in."""
    return filled_spec_content
