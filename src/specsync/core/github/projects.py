"""
GitHub Projects v2 operations (GraphQL only).
"""

from __future__ import annotations

import logging
from typing import Any

from specsync.core.exceptions import GraphQLError, NotFoundError
from specsync.core.github.client import GitHubClient
from specsync.core.github.models import FieldOption, ProjectField

logger = logging.getLogger(__name__)

USER_PROJECT_QUERY = """
query($login: String!, $number: Int!) {
  user(login: $login) { projectV2(number: $number) { id title } }
}
"""

ORG_PROJECT_QUERY = """
query($login: String!, $number: Int!) {
  organization(login: $login) { projectV2(number: $number) { id title } }
}
"""

ADD_ITEM_MUTATION = """
mutation($projectId: ID!, $contentId: ID!) {
  addProjectV2ItemById(input: {projectId: $projectId, contentId: $contentId}) {
    item { id }
  }
}
"""

FIELDS_QUERY = """
query($projectId: ID!) {
  node(id: $projectId) {
    ... on ProjectV2 {
      fields(first: 50) {
        nodes {
          ... on ProjectV2SingleSelectField { id name options { id name } }
        }
      }
    }
  }
}
"""

UPDATE_FIELD_MUTATION = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $optionId: String!) {
  updateProjectV2ItemFieldValue(input: {
    projectId: $projectId, itemId: $itemId, fieldId: $fieldId,
    value: {singleSelectOptionId: $optionId}
  }) {
    projectV2Item { id }
  }
}
"""

ITEM_STATUS_QUERY = """
query($itemId: ID!, $fieldName: String!) {
  node(id: $itemId) {
    ... on ProjectV2Item {
      fieldValueByName(name: $fieldName) {
        ... on ProjectV2ItemFieldSingleSelectValue { name }
      }
    }
  }
}
"""


def _dig(data: dict[str, Any], *keys: str) -> Any:
    current: Any = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


class ProjectsClient:
    """Projects v2 queries and mutations on top of a GitHubClient."""

    def __init__(self, client: GitHubClient) -> None:
        self.client = client
        self._project_ids: dict[tuple[str, int], str] = {}

    async def get_project_id(self, owner: str, number: int) -> str:
        """
        Resolve a project number to its node ID (user first, then organization).

        Raises:
            NotFoundError: If neither owner type has the project
        """
        key = (owner, number)
        if key in self._project_ids:
            return self._project_ids[key]

        variables = {"login": owner, "number": number}
        for query, root in ((USER_PROJECT_QUERY, "user"), (ORG_PROJECT_QUERY, "organization")):
            try:
                data = await self.client.graphql(query, variables, operation="look up project")
            except GraphQLError as e:
                logger.debug("Project lookup as %s failed: %s", root, e)
                continue
            project_id = _dig(data, root, "projectV2", "id")
            if project_id:
                self._project_ids[key] = project_id
                return str(project_id)

        raise NotFoundError(
            f"Project #{number} not found for {owner}", owner=owner, project_number=number
        )

    async def add_item(self, project_id: str, content_node_id: str) -> str:
        """
        Add an issue to a project.

        GitHub returns the existing item when the issue is already on the
        board, so this is idempotent.

        Returns:
            Project item ID
        """
        data = await self.client.graphql(
            ADD_ITEM_MUTATION,
            {"projectId": project_id, "contentId": content_node_id},
            operation="add project item",
        )
        item_id = _dig(data, "addProjectV2ItemById", "item", "id")
        if not item_id:
            raise GraphQLError("Project item was not returned", project_id=project_id)
        return str(item_id)

    async def get_fields(self, project_id: str) -> list[ProjectField]:
        """Single-select fields of a project."""
        data = await self.client.graphql(
            FIELDS_QUERY, {"projectId": project_id}, operation="list project fields"
        )
        nodes = _dig(data, "node", "fields", "nodes") or []
        fields: list[ProjectField] = []
        for node in nodes:
            # Non single-select fields come back as empty objects
            if not node or "options" not in node:
                continue
            fields.append(
                ProjectField(
                    id=node["id"],
                    name=node["name"],
                    options=[FieldOption(**option) for option in node["options"]],
                )
            )
        return fields

    async def update_item_field(
        self, project_id: str, item_id: str, field_id: str, option_id: str
    ) -> None:
        await self.client.graphql(
            UPDATE_FIELD_MUTATION,
            {
                "projectId": project_id,
                "itemId": item_id,
                "fieldId": field_id,
                "optionId": option_id,
            },
            operation="update project item",
        )

    async def get_item_status(self, item_id: str, field_name: str) -> str | None:
        """Current option name of a single-select field on an item."""
        data = await self.client.graphql(
            ITEM_STATUS_QUERY,
            {"itemId": item_id, "fieldName": field_name},
            operation="read project item",
        )
        name = _dig(data, "node", "fieldValueByName", "name")
        return str(name) if name is not None else None
