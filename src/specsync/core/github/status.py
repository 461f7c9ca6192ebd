"""
Phase -> project status resolution.

Specs are shown on a Projects v2 board through a single-select status
field. Each phase maps to one status option. When the project does not
offer the mapped option, the configured fallback is used (with a
warning); when the fallback is missing too the call fails rather than
picking an arbitrary option.

Two presets are provided:

- DEFAULT_STATUS_CONFIG: Todo / In Progress / In Review / Done
- LEGACY_STATUS_CONFIG: Todo / In Progress / Done
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from specsync.core.config.models import StatusConfig
from specsync.core.exceptions import (
    AuthenticationError,
    NotFoundError,
    RateLimitError,
    SpecSyncError,
    StatusOptionNotFoundError,
)
from specsync.core.github.models import ProjectField
from specsync.core.github.projects import ProjectsClient
from specsync.core.github.retry import Sleep
from specsync.core.specs.models import Phase

logger = logging.getLogger(__name__)

DEFAULT_STATUS_CONFIG = StatusConfig()

LEGACY_STATUS_CONFIG = StatusConfig(
    mapping={
        "requirements": "Todo",
        "design": "In Progress",
        "tasks": "In Progress",
        "implementation": "In Progress",
        "completed": "Done",
    },
    available_statuses=["Todo", "In Progress", "Done"],
    fallback_status="In Progress",
)


def map_phase_to_status(phase: Phase, config: StatusConfig | None = None) -> str:
    """
    Status option name configured for a phase.

    Phases missing from a custom mapping get the fallback status.
    """
    config = config or DEFAULT_STATUS_CONFIG
    return config.mapping.get(phase.value, config.fallback_status)


def merge_status_config(base: StatusConfig, override: dict[str, Any]) -> StatusConfig:
    """
    Overlay user settings on a status config.

    ``mapping`` is merged key by key; other keys replace the base value.
    """
    data = base.model_dump()
    for key, value in override.items():
        if key == "mapping" and isinstance(value, dict):
            data["mapping"] = {**data["mapping"], **value}
        else:
            data[key] = value
    return StatusConfig.model_validate(data)


@dataclass
class StatusConfigValidation:
    """Problems found in a status config."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_status_config(config: StatusConfig) -> StatusConfigValidation:
    """Check a status config for internal consistency."""
    result = StatusConfigValidation()

    if not config.field_name.strip():
        result.errors.append("field_name must not be empty")

    if not config.available_statuses:
        result.errors.append("available_statuses must not be empty")

    for phase in Phase:
        if phase.value not in config.mapping:
            result.errors.append(f"No status mapped for phase '{phase.value}'")

    unknown_phases = set(config.mapping) - {p.value for p in Phase}
    for name in sorted(unknown_phases):
        result.warnings.append(f"Mapping for unknown phase '{name}' is ignored")

    available = set(config.available_statuses)
    if available:
        for phase_name, status in config.mapping.items():
            if status not in available:
                result.errors.append(
                    f"Status '{status}' for phase '{phase_name}' is not in available_statuses"
                )
        if config.fallback_status not in available:
            result.errors.append(
                f"Fallback status '{config.fallback_status}' is not in available_statuses"
            )

        used = set(config.mapping.values()) | {config.fallback_status}
        for status in config.available_statuses:
            if status not in used:
                result.warnings.append(f"Status '{status}' is never used")

    return result


@dataclass
class StatusResolution:
    """Status chosen for a phase."""

    status: str
    used_fallback: bool = False
    warnings: list[str] = field(default_factory=list)


class StatusResolver:
    """
    Resolve phases against the options a project actually offers.

    Args:
        config: Status configuration
        options: Option names discovered on the project's status field
    """

    def __init__(self, config: StatusConfig, options: list[str]) -> None:
        self.config = config
        self.options = list(options)

    def resolve_status(self, phase: Phase) -> StatusResolution:
        """
        Pick the status option for a phase.

        Raises:
            StatusOptionNotFoundError: If neither the mapped status nor the
                fallback is offered
        """
        mapped = map_phase_to_status(phase, self.config)
        if mapped in self.options:
            return StatusResolution(status=mapped)

        fallback = self.config.fallback_status
        if fallback in self.options:
            warning = (
                f"Status '{mapped}' for phase '{phase.value}' not found on field "
                f"'{self.config.field_name}'; using fallback '{fallback}'"
            )
            logger.warning(warning)
            return StatusResolution(status=fallback, used_fallback=True, warnings=[warning])

        raise StatusOptionNotFoundError(
            f"Status option '{mapped}' not found and fallback '{fallback}' is also "
            f"unavailable (field '{self.config.field_name}' offers: "
            f"{', '.join(self.options) or 'nothing'})",
            phase=phase.value,
            status=mapped,
            fallback=fallback,
        )


@dataclass
class VerificationResult:
    """Outcome of applying and re-reading a status update."""

    success: bool
    attempts: int
    expected: str
    actual: str | None = None


class ProjectStatusUpdater:
    """
    Apply status updates to project items and confirm they stuck.

    Project writes are eventually consistent, so an update is re-read
    with backoff until the expected value shows up.
    """

    def __init__(
        self,
        projects: ProjectsClient,
        config: StatusConfig,
        *,
        verify_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.projects = projects
        self.config = config
        self.verify_attempts = verify_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self._fields: dict[str, ProjectField] = {}

    async def discover_field(self, project_id: str) -> ProjectField:
        """
        Find the configured status field on a project.

        Raises:
            NotFoundError: If the project has no such single-select field
        """
        if project_id in self._fields:
            return self._fields[project_id]

        for project_field in await self.projects.get_fields(project_id):
            if project_field.name == self.config.field_name:
                self._fields[project_id] = project_field
                return project_field

        raise NotFoundError(
            f"Field '{self.config.field_name}' not found on project",
            project_id=project_id,
            field_name=self.config.field_name,
        )

    async def resolver(self, project_id: str) -> StatusResolver:
        project_field = await self.discover_field(project_id)
        return StatusResolver(self.config, project_field.option_names())

    async def update_and_verify(
        self,
        project_id: str,
        item_id: str,
        status: str,
        max_retries: int | None = None,
    ) -> VerificationResult:
        """
        Set an item's status and re-read it until it matches.

        A verification failure is reported, not undone. Read errors other
        than rate limits and authentication failures count as a failed
        attempt.

        Raises:
            StatusOptionNotFoundError: If the status is not an option
        """
        project_field = await self.discover_field(project_id)
        option_id = project_field.option_id(status)
        if option_id is None:
            raise StatusOptionNotFoundError(
                f"Status option '{status}' not found on field '{project_field.name}'",
                status=status,
            )

        await self.projects.update_item_field(project_id, item_id, project_field.id, option_id)

        attempts = max_retries if max_retries is not None else self.verify_attempts
        actual: str | None = None
        for attempt in range(1, attempts + 1):
            try:
                actual = await self.projects.get_item_status(item_id, project_field.name)
            except (RateLimitError, AuthenticationError):
                raise
            except SpecSyncError as e:
                logger.warning(
                    "Could not read status of %s (attempt %d/%d): %s", item_id, attempt, attempts, e
                )
                actual = None
            if actual == status:
                logger.debug("Verified status '%s' on %s (attempt %d)", status, item_id, attempt)
                return VerificationResult(
                    success=True, attempts=attempt, expected=status, actual=actual
                )
            if attempt < attempts:
                await self._sleep(self.base_delay * (2 ** (attempt - 1)))

        logger.warning(
            "Status of %s is '%s' after %d check(s), expected '%s'",
            item_id,
            actual,
            attempts,
            status,
        )
        return VerificationResult(success=False, attempts=attempts, expected=status, actual=actual)

    async def sync_phase(
        self, project_id: str, item_id: str, phase: Phase
    ) -> tuple[StatusResolution, VerificationResult]:
        """Resolve the status for a phase and apply it to an item."""
        resolution = (await self.resolver(project_id)).resolve_status(phase)
        verification = await self.update_and_verify(project_id, item_id, resolution.status)
        return resolution, verification
