"""
Phase transitions.

A transition is applied to the database first, then to the spec file's
metadata lines, then announced on the event bus. If the file rewrite or
getting hold of the bus fails, the database (and the file, if it was
already rewritten) is put back the way it was. A rollback that fails
itself raises InconsistentStateError: the stores may disagree and someone
has to look.

Listener failures never fail a transition; they come back in the
result's dispatch report.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from specsync.core.events import PHASE_CHANGED, DispatchReport, EventBus
from specsync.core.exceptions import (
    InconsistentStateError,
    PhaseConflictError,
    PhaseTransitionError,
    SpecParseError,
    ValidationError,
)
from specsync.core.specs import markdown
from specsync.core.specs.models import Phase, SpecRecord, utc_now
from specsync.core.specs.validators import ValidationResult, Validator, validate_transition
from specsync.core.store.records import RecordStore

logger = logging.getLogger(__name__)

BusProvider = Callable[[], Awaitable[EventBus]]


@dataclass
class TransitionResult:
    """Outcome of a (possibly dry-run) phase transition."""

    record_id: str
    old_phase: Phase
    new_phase: Phase
    validation: ValidationResult
    applied: bool = False
    updated_at: datetime | None = None
    dispatch: DispatchReport | None = None


class PhaseTransitionController:
    """
    Validate and apply phase transitions.

    Args:
        records: Record repository
        spec_dir: Directory holding spec files
        bus: Event bus, or an async callable returning one
        rules: Validation rules (defaults to the built-in table)
        dispatch_timeout: Seconds to wait for phase-change listeners
    """

    def __init__(
        self,
        records: RecordStore,
        spec_dir: Path,
        bus: EventBus | BusProvider,
        *,
        rules: dict[tuple[Phase, Phase], Validator] | None = None,
        dispatch_timeout: float | None = None,
    ) -> None:
        self.records = records
        self.spec_dir = spec_dir
        self._bus = bus
        self.rules = rules
        self.dispatch_timeout = dispatch_timeout

    async def _acquire_bus(self) -> EventBus:
        if isinstance(self._bus, EventBus):
            return self._bus
        return await self._bus()

    def _read_content(self, record: SpecRecord) -> str:
        path = markdown.spec_path(self.spec_dir, record.id)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    async def transition(
        self,
        record_id: str,
        target: Phase,
        *,
        expected_phase: Phase | None = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> TransitionResult:
        """
        Move a spec to another phase.

        Args:
            record_id: Spec ID
            target: Phase to move to
            expected_phase: Fail if the stored phase is something else
            force: Apply even when required sections are missing
            dry_run: Only validate; the result is returned even if invalid

        Raises:
            RecordNotFoundError: Unknown spec
            PhaseConflictError: Stored phase differs from ``expected_phase``
            ValidationError: Already in ``target``
            PhaseTransitionError: Required sections missing (without force)
            InconsistentStateError: A failure could not be rolled back
        """
        record = self.records.require(record_id)

        if expected_phase is not None and record.phase != expected_phase:
            raise PhaseConflictError(
                f"Spec {record.short_id} is in phase '{record.phase.value}', "
                f"expected '{expected_phase.value}'",
                record_id=record.id,
                phase=record.phase.value,
                expected_phase=expected_phase.value,
            )

        if record.phase == target:
            raise ValidationError(
                f"Spec {record.short_id} is already in phase '{target.value}'",
                record_id=record.id,
                phase=target.value,
            )

        validation = validate_transition(
            self._read_content(record), record.phase, target, rules=self.rules, force=force
        )
        result = TransitionResult(
            record_id=record.id,
            old_phase=record.phase,
            new_phase=target,
            validation=validation,
        )
        if dry_run:
            return result

        if validation.missing and not force:
            raise PhaseTransitionError(
                f"Cannot move spec {record.short_id} from '{record.phase.value}' to "
                f"'{target.value}': missing {', '.join(validation.missing)}",
                validation.missing,
                record_id=record.id,
                from_phase=record.phase.value,
                to_phase=target.value,
            )
        if validation.missing:
            logger.warning(
                "Forcing %s -> %s for %s with missing sections: %s",
                record.phase.value,
                target.value,
                record.id,
                ", ".join(validation.missing),
            )

        result.updated_at, written = self._apply(record, target)
        result.applied = True

        try:
            bus = await self._acquire_bus()
        except Exception as e:
            self._rollback(record, target, written, e)
            raise

        result.dispatch = await bus.emit(
            PHASE_CHANGED,
            record.id,
            {"old_phase": record.phase.value, "new_phase": target.value},
            timeout=self.dispatch_timeout,
        )
        if not result.dispatch.ok:
            logger.warning(
                "Phase change of %s to %s applied, but %d listener(s) failed%s",
                record.id,
                target.value,
                len(result.dispatch.failures),
                " and dispatch timed out" if result.dispatch.timed_out else "",
            )

        logger.info("Spec %s: %s -> %s", record.id, record.phase.value, target.value)
        return result

    def _apply(self, record: SpecRecord, target: Phase) -> tuple[datetime, tuple[Path, str]]:
        """
        Update the store, then the file.

        Returns:
            The new updated_at and the (path, original content) pair needed
            to undo the file rewrite
        """
        path = markdown.spec_path(self.spec_dir, record.id)
        updated_at = self.records.update_phase(record.id, target, utc_now())

        try:
            try:
                original = path.read_text(encoding="utf-8")
            except FileNotFoundError as e:
                raise SpecParseError(f"Spec file not found: {path}", str(path)) from e
            content = markdown.replace_metadata(original, phase=target, updated_at=updated_at)
            # write_durable renames atomically: on failure the file is unchanged
            markdown.write_durable(path, content)
        except Exception as e:
            self._rollback(record, target, None, e)
            raise

        return updated_at, (path, original)

    def _rollback(
        self,
        record: SpecRecord,
        target: Phase,
        written: tuple[Path, str] | None,
        error: Exception,
    ) -> None:
        logger.warning(
            "Rolling back %s from %s to %s after: %s",
            record.id,
            target.value,
            record.phase.value,
            error,
        )
        try:
            self.records.update_phase(record.id, record.phase, record.updated_at)
            if written is not None:
                markdown.write_durable(*written)
        except Exception as rollback_error:
            logger.critical(
                "Rollback of spec %s failed, database and spec file may disagree: %s",
                record.id,
                rollback_error,
            )
            raise InconsistentStateError(
                f"Failed to roll back phase of spec {record.id} "
                f"({target.value} -> {record.phase.value}): {rollback_error}. "
                "The database is in an inconsistent state; manual intervention is required.",
                record_id=record.id,
                from_phase=record.phase.value,
                to_phase=target.value,
                rollback_error=str(rollback_error),
            ) from error
