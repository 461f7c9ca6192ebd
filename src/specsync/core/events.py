"""
Event bus for spec lifecycle notifications.

The bus is an explicit registry of event name -> ordered handlers. It is
created once by the caller and passed to every component that publishes
or subscribes; there is no global instance.

Dispatch awaits every handler concurrently. A failing handler never
affects the others or the emitter: its error is logged and recorded in the
returned DispatchReport.

Example:
    >>> bus = EventBus()
    >>> async def on_phase(event: SpecEvent) -> None:
    ...     print(event.payload["new_phase"])
    >>> bus.subscribe(PHASE_CHANGED, on_phase)
    >>> report = await bus.emit(PHASE_CHANGED, "r1", {"old_phase": "requirements",
    ...                                               "new_phase": "design"})
    design
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from specsync.core.specs.models import utc_now

logger = logging.getLogger(__name__)

RECORD_CREATED = "record.created"
PHASE_CHANGED = "record.phase_changed"
RECORD_DELETED = "record.deleted"
RECORD_UPDATED = "record.updated"

EVENT_NAMES = (RECORD_CREATED, PHASE_CHANGED, RECORD_DELETED, RECORD_UPDATED)


@dataclass(frozen=True)
class SpecEvent:
    """A named event about one spec."""

    name: str
    record_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


EventHandler = Callable[[SpecEvent], Awaitable[None]]


@dataclass
class HandlerFailure:
    """A handler that raised while processing an event."""

    handler: str
    error: str


@dataclass
class DispatchReport:
    """What happened when an event was dispatched."""

    event: SpecEvent
    handler_count: int = 0
    failures: list[HandlerFailure] = field(default_factory=list)
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.timed_out


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """Registry of event handlers with awaited async dispatch."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._background: set[asyncio.Task[DispatchReport]] = set()

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register a handler. Registering the same handler twice is a no-op."""
        handlers = self._handlers.setdefault(event_name, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_name)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def handlers(self, event_name: str) -> list[EventHandler]:
        """Handlers registered for an event, in registration order."""
        return list(self._handlers.get(event_name, []))

    def clear(self) -> None:
        self._handlers.clear()

    async def _run(self, handler: EventHandler, event: SpecEvent) -> HandlerFailure | None:
        try:
            await handler(event)
        except Exception as e:
            logger.error(
                "Error in event handler %s for %s (record %s): %s",
                _handler_name(handler),
                event.name,
                event.record_id,
                e,
                exc_info=True,
            )
            return HandlerFailure(handler=_handler_name(handler), error=str(e))
        return None

    async def emit(
        self,
        event_name: str,
        record_id: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> DispatchReport:
        """
        Dispatch an event and wait for every handler to finish.

        Args:
            event_name: Event to emit
            record_id: Spec the event is about
            payload: Small event-specific data
            timeout: Seconds to wait before giving up on slow handlers

        Returns:
            DispatchReport with handler failures and timeout status. Never
            raises because of a handler.
        """
        event = SpecEvent(name=event_name, record_id=record_id, payload=dict(payload or {}))
        handlers = self.handlers(event_name)
        report = DispatchReport(event=event, handler_count=len(handlers))
        if not handlers:
            return report

        tasks = [asyncio.ensure_future(self._run(handler, event)) for handler in handlers]
        done, pending = await asyncio.wait(tasks, timeout=timeout)

        for task in tasks:
            if task in done and (failure := task.result()) is not None:
                report.failures.append(failure)

        if pending:
            report.timed_out = True
            for task in pending:
                task.cancel()
            logger.warning(
                "Dispatch of %s for %s timed out after %ss with %d handler(s) still running",
                event_name,
                record_id,
                timeout,
                len(pending),
            )

        return report

    def emit_nowait(
        self, event_name: str, record_id: str, payload: dict[str, Any] | None = None
    ) -> asyncio.Task[DispatchReport]:
        """
        Fire-and-forget dispatch.

        Must be called from a running event loop. The task is kept alive
        until it finishes; await ``drain()`` to wait for outstanding ones.
        """
        task = asyncio.ensure_future(self.emit(event_name, record_id, payload))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> list[DispatchReport]:
        """Wait for every fire-and-forget dispatch still running."""
        if not self._background:
            return []
        return list(await asyncio.gather(*self._background))
