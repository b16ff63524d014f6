"""In-process event log for transition history.

The log keeps a bounded buffer of recent events and calls registered hooks
synchronously for each one, so a hosting application can persist history or
fan out notifications without the core knowing how.
"""

from collections import deque
from collections.abc import Callable
from typing import Any
from uuid import UUID

import structlog

from edubill.events.types import EventType, HistoryEvent

logger = structlog.get_logger(__name__)


class EventLog:
    """Bounded buffer of history events with synchronous hooks.

    Usage:
        events = EventLog()
        events.add_event_hook(persist)
        events.record(some_event)
    """

    def __init__(self, buffer_size: int = 1000):
        self._buffer_size = buffer_size
        self._events: deque[HistoryEvent] = deque(maxlen=buffer_size)
        self._event_hooks: list[Callable[[HistoryEvent], None]] = []
        self._logger = logger.bind(component="event_log")

    @property
    def recent_events(self) -> list[HistoryEvent]:
        """Get recently recorded events, oldest first."""
        return list(self._events)

    def add_event_hook(self, hook: Callable[[HistoryEvent], None]) -> None:
        """Add a hook called for every recorded event."""
        self._event_hooks.append(hook)

    def remove_event_hook(self, hook: Callable[[HistoryEvent], None]) -> None:
        """Remove an event hook."""
        if hook in self._event_hooks:
            self._event_hooks.remove(hook)

    def record(self, event: HistoryEvent) -> None:
        """Buffer an event and hand it to every hook."""
        self._events.append(event)
        for hook in self._event_hooks:
            hook(event)
        self._logger.debug(
            "event_recorded",
            event_type=event.event_type.value,
            account_id=str(event.account_id) if event.account_id else None,
        )

    def for_entity(self, entity_id: UUID) -> list[HistoryEvent]:
        """Timeline of one transaction or offer letter."""
        return [
            event
            for event in self._events
            if getattr(event, "transaction_id", None) == entity_id
            or getattr(event, "offer_letter_id", None) == entity_id
        ]

    def of_type(self, event_type: EventType) -> list[HistoryEvent]:
        return [event for event in self._events if event.event_type is event_type]

    def summary(self) -> dict[str, Any]:
        """Count of buffered events per type."""
        counts: dict[str, int] = {}
        for event in self._events:
            counts[event.event_type.value] = counts.get(event.event_type.value, 0) + 1
        return {"total": len(self._events), "by_type": counts}

    def clear(self) -> None:
        self._events.clear()
