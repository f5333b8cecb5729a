"""Typed in-process event bus for mailbox events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from .models import EmailArrivedEvent, MessagesExpungedEvent

LOGGER = logging.getLogger(__name__)


class EventKind(StrEnum):
    """Event kinds carried by the bus."""

    EMAIL_NEW = "email:new"
    EMAIL_EXPUNGE = "email:expunge"


_EVENT_TYPES: dict[EventKind, type] = {
    EventKind.EMAIL_NEW: EmailArrivedEvent,
    EventKind.EMAIL_EXPUNGE: MessagesExpungedEvent,
}

Listener = Callable[[Any], None]


class EmailEventBus:
    """Synchronous publish/subscribe hub decoupling watchers from consumers.

    One instance is created at startup and handed to every component that
    publishes or consumes mailbox events. ``emit`` delivers to listeners in
    registration order; a listener that raises is logged and skipped.
    """

    def __init__(self) -> None:
        """Initialise empty listener tables."""
        self._listeners: dict[EventKind, list[Listener]] = {
            kind: [] for kind in EventKind
        }

    def on(self, kind: EventKind, listener: Listener) -> None:
        """Register ``listener`` for events of ``kind``."""
        self._listeners[EventKind(kind)].append(listener)

    def off(self, kind: EventKind, listener: Listener) -> None:
        """Remove a previously registered listener if present."""
        listeners = self._listeners[EventKind(kind)]
        if listener in listeners:
            listeners.remove(listener)

    def remove_all_listeners(self, kind: EventKind | None = None) -> None:
        """Drop listeners for ``kind``, or for every kind when omitted."""
        kinds = list(EventKind) if kind is None else [EventKind(kind)]
        for item in kinds:
            self._listeners[item] = []

    def listener_count(self, kind: EventKind) -> int:
        """Return how many listeners are registered for ``kind``."""
        return len(self._listeners[EventKind(kind)])

    def emit(self, kind: EventKind, event: EmailArrivedEvent | MessagesExpungedEvent) -> int:
        """Deliver ``event`` to every listener; return the number delivered."""
        kind = EventKind(kind)
        expected = _EVENT_TYPES[kind]
        if not isinstance(event, expected):
            raise TypeError(
                f"{kind} expects {expected.__name__}, got {type(event).__name__}"
            )
        delivered = 0
        # Snapshot so listeners may (un)subscribe while we iterate.
        for listener in tuple(self._listeners[kind]):
            try:
                listener(event)
                delivered += 1
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Listener for %s raised; continuing delivery", kind)
        return delivered


__all__ = ["EmailEventBus", "EventKind", "Listener"]
