"""
Notification bus used inside a save or load pass.

A ReferenceResolver does not know how objects are saved or created; it
publishes ReferenceEvents and the Storage pass reacts to them. Each
resolver owns a private bus that is cleared on dispose, so no listener
outlives its pass.

Notifications raised by a handler are not dispatched recursively. They
wait in a FIFO queue until the running dispatch returns, which turns the
object graph walk into a breadth-first traversal with a flat call stack.

Usage:
    bus = EventBus()
    bus.subscribe(ReferenceEvent.REFERENCE_REQUESTED, on_requested)
    bus.publish(ReferenceEvent.REFERENCE_REQUESTED, reference_id="3")
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable


class ReferenceEvent(Enum):
    """Notifications fired by a ReferenceResolver."""
    # Save pass: an instance received its identity for the first time
    ID_ALLOCATED = auto()
    # Load pass: an identity was asked for before it was ready
    REFERENCE_REQUESTED = auto()


@dataclass
class Event:
    """
    One published notification.

    Attributes:
        type: Enum member the event was published under
        data: Keyword arguments given to publish()
    """
    type: Enum
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]


EventHandler = Callable[[Event], None]


class EventBus:
    """
    Enum-keyed publish/subscribe.

    Handlers are held strongly for the lifetime of the bus (the resolver
    subscribes closures that nothing else references). They run in
    descending priority, in subscription order for equal priorities. A
    handler exception is not caught: it ends the dispatch, discards the
    queued events and propagates to the outermost publish().
    """

    def __init__(self):
        # event type -> [(priority, handler)], highest priority first
        self._handlers: dict[Enum, list[tuple[int, EventHandler]]] = {}
        self._queue: deque[Event] = deque()
        self._is_publishing = False

    @property
    def is_publishing(self) -> bool:
        return self._is_publishing

    def subscribe(self, event_type: Enum, handler: EventHandler, priority: int = 0) -> None:
        """
        Register a handler.

        Args:
            event_type: Enum member to listen to
            handler: Called with the Event
            priority: Higher runs earlier
        """
        handlers = self._handlers.setdefault(event_type, [])
        position = next(
            (i for i, (p, _) in enumerate(handlers) if priority > p),
            len(handlers),
        )
        handlers.insert(position, (priority, handler))

    def unsubscribe(self, event_type: Enum, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type)
        if handlers:
            handlers[:] = [(p, h) for p, h in handlers if h != handler]

    def has_subscribers(self, event_type: Enum) -> bool:
        return bool(self._handlers.get(event_type))

    def publish(self, event_type: Enum, **data: Any) -> Event:
        """
        Publish an event, or queue it when called from inside a handler.

        Returns:
            The Event (its handlers may not have run yet if it was queued)
        """
        event = Event(type=event_type, data=data)
        if self._is_publishing:
            self._queue.append(event)
        else:
            self._drain(event)
        return event

    def clear(self, event_type: Enum | None = None) -> None:
        """Remove the handlers of one event type, or every handler and queued event."""
        if event_type is not None:
            self._handlers.pop(event_type, None)
            return
        self._handlers.clear()
        self._queue.clear()

    def _drain(self, first: Event) -> None:
        self._is_publishing = True
        try:
            event: Event | None = first
            while event is not None:
                # Snapshot: handlers may subscribe or unsubscribe while running
                for _, handler in list(self._handlers.get(event.type, ())):
                    handler(event)
                event = self._queue.popleft() if self._queue else None
        except BaseException:
            self._queue.clear()
            raise
        finally:
            self._is_publishing = False
