"""
Reference identities for one save or load pass.

Saving: every saveable reached through a reference gets a string identity
from a counter. The first time an instance is seen, ID_ALLOCATED is
published so the orchestrator can schedule saving it.

Loading: objects ask for other objects by identity before those exist.
Requests for identities that are not ready yet are queued and
REFERENCE_REQUESTED is published so the orchestrator can materialize the
identity. Queued callbacks run in arrival order once mark_ready() is
called for the identity.

Notifications raised while another one is being handled are queued, so a
pass walks the graph breadth-first without recursion. Cycles need no
special handling: an identity in flight is only queued, never revisited.

A resolver serves exactly one pass:

    with ReferenceResolver() as resolver:
        resolver.subscribe(ReferenceEvent.REFERENCE_REQUESTED, on_requested)
        resolver.request_reference(root_id, on_root)
        resolver.drain_unresolved()
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable
from functools import partial
from typing import Callable, Optional

from saveload.core.errors import ResolverDisposedError
from saveload.core.events import EventBus, EventHandler, ReferenceEvent
from saveload.core.saveable import Saveable

# (found, instance)
StorageLoadHandler = Callable[[bool, Optional[Saveable]], None]
StorageLoadMultipleHandler = Callable[[list[Optional[Saveable]]], None]


class _MultiReferenceRequest:
    """Collects the results of one batched request."""

    def __init__(self, count: int, callback: StorageLoadMultipleHandler):
        self._results: list[Saveable | None] = [None] * count
        self._remaining = count
        self._callback = callback

    def resolve(self, index: int, instance: Saveable | None) -> bool:
        """Store one result. Returns True when every member has resolved."""
        self._results[index] = instance
        self._remaining -= 1
        return self._remaining == 0

    def complete(self) -> None:
        self._callback(list(self._results))


class ReferenceResolver:
    """
    Assigns and resolves reference identities during a single pass.

    Must be disposed at the end of the pass (use it as a context manager).
    Any call after disposal raises ResolverDisposedError.
    """

    def __init__(self):
        self._events = EventBus()
        self._counter = 0
        # id(instance) -> (reference_id, instance); the instance keeps id() stable
        self._allocated: dict[int, tuple[str, Saveable]] = {}
        self._allocated_ids: set[str] = set()
        self._ready: dict[str, Saveable] = {}
        self._pending: dict[str, list[StorageLoadHandler]] = {}
        self._multi_requests: dict[Hashable, _MultiReferenceRequest] = {}
        self._disposed = False

    def __enter__(self) -> ReferenceResolver:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    @property
    def pending_reference_ids(self) -> list[str]:
        """Identities that still have callbacks waiting."""
        return list(self._pending)

    # Listeners

    def subscribe(self, event_type: ReferenceEvent, handler: EventHandler, priority: int = 0) -> None:
        self._check_alive()
        self._events.subscribe(event_type, handler, priority=priority)

    def unsubscribe(self, event_type: ReferenceEvent, handler: EventHandler) -> None:
        if not self._disposed:
            self._events.unsubscribe(event_type, handler)

    # Save pass

    def bind(self, instance: Saveable, reference_id: str) -> str:
        """
        Give an instance a chosen identity (used for capsule roots).

        Publishes ID_ALLOCATED like a counter allocation would.

        Raises:
            ValueError: If the instance or the identity is already taken
        """
        self._check_alive()
        entry = self._allocated.get(id(instance))
        if entry is not None:
            if entry[0] != reference_id:
                raise ValueError(f"{instance!r} already has reference id {entry[0]}")
            return reference_id
        if reference_id in self._allocated_ids:
            raise ValueError(f"Reference id {reference_id} is already in use")

        self._allocate(instance, reference_id)
        return reference_id

    def get_id_for_reference(self, instance: Saveable) -> str:
        """
        Get the identity of an instance, allocating one on first sight.

        Only the first call for an instance publishes ID_ALLOCATED.
        """
        self._check_alive()
        entry = self._allocated.get(id(instance))
        if entry is not None:
            return entry[0]

        reference_id = str(self._counter)
        while reference_id in self._allocated_ids:
            self._counter += 1
            reference_id = str(self._counter)
        self._counter += 1

        self._allocate(instance, reference_id)
        return reference_id

    def _allocate(self, instance: Saveable, reference_id: str) -> None:
        self._allocated[id(instance)] = (reference_id, instance)
        self._allocated_ids.add(reference_id)
        self._events.publish(
            ReferenceEvent.ID_ALLOCATED,
            reference_id=reference_id,
            instance=instance,
        )

    # Load pass

    def is_ready(self, reference_id: str) -> bool:
        return reference_id in self._ready

    def request_reference(self, reference_id: str, callback: StorageLoadHandler) -> None:
        """
        Ask for the instance behind an identity.

        The callback gets (True, instance) right away if the identity is
        ready, otherwise once it becomes ready, or (False, None) when the
        pass drains unresolved identities.
        """
        self._check_alive()

        if reference_id in self._ready:
            callback(True, self._ready[reference_id])
            return

        self._pending.setdefault(reference_id, []).append(callback)
        self._events.publish(ReferenceEvent.REFERENCE_REQUESTED, reference_id=reference_id)

    def request_references(
        self,
        group_key: Hashable,
        reference_ids: Iterable[str],
        callback: StorageLoadMultipleHandler,
    ) -> None:
        """
        Ask for several identities at once.

        The callback runs once, with the instances in the order of
        reference_ids (None for identities that were not found).

        Raises:
            ValueError: If group_key already has a request in flight
        """
        self._check_alive()
        reference_ids = list(reference_ids)

        if not reference_ids:
            callback([])
            return

        if group_key in self._multi_requests:
            raise ValueError(f"A multi reference request for {group_key!r} is already pending")

        self._multi_requests[group_key] = _MultiReferenceRequest(len(reference_ids), callback)

        for index, reference_id in enumerate(reference_ids):
            self.request_reference(reference_id, partial(self._on_multi_resolved, group_key, index))

    def _on_multi_resolved(
        self,
        group_key: Hashable,
        index: int,
        found: bool,
        instance: Saveable | None,
    ) -> None:
        request = self._multi_requests.get(group_key)
        if request is None:
            return
        if request.resolve(index, instance if found else None):
            del self._multi_requests[group_key]
            request.complete()

    def mark_ready(self, instance: Saveable, reference_id: str) -> None:
        """Bind an identity to its instance and run the callbacks waiting for it."""
        self._check_alive()
        ready = self._ready.setdefault(reference_id, instance)

        for callback in self._pending.pop(reference_id, []):
            callback(True, ready)

    def drain_unresolved(self) -> None:
        """Resolve every identity that is still waited on as not found."""
        self._check_alive()
        while self._pending:
            reference_id = next(iter(self._pending))
            for callback in self._pending.pop(reference_id):
                callback(False, None)

    # Lifecycle

    def dispose(self) -> None:
        """Drop all state and listeners. Safe to call more than once."""
        if self._disposed:
            return
        self._events.clear()
        self._allocated.clear()
        self._allocated_ids.clear()
        self._ready.clear()
        self._pending.clear()
        self._multi_requests.clear()
        self._counter = 0
        self._disposed = True

    def _check_alive(self) -> None:
        if self._disposed:
            raise ResolverDisposedError(
                "Reference resolver was disposed; references can only be used during a save or load"
            )
