"""
Saveable objects and capsules.

A Saveable is any object that takes part in a save/load pass. It writes
itself into an attribute store in save(), reads itself back in load() and
gets loading_completed() once the whole graph of its capsule has been
materialized.

Usage:
    @register_saveable(1)
    class Inventory(Saveable):
        SLOTS_KEY = StorageKey("slots", list[int])

        def __init__(self):
            self.slots: list[int] = []

        def save(self, saver):
            saver.save_values(self.SLOTS_KEY, self.slots)

        def load(self, loader):
            self.slots = loader.load_values(self.SLOTS_KEY, default=[])

    class PlayerCapsule(StorageCapsule):
        capsule_id = "Player"
        ...

Saveables that are created by a load are constructed with no arguments.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from saveload.core.dictionary import StorageDictionary


class StorageChannel:
    """
    The bundle of callbacks the orchestrator drives for one saveable.

    Also remembers the last attribute store the saveable was bound to, so
    keys written by other code paths can be carried into the next save.
    """

    def __init__(
        self,
        save: Callable[[StorageDictionary], None],
        load: Callable[[StorageDictionary], None] | None = None,
        loading_completed: Callable[[], None] | None = None,
    ):
        self._save = save
        self._load = load
        self._loading_completed = loading_completed
        self._last_storage: StorageDictionary | None = None

    @property
    def last_storage(self) -> StorageDictionary | None:
        """The store of the last save or load, if any."""
        return self._last_storage

    def internal_save(self, saver: StorageDictionary) -> None:
        self._last_storage = saver
        self._save(saver)

    def internal_load(self, loader: StorageDictionary) -> None:
        self._last_storage = loader
        if self._load is not None:
            self._load(loader)

    def internal_loaded(self) -> None:
        if self._loading_completed is not None:
            self._loading_completed()


class Saveable(ABC):
    """
    Base class for everything stored through references.

    Identity is the Python object identity: the same instance saved twice
    in one pass is stored once, and two equal instances are stored twice.
    """

    @property
    def storage_channel(self) -> StorageChannel:
        """The channel bound to this instance (created on first use)."""
        channel = getattr(self, "_storage_channel", None)
        if channel is None:
            channel = StorageChannel(self.save, self.load, self.loading_completed)
            self._storage_channel = channel
        return channel

    @abstractmethod
    def save(self, saver: StorageDictionary) -> None:
        """Write this object's values and references."""

    def load(self, loader: StorageDictionary) -> None:
        """Read this object's values and request its references."""

    def loading_completed(self) -> None:
        """Called once every object of the pass has been loaded or saved."""


class StorageCapsule(Saveable):
    """
    A root saveable stored in its own file.

    Subclasses provide a stable capsule_id (a class attribute is enough).
    """

    capsule_id: str = ""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(capsule_id={self.capsule_id!r})"
