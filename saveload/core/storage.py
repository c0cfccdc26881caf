"""
Persistence orchestrator.

Storage owns a set of capsules and a cache of their attribute stores, one
store per reference id. It drives save and load passes over each capsule's
object graph, keeps the cache in sync with the files on disk and gives
editing code (migrations, inspection tools) access to stored data without
building live objects.

Usage:
    config = StorageConfig(location_path="saves", encoding=EncodingType.BASE64)
    storage = Storage(config, player_capsule, world_capsule)

    storage.load()              # all capsules
    ...
    storage.save("Player")      # one capsule, flushed to disk
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from saveload.core.codec import EncodingType, read_save_file, write_save_file
from saveload.core.dictionary import EditableRefValue, StorageDictionary, new_reference_id
from saveload.core.errors import (
    CrossCapsuleReferenceError,
    StorageBusyError,
    StorageFlushError,
    UnregisteredSaveableError,
)
from saveload.core.events import Event, ReferenceEvent
from saveload.core.factory import StorageObjectFactory, saveable_registry
from saveload.core.keys import (
    ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID,
    STORAGE_REFERENCE_TYPE_ID_KEY,
    STORAGE_REFERENCE_TYPE_STRING_KEY,
)
from saveload.core.references import ReferenceResolver
from saveload.core.save_data import SaveData, SaveDataForReference
from saveload.core.saveable import Saveable, StorageCapsule
from saveload.core.values import get_type_name

SAVE_FILE_EXTENSION = "capsule"


class StorageConfig:
    """Where and how capsule files are written."""

    def __init__(
        self,
        location_path: str = "saves",
        encoding: EncodingType = EncodingType.BASE64,
        root_dir: Path | str | None = None,
        extension: str = SAVE_FILE_EXTENSION,
    ):
        self.location_path = location_path
        self.encoding = encoding
        self.root_dir = Path(root_dir) if root_dir is not None else None
        self.extension = extension

    @property
    def storage_dir(self) -> Path:
        """Directory holding the capsule files (relative to the cwd without root_dir)."""
        root = self.root_dir if self.root_dir is not None else Path.cwd()
        return root / self.location_path

    def capsule_path(self, capsule_id: str) -> Path:
        return self.storage_dir / f"{capsule_id}.{self.extension}"


@dataclass
class ReadStorageResult:
    """Stored data of one capsule, for editing without live objects."""
    capsule_id: str
    capsule_storage: StorageDictionary
    saved_refs_storage: list[tuple[type[Saveable], StorageDictionary]] = field(default_factory=list)

    def get_refs_of_type(self, saveable_type: type[Saveable]) -> list[StorageDictionary]:
        """Stores of referenced objects of a type (subclasses included)."""
        return [
            store for ref_type, store in self.saved_refs_storage
            if issubclass(ref_type, saveable_type)
        ]


class Storage:
    """
    Saves and loads capsules.

    Save and load passes are not reentrant: starting one from inside a
    save, load or loading_completed callback raises StorageBusyError.
    """

    def __init__(
        self,
        config: StorageConfig,
        *capsules: StorageCapsule,
        factory: StorageObjectFactory | None = None,
    ):
        self.config = config
        self.factory = factory if factory is not None else saveable_registry
        self.logger = logging.getLogger(__name__)

        self._capsules: dict[str, StorageCapsule] = {}
        for capsule in capsules:
            if not capsule.capsule_id:
                raise ValueError(f"{capsule!r} has no capsule_id")
            if capsule.capsule_id in self._capsules:
                raise ValueError(f"Capsule id '{capsule.capsule_id}' is used by more than one capsule")
            self._capsules[capsule.capsule_id] = capsule

        # capsule id -> reference id -> store
        self._cache: dict[str, dict[str, StorageDictionary]] = {}
        self._active_resolver: ReferenceResolver | None = None
        self._busy = False

        for capsule_id in self._capsules:
            self._refresh(capsule_id)

    @property
    def capsules(self) -> list[StorageCapsule]:
        return list(self._capsules.values())

    @property
    def active_resolver(self) -> ReferenceResolver | None:
        """Resolver of the running save or load, None between passes."""
        return self._active_resolver

    @property
    def is_busy(self) -> bool:
        return self._busy

    def get_capsule(self, capsule_id: str) -> StorageCapsule | None:
        return self._capsules.get(capsule_id)

    def exists(self, capsule_id: str) -> bool:
        """Whether a file was written for the capsule."""
        return self.config.capsule_path(capsule_id).is_file()

    # Save

    def save(self, *capsule_ids: str, flush: bool = True) -> None:
        """
        Save capsules (all of them when no ids are given).

        Args:
            *capsule_ids: Capsules to save
            flush: Write the saved capsules to disk afterwards

        Raises:
            CrossCapsuleReferenceError: If two capsules save the same object;
                                        nothing is saved in that case
            UnregisteredSaveableError: If a referenced type has no factory id
        """
        selected = self._select(capsule_ids)
        # id(instance) -> (instance, owning capsule id)
        owners: dict[int, tuple[Saveable, str]] = {}
        saved: dict[str, dict[str, StorageDictionary]] = {}

        with self._pass():
            for capsule in selected:
                saved[capsule.capsule_id] = self._save_capsule(capsule, owners)

        self._cache.update(saved)
        self.logger.info(f"Saved capsules: {', '.join(saved) or 'none'}")

        if flush and saved:
            self.flush(*saved)

    def _save_capsule(
        self,
        capsule: StorageCapsule,
        owners: dict[int, tuple[Saveable, str]],
    ) -> dict[str, StorageDictionary]:
        capsule_id = capsule.capsule_id
        previous_root = self._cache.get(capsule_id, {}).get(ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID)
        stores: dict[str, StorageDictionary] = {}
        saved_order: list[Saveable] = []

        def on_id_allocated(event: Event) -> None:
            reference_id = event["reference_id"]
            instance = event["instance"]
            if reference_id in stores:
                return

            owner = owners.get(id(instance))
            if owner is not None and owner[1] != capsule_id:
                raise CrossCapsuleReferenceError(instance, owner[1], capsule_id)
            owners[id(instance)] = (instance, capsule_id)

            is_root = reference_id == ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID
            store = StorageDictionary(capsule_id, self, reference_id)
            stores[reference_id] = store
            if not is_root:
                self._write_type_keys(store, type(instance))

            channel = instance.storage_channel
            # The cached root may carry edits made after the capsule was last loaded
            previous = previous_root if is_root and previous_root is not None else channel.last_storage
            channel.internal_save(store)

            if previous is not None and previous is not store:
                carried = store.carry_kept_values(previous)
                if carried:
                    self.logger.debug(
                        f"Kept {', '.join(carried)} for reference {reference_id} in '{capsule_id}'"
                    )
            saved_order.append(instance)

        with ReferenceResolver() as resolver:
            self._active_resolver = resolver
            try:
                resolver.subscribe(ReferenceEvent.ID_ALLOCATED, on_id_allocated)
                resolver.bind(capsule, ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID)
            finally:
                self._active_resolver = None

        for instance in reversed(saved_order):
            instance.storage_channel.internal_loaded()

        return stores

    def _write_type_keys(self, store: StorageDictionary, saveable_type: type[Saveable]) -> None:
        type_id = self.factory.id_for_type(saveable_type)
        if type_id is None:
            raise UnregisteredSaveableError(
                f"{get_type_name(saveable_type)} has no id in the storage object factory; "
                f"register it with @register_saveable"
            )
        store.write_type_keys(get_type_name(saveable_type), type_id)

    # Load

    def load(self, *capsule_ids: str) -> None:
        """
        Reload capsules from disk into their live objects (all when no ids are given).

        Referenced objects are created through the factory. References that
        cannot be materialized are delivered as None.
        """
        selected = self._select(capsule_ids)
        with self._pass():
            for capsule in selected:
                self._refresh(capsule.capsule_id)
                self._load_capsule(capsule)
                self.logger.info(f"Loaded capsule '{capsule.capsule_id}'")

    def _load_capsule(self, capsule: StorageCapsule) -> None:
        capsule_id = capsule.capsule_id
        stores = self._cache.setdefault(capsule_id, {})
        requested: set[str] = set()
        loaded: list[Saveable] = []

        with ReferenceResolver() as resolver:

            def on_reference_requested(event: Event) -> None:
                reference_id = event["reference_id"]
                if reference_id in requested:
                    return
                requested.add(reference_id)

                store = stores.get(reference_id)
                if store is None:
                    store = StorageDictionary(capsule_id, self, reference_id)

                if reference_id == ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID:
                    capsule.storage_channel.internal_load(store)
                    resolver.mark_ready(capsule, reference_id)
                    loaded.append(capsule)
                    return

                instance = self._create_instance(store)
                if instance is None:
                    self.logger.error(
                        f"Unable to load reference id {reference_id}'s type in capsule '{capsule_id}'"
                    )
                    return

                instance.storage_channel.internal_load(store)
                resolver.mark_ready(instance, reference_id)
                loaded.append(instance)

            self._active_resolver = resolver
            try:
                resolver.subscribe(ReferenceEvent.REFERENCE_REQUESTED, on_reference_requested)
                resolver.request_reference(ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID, _ignore_result)
                resolver.drain_unresolved()

                # The resolver stays active so loading_completed can still resolve references
                for instance in reversed(loaded):
                    instance.storage_channel.internal_loaded()
            finally:
                self._active_resolver = None

    def _resolve_type(self, store: StorageDictionary) -> type[Saveable] | None:
        """Type of a stored reference: by factory id, else by the legacy type name."""
        type_id = store.load_value(STORAGE_REFERENCE_TYPE_ID_KEY, int)
        if type_id is not None:
            saveable_type = self.factory.type_for_id(type_id)
            if saveable_type is not None:
                return saveable_type

        type_name = store.load_value(STORAGE_REFERENCE_TYPE_STRING_KEY, str)
        if type_name:
            return self.factory.type_for_name(type_name)
        return None

    def _create_instance(self, store: StorageDictionary) -> Saveable | None:
        type_id = store.load_value(STORAGE_REFERENCE_TYPE_ID_KEY, int)
        if type_id is not None and self.factory.type_for_id(type_id) is not None:
            return self.factory.create_instance(type_id)

        saveable_type = self._resolve_type(store)
        if saveable_type is None:
            return None
        return saveable_type()

    # Read / edit

    def read(self, *capsule_ids: str) -> list[ReadStorageResult]:
        """
        Reload capsules from disk and return their stores without building objects.

        Stores whose type no longer resolves are left out.
        """
        results = []
        for capsule in self._select(capsule_ids):
            capsule_id = capsule.capsule_id
            self._refresh(capsule_id)
            stores = self._cache[capsule_id]

            root = stores.get(ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID)
            if root is None:
                root = StorageDictionary(capsule_id, self, ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID)
                stores[ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID] = root

            refs = []
            for reference_id, store in stores.items():
                if reference_id == ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID:
                    continue
                saveable_type = self._resolve_type(store)
                if saveable_type is None:
                    self.logger.warning(
                        f"Skipping reference {reference_id} in '{capsule_id}': type not found"
                    )
                    continue
                refs.append((saveable_type, store))

            results.append(ReadStorageResult(capsule_id, root, refs))
        return results

    def try_read(self, capsule_id: str) -> ReadStorageResult | None:
        results = self.read(capsule_id)
        return results[0] if results else None

    def get_editable_ref_value(self, capsule_id: str, reference_id: str | None) -> EditableRefValue | None:
        """The cached store behind a reference id, or None."""
        if not reference_id:
            return None

        store = self._cache.get(capsule_id, {}).get(reference_id)
        if store is None:
            return None

        saveable_type = self._resolve_type(store)
        if saveable_type is not None:
            return EditableRefValue(reference_id, get_type_name(saveable_type), store, saveable_type)

        type_name = store.load_value(STORAGE_REFERENCE_TYPE_STRING_KEY, str)
        if type_name:
            return EditableRefValue(reference_id, type_name, store)
        return None

    def register_new_ref_in_capsule(self, capsule_id: str, saveable_type: type[Saveable]) -> EditableRefValue | None:
        """
        Add an empty store for a new object to a capsule's cache.

        The new reference id is random so it cannot clash with ids of the
        last save. Returns None for unknown capsules.
        """
        stores = self._cache.get(capsule_id)
        if stores is None:
            return None

        reference_id = new_reference_id()
        store = StorageDictionary(capsule_id, self, reference_id)
        self._write_type_keys(store, saveable_type)
        stores[reference_id] = store
        return EditableRefValue(reference_id, get_type_name(saveable_type), store, saveable_type)

    # Files

    def flush(self, *capsule_ids: str) -> None:
        """
        Write cached capsules to disk (all when no ids are given).

        Raises:
            StorageFlushError: If a file could not be written
        """
        for capsule in self._select(capsule_ids):
            capsule_id = capsule.capsule_id
            stores = self._cache.get(capsule_id, {})
            save_data = SaveData(
                capsule_id=capsule_id,
                references_save_data=[
                    SaveDataForReference(
                        reference_id=reference_id,
                        value_data_items=store.get_value_data_items(),
                        reference_data_items=store.get_reference_data_items(),
                    )
                    for reference_id, store in stores.items()
                ],
            )

            path = self.config.capsule_path(capsule_id)
            try:
                write_save_file(path, save_data, self.config.encoding)
            except OSError as e:
                raise StorageFlushError(capsule_id, e) from e
            self.logger.info(f"Flushed capsule '{capsule_id}' to {path}")

    def clear(self, *capsule_ids: str, remove_files: bool = False) -> None:
        """
        Drop the cached data of capsules (all when no ids are given).

        Args:
            *capsule_ids: Capsules to clear
            remove_files: Delete the files instead of writing empty ones
        """
        if self._busy:
            raise StorageBusyError("Cannot clear storage while a save or load is running")

        selected = self._select(capsule_ids)
        for capsule in selected:
            self._cache[capsule.capsule_id] = {}

        if not remove_files:
            if selected:
                self.flush(*(capsule.capsule_id for capsule in selected))
            return

        for capsule in selected:
            path = self.config.capsule_path(capsule.capsule_id)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageFlushError(capsule.capsule_id, e) from e
        self._prune_storage_dir()

    def _prune_storage_dir(self) -> None:
        storage_dir = self.config.storage_dir
        if not storage_dir.is_dir() or any(storage_dir.iterdir()):
            return
        try:
            storage_dir.rmdir()
        except OSError as e:
            self.logger.warning(f"Did not delete folder {storage_dir}: {e}")

    # Internals

    def _select(self, capsule_ids: tuple[str, ...]) -> list[StorageCapsule]:
        if not capsule_ids:
            return list(self._capsules.values())

        for capsule_id in capsule_ids:
            if capsule_id not in self._capsules:
                self.logger.warning(f"Unknown capsule id '{capsule_id}'")
        return [
            capsule for capsule_id, capsule in self._capsules.items()
            if capsule_id in capsule_ids
        ]

    def _refresh(self, capsule_id: str) -> None:
        """Replace the cached stores of a capsule with the file contents."""
        save_data = read_save_file(self.config.capsule_path(capsule_id), capsule_id, self.config.encoding)
        self._cache[capsule_id] = {
            reference_data.reference_id: StorageDictionary(
                capsule_id,
                self,
                reference_data.reference_id,
                loaded_values=reference_data.values_by_key(),
                loaded_refs=reference_data.references_by_key(),
            )
            for reference_data in save_data.references_save_data
        }

    @contextmanager
    def _pass(self) -> Iterator[None]:
        if self._busy:
            raise StorageBusyError("A save or load is already running")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False
            self._active_resolver = None


def _ignore_result(found: bool, instance: Saveable | None) -> None:
    pass
