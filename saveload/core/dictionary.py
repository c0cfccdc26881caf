"""
Attribute stores.

A StorageDictionary is the record of one saved object: value keys mapped
to ValueSections and reference keys mapped to reference ids. It is handed
to Saveable.save() as the saver and to Saveable.load() as the loader, and
offers a third set of editor methods used by migrations and inspection
tools.

Value and reference access are separate on purpose: save_value() refuses
saveables and save_ref() refuses anything else.

Write amnesty:
    set_value() (editor) adds the key to a keep list that is stored under
    VALUE_KEYS_TO_KEEP_KEY. When the owning object is saved again, kept keys
    its save() did not rewrite are copied into the new store. Keys written by
    save() itself are owned by the object and are dropped when it stops
    writing them.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Hashable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, TypeVar

from pydantic import BaseModel

from saveload.core.errors import (
    DisallowedValueError,
    DuplicateKeyError,
    ResolverDisposedError,
    UnreadableValueError,
)
from saveload.core.keys import (
    RESERVED_KEYS,
    STORAGE_REFERENCE_TYPE_ID_KEY,
    STORAGE_REFERENCE_TYPE_STRING_KEY,
    VALUE_KEYS_TO_KEEP_KEY,
)
from saveload.core.references import ReferenceResolver
from saveload.core.save_data import ReferenceDataItem, SaveDataItem
from saveload.core.saveable import Saveable
from saveload.core.values import (
    SaveableArray,
    ValueSection,
    decode_value,
    encode_value,
    ensure_not_saveable,
)

logger = logging.getLogger(__name__)

S = TypeVar('S', bound=Saveable)

REFERENCE_ID_SEPARATOR = ","


class StorageAccess(Protocol):
    """What a store needs from the Storage that owns it."""

    @property
    def active_resolver(self) -> ReferenceResolver | None:
        ...

    def get_editable_ref_value(self, capsule_id: str, reference_id: str | None) -> EditableRefValue | None:
        ...

    def register_new_ref_in_capsule(self, capsule_id: str, saveable_type: type[Saveable]) -> EditableRefValue | None:
        ...


@dataclass
class EditableRefValue:
    """A referenced store as seen by editing code (no live object)."""
    reference_id: str
    reference_type_name: str
    storage: StorageDictionary
    reference_type: type[Saveable] | None = field(default=None)


class ValueStorageDictionary:
    """The value half of an attribute store."""

    def __init__(
        self,
        parent_capsule_id: str,
        loaded_values: Mapping[str, ValueSection] | None = None,
    ):
        self.parent_capsule_id = parent_capsule_id
        self._values: dict[str, ValueSection] = dict(loaded_values or {})
        self._keys_to_keep: list[str] = []

        keep_section = self._values.get(VALUE_KEYS_TO_KEEP_KEY)
        if keep_section is not None:
            self._read_keys_to_keep(keep_section)

    # Saver

    def save_value(self, key: str, value: Any) -> None:
        """Save a primitive, enum or struct value."""
        ensure_not_saveable(
            "It is forbidden to use save_value for a Saveable! Use save_ref instead!",
            type(value),
        )
        if isinstance(value, (list, tuple, dict)):
            raise DisallowedValueError(
                f"Can't save {type(value).__name__} under key '{key}' with save_value; "
                f"use save_values or save_dict"
            )
        self._save(key, encode_value(value))

    def save_values(self, key: str, values: Iterable[Any], element_type: type | None = None) -> None:
        """Save a list of values, each element tagged with its own type."""
        ensure_not_saveable(
            "It is forbidden to use save_values for Saveables! Use save_refs instead!",
            element_type,
        )
        self._save(key, encode_value(SaveableArray.from_values(values, element_type)))

    def save_struct(self, key: str, value: BaseModel) -> None:
        if not isinstance(value, BaseModel):
            raise DisallowedValueError(f"Can't save {value!r} under key '{key}': not a struct")
        self.save_value(key, value)

    def save_structs(self, key: str, values: Iterable[BaseModel]) -> None:
        values = list(values)
        for value in values:
            if not isinstance(value, BaseModel):
                raise DisallowedValueError(f"Can't save {value!r} under key '{key}': not a struct")
        self.save_values(key, values)

    def save_dict(self, key: str, value: Mapping[Any, Any]) -> None:
        """Save a dict; keys and values may be any value type."""
        self._save(key, encode_value(dict(value)))

    def _save(self, key: str, section: ValueSection) -> None:
        key = _check_user_key(key)
        self._put(key, section)

    def _put(self, key: str, section: ValueSection) -> None:
        key = str(key)
        if key in self._values:
            raise DuplicateKeyError(f"Key '{key}' was already saved in this store")
        self._values[key] = section
        if key in self._keys_to_keep:
            self._keys_to_keep.remove(key)

    # Loader

    def has_value_key(self, key: str) -> bool:
        return str(key) in self._values

    def load_value(self, key: str, expected_type: type | None = None, default: Any = None) -> Any:
        """
        Load a value.

        Returns default when the key is missing, the stored type no longer
        exists or does not match expected_type.
        """
        ensure_not_saveable(
            "It is forbidden to use load_value for a Saveable! Use load_ref instead!",
            expected_type,
        )
        section = self._values.get(str(key))
        if section is None:
            return default

        try:
            return decode_value(section, expected_type)
        except UnreadableValueError as e:
            logger.error(f"Could not load '{key}' in capsule '{self.parent_capsule_id}': {e}")
            return default

    def load_values(self, key: str, element_type: type | None = None, default: Any = None) -> Any:
        """Load a list; elements of another type than element_type are skipped."""
        ensure_not_saveable(
            "It is forbidden to use load_values for Saveables! Use load_refs instead!",
            element_type,
        )
        values = self.load_value(key, list, None)
        if values is None:
            return default
        if element_type is None:
            return values

        matching = []
        for value in values:
            if isinstance(value, element_type):
                matching.append(value)
            else:
                logger.warning(
                    f"Skipping element {value!r} of '{key}': expected {element_type.__name__}"
                )
        return matching

    def load_struct(self, key: str, struct_type: type[BaseModel], default: Any = None) -> Any:
        return self.load_value(key, struct_type, default)

    def load_structs(self, key: str, struct_type: type[BaseModel], default: Any = None) -> Any:
        return self.load_values(key, struct_type, default)

    def load_dict(self, key: str, default: Any = None) -> Any:
        return self.load_value(key, dict, default)

    # Editor

    def list_value_keys(self) -> list[str]:
        return list(self._values)

    def get_value_section(self, key: str) -> ValueSection | None:
        return self._values.get(str(key))

    def set_value(self, key: str, value: Any) -> None:
        """Write or overwrite a value and keep it across saves."""
        self.set_value_section(key, encode_value(value))

    def set_value_section(self, key: str, section: ValueSection) -> None:
        key = str(key)
        self._values[key] = section

        if key == VALUE_KEYS_TO_KEEP_KEY:
            # A keep list written directly replaces the one in memory
            self._read_keys_to_keep(section)
            return

        if key not in self._keys_to_keep:
            self._keys_to_keep.append(key)
        self._persist_keys_to_keep()

    def remove_value(self, key: str) -> bool:
        key = str(key)
        removed = self._values.pop(key, None) is not None

        if key == VALUE_KEYS_TO_KEEP_KEY:
            self._keys_to_keep = []
            return removed

        if key in self._keys_to_keep:
            self._keys_to_keep.remove(key)
        self._persist_keys_to_keep()
        return removed

    def relocate_value(self, current_key: str, new_key: str) -> bool:
        """Move a value to another key (the section is moved as is)."""
        section = self._values.get(str(current_key))
        if section is None:
            return False

        self.remove_value(current_key)
        self.set_value_section(new_key, section)
        return True

    def should_keep_value_key(self, key: str) -> bool:
        return str(key) in self._keys_to_keep

    @property
    def keys_to_keep(self) -> list[str]:
        return list(self._keys_to_keep)

    def carry_kept_values(self, previous: ValueStorageDictionary) -> list[str]:
        """
        Copy the kept values of a previous store that this one does not have.

        The copied keys stay on the keep list. Returns the copied keys.
        """
        carried = []
        for key in previous.keys_to_keep:
            section = previous.get_value_section(key)
            if section is None or key in self._values:
                continue
            self._values[key] = section
            if key not in self._keys_to_keep:
                self._keys_to_keep.append(key)
            carried.append(key)

        if carried:
            self._persist_keys_to_keep()
        return carried

    def get_value_data_items(self) -> list[SaveDataItem]:
        return [
            SaveDataItem(key=key, value_section=section)
            for key, section in self._values.items()
        ]

    def _persist_keys_to_keep(self) -> None:
        self._values[VALUE_KEYS_TO_KEEP_KEY] = encode_value(list(self._keys_to_keep))

    def _read_keys_to_keep(self, section: ValueSection) -> None:
        try:
            self._keys_to_keep = [str(k) for k in decode_value(section, list)]
        except UnreadableValueError as e:
            logger.warning(f"Ignoring unreadable keep list in capsule '{self.parent_capsule_id}': {e}")


class StorageDictionary(ValueStorageDictionary):
    """
    The full attribute store of one reference id: values and references.

    References are stored as reference ids and are only resolved through
    the resolver of the running save or load pass.
    """

    def __init__(
        self,
        parent_capsule_id: str,
        storage_access: StorageAccess,
        reference_id: str | None = None,
        loaded_values: Mapping[str, ValueSection] | None = None,
        loaded_refs: Mapping[str, str] | None = None,
    ):
        super().__init__(parent_capsule_id, loaded_values)
        self.reference_id = reference_id
        self._storage_access = storage_access
        self._refs: dict[str, str] = dict(loaded_refs or {})

    def __repr__(self) -> str:
        return (
            f"StorageDictionary(capsule={self.parent_capsule_id!r}, "
            f"reference_id={self.reference_id!r}, values={len(self._values)}, refs={len(self._refs)})"
        )

    @property
    def is_empty(self) -> bool:
        return not self._values and not self._refs

    def _resolver(self) -> ReferenceResolver:
        resolver = self._storage_access.active_resolver
        if resolver is None:
            raise ResolverDisposedError(
                "References can only be saved or loaded during a save or load"
            )
        return resolver

    # Saver

    def save_ref(self, key: str, value: Saveable | None, allow_null: bool = False) -> None:
        """Save a reference to another saveable."""
        key = _check_user_key(key)

        if value is None:
            if not allow_null:
                logger.error(f"Cannot add {key} due to the value being None")
            return
        if not isinstance(value, Saveable):
            raise DisallowedValueError(
                f"Can't save {value!r} under '{key}' as a reference; use save_value instead"
            )
        if key in self._refs:
            raise DuplicateKeyError(f"Reference key '{key}' was already saved in this store")

        self._refs[key] = self._resolver().get_id_for_reference(value)

    def save_refs(self, key: str, values: Iterable[Saveable | None], allow_null: bool = False) -> None:
        """Save a list of references (None entries are dropped)."""
        key = _check_user_key(key)
        values = list(values)
        instances = [v for v in values if v is not None]

        if len(instances) != len(values) and not allow_null:
            logger.error(f"Dropped None entries from {key}")
        for value in instances:
            if not isinstance(value, Saveable):
                raise DisallowedValueError(
                    f"Can't save {value!r} under '{key}' as a reference; use save_values instead"
                )
        if key in self._refs:
            raise DuplicateKeyError(f"Reference key '{key}' was already saved in this store")

        resolver = self._resolver()
        reference_ids = []
        for value in instances:
            reference_ids.append(resolver.get_id_for_reference(value))
        self._refs[key] = REFERENCE_ID_SEPARATOR.join(reference_ids)

    def write_type_keys(self, type_name: str, type_id: int) -> None:
        """Record the type of the saveable this store belongs to."""
        self._put(STORAGE_REFERENCE_TYPE_STRING_KEY, encode_value(type_name))
        self._put(STORAGE_REFERENCE_TYPE_ID_KEY, encode_value(type_id))

    # Loader

    def has_ref_key(self, key: str) -> bool:
        return str(key) in self._refs

    def load_ref(
        self,
        key: str,
        callback: Callable[[Optional[S]], None],
        expected_type: type[S] | None = None,
    ) -> bool:
        """
        Request the saveable stored under key.

        The callback receives the instance, or None if there is none or it
        is not an expected_type. Returns False when the key holds no id.
        """
        reference_id = self.get_reference(key)
        if not reference_id:
            callback(None)
            return False

        def on_loaded(found: bool, instance: Saveable | None) -> None:
            callback(self._checked(key, instance if found else None, expected_type))

        self._resolver().request_reference(reference_id, on_loaded)
        return True

    def load_refs(
        self,
        key: str,
        callback: Callable[[list[Optional[S]]], None],
        expected_type: type[S] | None = None,
    ) -> bool:
        """
        Request all saveables stored under key.

        The callback runs once with the instances in stored order; missing
        ones are None. Returns False when the key does not exist.
        """
        if not self.has_ref_key(key):
            callback([])
            return False

        def on_loaded(instances: list[Saveable | None]) -> None:
            callback([self._checked(key, instance, expected_type) for instance in instances])

        group_key: Hashable = (self.parent_capsule_id, self.reference_id, str(key))
        self._resolver().request_references(group_key, self.get_references(key), on_loaded)
        return True

    def _checked(self, key: str, instance: Saveable | None, expected_type: type | None) -> Any:
        if instance is not None and expected_type is not None and not isinstance(instance, expected_type):
            logger.warning(
                f"Reference '{key}' is a {type(instance).__name__}, expected {expected_type.__name__}"
            )
            return None
        return instance

    # Editor

    def list_reference_keys(self) -> list[str]:
        return list(self._refs)

    def get_reference(self, key: str) -> str | None:
        """The raw stored id (comma separated for reference lists)."""
        return self._refs.get(str(key))

    def get_references(self, key: str) -> list[str]:
        raw = self._refs.get(str(key))
        if not raw:
            return []
        return [reference_id for reference_id in raw.split(REFERENCE_ID_SEPARATOR) if reference_id]

    def set_reference(self, key: str, reference_id: str) -> None:
        self._refs[str(key)] = reference_id

    def set_references(self, key: str, reference_ids: Iterable[str]) -> None:
        self._refs[str(key)] = REFERENCE_ID_SEPARATOR.join(reference_ids)

    def remove_reference(self, key: str) -> bool:
        return self._refs.pop(str(key), None) is not None

    def relocate_reference(self, current_key: str, new_key: str) -> bool:
        """Move a reference to another key."""
        raw = self._refs.pop(str(current_key), None)
        if raw is None:
            return False
        self._refs[str(new_key)] = raw
        return True

    def get_value_ref(self, key: str) -> EditableRefValue | None:
        return self._storage_access.get_editable_ref_value(self.parent_capsule_id, self.get_reference(key))

    def get_value_refs(self, key: str) -> list[EditableRefValue | None]:
        return [
            self._storage_access.get_editable_ref_value(self.parent_capsule_id, reference_id)
            for reference_id in self.get_references(key)
        ]

    def set_value_ref(self, key: str, ref_value: EditableRefValue) -> None:
        self.set_reference(key, ref_value.reference_id)

    def set_value_refs(self, key: str, ref_values: Iterable[EditableRefValue]) -> None:
        self.set_references(key, [ref_value.reference_id for ref_value in ref_values])

    def register_new_ref(self, saveable_type: type[Saveable]) -> EditableRefValue | None:
        """Create an empty store for a new object of saveable_type in this capsule."""
        return self._storage_access.register_new_ref_in_capsule(self.parent_capsule_id, saveable_type)

    def get_reference_data_items(self) -> list[ReferenceDataItem]:
        return [ReferenceDataItem(key=key, value=value) for key, value in self._refs.items()]


def new_reference_id() -> str:
    """A random id for references created outside of a save pass."""
    return uuid.uuid4().hex


def _check_user_key(key: str) -> str:
    if key in RESERVED_KEYS:
        raise ValueError(f"'{key}' is a reserved storage key")
    return str(key)
