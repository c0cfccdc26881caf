"""
Declared storage keys of saveable types.

Saveables declare their keys as StorageKey class attributes. These helpers
collect the declarations of a type (base classes included) so stored data
can be checked against them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, get_args, get_origin

from saveload.core.keys import RESERVED_KEYS, StorageKey
from saveload.core.values import SaveableArray, SaveableDict

_CONTAINER_WRAPPERS: dict[type, type] = {
    list: SaveableArray,
    tuple: SaveableArray,
    dict: SaveableDict,
}


@dataclass
class StorageKeyEntry:
    """One declared key of a saveable type."""
    storage_key: str
    expected_type: Any = None
    is_optional: bool = False
    has_duplicate: bool = False

    @property
    def container_type(self) -> type | None:
        """list, tuple or dict when the key holds a collection."""
        origin = get_origin(self.expected_type) or self.expected_type
        if origin in _CONTAINER_WRAPPERS:
            return origin
        return None

    def get_expected_array_type(self) -> Any:
        """Element type of a list key (None if not a typed list)."""
        if self.container_type in (list, tuple):
            args = get_args(self.expected_type)
            return args[0] if args else None
        return None

    def get_expected_dict_types(self) -> tuple[Any, Any] | None:
        if self.container_type is dict:
            args = get_args(self.expected_type)
            if len(args) == 2:
                return args[0], args[1]
        return None

    def is_of_expected_type(self, stored_type: type | None) -> bool:
        """
        Check a stored type against the declaration.

        Collections are checked by their wrapper type only. Untyped keys
        accept anything.
        """
        if self.expected_type is None:
            return True
        if stored_type is None:
            return False

        container = self.container_type
        if container is not None:
            return issubclass(stored_type, _CONTAINER_WRAPPERS[container])

        expected = get_origin(self.expected_type) or self.expected_type
        if not isinstance(expected, type):
            return True
        return issubclass(stored_type, expected)

    def is_of_expected_reference_type(self, reference_type: type | None) -> bool:
        """Check a referenced type (element type for reference lists)."""
        if self.expected_type is None:
            return True
        if reference_type is None:
            return False

        expected = self.get_expected_array_type() if self.container_type else self.expected_type
        if not isinstance(expected, type):
            return True
        return issubclass(reference_type, expected)


def get_key_entries(saveable_type: type | None) -> dict[str, StorageKeyEntry]:
    """
    Collect the StorageKey declarations of a type and its bases.

    A key string declared by two different attributes is flagged with
    has_duplicate. An attribute overridden in a subclass counts once.
    The reserved keys are always included as optional entries.
    """
    entries: dict[str, StorageKeyEntry] = {}
    if saveable_type is None:
        return entries

    seen_attributes: set[str] = set()
    for klass in saveable_type.__mro__:
        for attribute, value in vars(klass).items():
            if not isinstance(value, StorageKey) or attribute in seen_attributes:
                continue
            seen_attributes.add(attribute)
            _add_entry(entries, StorageKeyEntry(str(value), value.expected_type, value.optional))

    for key in RESERVED_KEYS:
        entries.setdefault(str(key), StorageKeyEntry(str(key), key.expected_type, True))

    return entries


def _add_entry(entries: dict[str, StorageKeyEntry], entry: StorageKeyEntry) -> None:
    if entry.storage_key in entries:
        entry.has_duplicate = True
    entries[entry.storage_key] = entry
