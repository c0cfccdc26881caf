"""
Storage key constants.

A StorageKey is a plain string that also records the type stored under it.
Saveables declare their keys as class attributes; the key is used like any
string by the attribute store, and inspection tools read the declarations
to check stored data.

Usage:
    class Player(StorageCapsule):
        LEVEL_KEY = StorageKey("level", int)
        INVENTORY_KEY = StorageKey("inventory", Inventory)
        NICKNAME_KEY = StorageKey("nickname", str, optional=True)
"""

from __future__ import annotations

from typing import Any


class StorageKey(str):
    """A key string with its expected type."""

    expected_type: Any
    optional: bool

    def __new__(cls, key: str, expected_type: Any = None, optional: bool = False) -> StorageKey:
        instance = super().__new__(cls, key)
        instance.expected_type = expected_type
        instance.optional = optional
        return instance

    def __repr__(self) -> str:
        return f"StorageKey({str(self)!r}, {self.expected_type!r}, optional={self.optional})"


# Reference id of every capsule's own store
ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID = "ID_CAPSULE_SAVE_DATA"

# Qualified type name of a referenced saveable (legacy lookup)
STORAGE_REFERENCE_TYPE_STRING_KEY = StorageKey(
    "RESERVED_REFERENCE_TYPE_FULL_NAME_STRING_RESERVED", str, optional=True
)

# Factory id of a referenced saveable (preferred lookup)
STORAGE_REFERENCE_TYPE_ID_KEY = StorageKey(
    "RESERVED_REFERENCE_TYPE_ID_RESERVED", int, optional=True
)

# Value keys carried into the next save even when not rewritten
VALUE_KEYS_TO_KEEP_KEY = StorageKey(
    "RESERVED_VALUE_KEYS_TO_KEEP_KEY_RESERVED", list[str], optional=True
)

# Number of migrations applied to a capsule
MIGRATOR_INDEX_KEY = StorageKey(
    "RESERVED_MIGRATOR_INDEX_KEY_RESERVED", int, optional=True
)

RESERVED_KEYS: tuple[StorageKey, ...] = (
    STORAGE_REFERENCE_TYPE_STRING_KEY,
    STORAGE_REFERENCE_TYPE_ID_KEY,
    VALUE_KEYS_TO_KEEP_KEY,
    MIGRATOR_INDEX_KEY,
)
