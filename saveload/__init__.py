"""
Saveload

Object graph persistence for games: capsules of saveable objects, stored
as self-describing values and references, with migrations for old data.

Quick Start:
    from saveload import Storage, StorageConfig, StorageCapsule, StorageKey

    class PlayerCapsule(StorageCapsule):
        capsule_id = "Player"
        LEVEL_KEY = StorageKey("level", int)

        def __init__(self):
            self.level = 1

        def save(self, saver):
            saver.save_value(self.LEVEL_KEY, self.level)

        def load(self, loader):
            self.level = loader.load_value(self.LEVEL_KEY, int, 1)

    player = PlayerCapsule()
    storage = Storage(StorageConfig(location_path="saves"), player)
    storage.load()
    player.level += 1
    storage.save()
"""

__version__ = "0.1.0"

# Re-export core components for convenience
from saveload.core import (
    Saveable,
    StorageCapsule,
    SaveableStruct,
    StorageKey,
    StorageDictionary,
    Storage,
    StorageConfig,
    ReadStorageResult,
    EncodingType,
    SaveableRegistry,
    register_saveable,
    register_value_type,
    StorageError,
)
from saveload.migration import Migration, Migrator

__all__ = [
    # Saveables
    "Saveable",
    "StorageCapsule",
    "SaveableStruct",
    "StorageKey",
    "register_saveable",
    "register_value_type",
    "SaveableRegistry",
    # Storage
    "StorageDictionary",
    "Storage",
    "StorageConfig",
    "ReadStorageResult",
    "EncodingType",
    "StorageError",
    # Migration
    "Migration",
    "Migrator",
]
