"""
Core storage module.

Exports:
- Saveable, StorageCapsule, StorageChannel: Objects taking part in save/load
- SaveableStruct, register_value_type: Structured values and value types
- encode_value, decode_value, ValueSection: Self-describing value encoding
- StorageKey: Key constants with their expected type
- StorageDictionary, EditableRefValue: Attribute stores
- ReferenceResolver, EventBus, Event, ReferenceEvent: Reference identities
- SaveableRegistry, register_saveable, StorageObjectFactory: Type factory
- Storage, StorageConfig, ReadStorageResult, EncodingType: Orchestrator
"""

from saveload.core.errors import (
    StorageError,
    CrossCapsuleReferenceError,
    StorageFlushError,
    DisallowedValueError,
    UnreadableValueError,
    UnresolvedTypeError,
    ValueTypeMismatchError,
    DuplicateKeyError,
    UnregisteredSaveableError,
    ResolverDisposedError,
    StorageBusyError,
)
from saveload.core.events import EventBus, Event, ReferenceEvent
from saveload.core.saveable import Saveable, StorageCapsule, StorageChannel
from saveload.core.values import (
    SaveableStruct,
    SaveableArray,
    SaveableDict,
    ValueSection,
    register_value_type,
    get_value_type,
    get_type_name,
    encode_value,
    decode_value,
)
from saveload.core.keys import (
    StorageKey,
    ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID,
    STORAGE_REFERENCE_TYPE_STRING_KEY,
    STORAGE_REFERENCE_TYPE_ID_KEY,
    VALUE_KEYS_TO_KEEP_KEY,
    MIGRATOR_INDEX_KEY,
)
from saveload.core.factory import (
    StorageObjectFactory,
    SaveableRegistry,
    saveable_registry,
    register_saveable,
)
from saveload.core.references import ReferenceResolver
from saveload.core.dictionary import StorageDictionary, ValueStorageDictionary, EditableRefValue
from saveload.core.save_data import SaveData, SaveDataForReference, SaveFileWrapper
from saveload.core.codec import EncodingType
from saveload.core.storage import Storage, StorageConfig, ReadStorageResult, SAVE_FILE_EXTENSION

__all__ = [
    # Errors
    "StorageError",
    "CrossCapsuleReferenceError",
    "StorageFlushError",
    "DisallowedValueError",
    "UnreadableValueError",
    "UnresolvedTypeError",
    "ValueTypeMismatchError",
    "DuplicateKeyError",
    "UnregisteredSaveableError",
    "ResolverDisposedError",
    "StorageBusyError",
    # Events
    "EventBus",
    "Event",
    "ReferenceEvent",
    # Saveables
    "Saveable",
    "StorageCapsule",
    "StorageChannel",
    # Values
    "SaveableStruct",
    "SaveableArray",
    "SaveableDict",
    "ValueSection",
    "register_value_type",
    "get_value_type",
    "get_type_name",
    "encode_value",
    "decode_value",
    # Keys
    "StorageKey",
    "ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID",
    "STORAGE_REFERENCE_TYPE_STRING_KEY",
    "STORAGE_REFERENCE_TYPE_ID_KEY",
    "VALUE_KEYS_TO_KEEP_KEY",
    "MIGRATOR_INDEX_KEY",
    # Factory
    "StorageObjectFactory",
    "SaveableRegistry",
    "saveable_registry",
    "register_saveable",
    # References
    "ReferenceResolver",
    # Stores
    "StorageDictionary",
    "ValueStorageDictionary",
    "EditableRefValue",
    # Files
    "SaveData",
    "SaveDataForReference",
    "SaveFileWrapper",
    "EncodingType",
    # Storage
    "Storage",
    "StorageConfig",
    "ReadStorageResult",
    "SAVE_FILE_EXTENSION",
]
