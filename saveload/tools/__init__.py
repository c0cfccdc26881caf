"""
Inspection tools.

Exports:
- StorageKeyEntry, get_key_entries: Declared storage keys of saveable types
- CorruptionState, StorageIssue, StorageReport: Validation results
- validate_storage, clear_storage: Check or delete stored capsule data
"""

from saveload.tools.key_entries import StorageKeyEntry, get_key_entries
from saveload.tools.inspector import (
    CorruptionState,
    StorageIssue,
    StorageReport,
    validate_storage,
    clear_storage,
)

__all__ = [
    # Keys
    "StorageKeyEntry",
    "get_key_entries",
    # Validation
    "CorruptionState",
    "StorageIssue",
    "StorageReport",
    "validate_storage",
    "clear_storage",
]
