"""
Stored data inspection.

Walks the stored data of capsules without building live objects and
reports what no longer matches the saveable classes: value types that
cannot be resolved, values or references of the wrong type, dangling
references and declared keys that are missing.

Usage:
    report = validate_storage(config, [PlayerCapsule(), WorldCapsule()])
    if report.worst is CorruptionState.ERROR:
        for issue in report.issues:
            print(issue)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import IntEnum

from saveload.core.dictionary import StorageDictionary
from saveload.core.factory import StorageObjectFactory
from saveload.core.keys import ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID
from saveload.core.saveable import StorageCapsule
from saveload.core.storage import Storage, StorageConfig
from saveload.tools.key_entries import StorageKeyEntry, get_key_entries

logger = logging.getLogger(__name__)


class CorruptionState(IntEnum):
    """Severity of a stored data problem (ordered)."""
    NONE = 0
    WARNING = 1
    ERROR = 2


@dataclass
class StorageIssue:
    """One problem found in stored data."""
    capsule_id: str
    reference_id: str
    key: str | None
    state: CorruptionState
    message: str

    def __str__(self) -> str:
        location = f"{self.capsule_id}/{self.reference_id}"
        if self.key is not None:
            location += f"/{self.key}"
        return f"[{self.state.name}] {location}: {self.message}"


@dataclass
class StorageReport:
    """All issues found by validate_storage."""
    issues: list[StorageIssue] = field(default_factory=list)
    checked_capsules: list[str] = field(default_factory=list)

    @property
    def worst(self) -> CorruptionState:
        return max((issue.state for issue in self.issues), default=CorruptionState.NONE)

    def for_capsule(self, capsule_id: str) -> list[StorageIssue]:
        return [issue for issue in self.issues if issue.capsule_id == capsule_id]

    def add(
        self,
        capsule_id: str,
        reference_id: str,
        key: str | None,
        state: CorruptionState,
        message: str,
    ) -> None:
        self.issues.append(StorageIssue(capsule_id, reference_id, key, state, message))


def validate_storage(
    config: StorageConfig,
    capsules: Iterable[StorageCapsule],
    factory: StorageObjectFactory | None = None,
) -> StorageReport:
    """
    Check the stored data of capsules against their declared keys.

    Nothing is written. Capsules without stored data are skipped.
    """
    capsules = list(capsules)
    storage = Storage(config, *capsules, factory=factory)
    report = StorageReport()

    for capsule in capsules:
        result = storage.try_read(capsule.capsule_id)
        if result is None or result.capsule_storage.is_empty:
            continue

        report.checked_capsules.append(capsule.capsule_id)
        _StoreValidator(storage, capsule.capsule_id, report).check(
            ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID, result.capsule_storage, type(capsule)
        )

    logger.info(
        f"Validated {len(report.checked_capsules)} capsules: "
        f"{len(report.issues)} issues, worst {report.worst.name}"
    )
    return report


def clear_storage(config: StorageConfig, capsules: Iterable[StorageCapsule]) -> None:
    """Delete the files of capsules."""
    Storage(config, *capsules).clear(remove_files=True)


class _StoreValidator:
    """Checks one capsule, following references (each store once)."""

    def __init__(self, storage: Storage, capsule_id: str, report: StorageReport):
        self.storage = storage
        self.capsule_id = capsule_id
        self.report = report
        self._visited: set[str] = set()

    def check(self, reference_id: str, store: StorageDictionary, saveable_type: type) -> None:
        if reference_id in self._visited:
            return
        self._visited.add(reference_id)

        entries = get_key_entries(saveable_type)
        for entry in entries.values():
            if entry.has_duplicate:
                self._add(reference_id, entry.storage_key, CorruptionState.ERROR,
                          f"Key declared more than once on {saveable_type.__name__}")

        self._check_values(reference_id, store, entries)
        self._check_references(reference_id, store, entries)

        for entry in entries.values():
            if entry.is_optional:
                continue
            if not store.has_value_key(entry.storage_key) and not store.has_ref_key(entry.storage_key):
                self._add(reference_id, entry.storage_key, CorruptionState.WARNING, "Declared key is missing")

    def _check_values(self, reference_id: str, store: StorageDictionary, entries: dict[str, StorageKeyEntry]) -> None:
        for key in store.list_value_keys():
            section = store.get_value_section(key)
            stored_type = section.get_value_type()
            if stored_type is None:
                self._add(reference_id, key, CorruptionState.ERROR,
                          f"Type '{section.value_type}' can not be resolved")
                continue

            entry = entries.get(key)
            if entry is not None and not entry.is_of_expected_type(stored_type):
                self._add(reference_id, key, CorruptionState.ERROR,
                          f"Stored as {section.value_type}, declared as {entry.expected_type!r}")

    def _check_references(self, reference_id: str, store: StorageDictionary, entries: dict[str, StorageKeyEntry]) -> None:
        for key in store.list_reference_keys():
            entry = entries.get(key)
            for ref_id in store.get_references(key):
                ref_value = self.storage.get_editable_ref_value(self.capsule_id, ref_id)
                if ref_value is None:
                    self._add(reference_id, key, CorruptionState.ERROR,
                              f"Reference {ref_id} has no stored data")
                    continue
                if ref_value.reference_type is None:
                    self._add(reference_id, key, CorruptionState.ERROR,
                              f"Reference {ref_id} type '{ref_value.reference_type_name}' can not be resolved")
                    continue
                if entry is not None and not entry.is_of_expected_reference_type(ref_value.reference_type):
                    self._add(reference_id, key, CorruptionState.ERROR,
                              f"Reference {ref_id} is a {ref_value.reference_type_name}, "
                              f"declared as {entry.expected_type!r}")

                self.check(ref_id, ref_value.storage, ref_value.reference_type)

    def _add(self, reference_id: str, key: str | None, state: CorruptionState, message: str) -> None:
        self.report.add(self.capsule_id, reference_id, key, state, message)
