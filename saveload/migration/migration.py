"""
Migration base class.

A migration rewrites the stored data of one capsule, typically after a key
was renamed or a value type changed. It works on the stores returned by
Storage.read(), never on live objects.

Usage:
    class RenameGold(Migration):
        capsule_id_target = "Player"

        def do(self, storage):
            storage.capsule_storage.relocate_value("gold", "coins")

        def undo(self, storage):
            storage.capsule_storage.relocate_value("coins", "gold")
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from saveload.core.storage import ReadStorageResult


class Migration(ABC):
    """One reversible step of a capsule's data history."""

    # Capsule whose data this migration edits
    capsule_id_target: str = ""

    @abstractmethod
    def do(self, storage: ReadStorageResult) -> None:
        """Apply the migration."""

    @abstractmethod
    def undo(self, storage: ReadStorageResult) -> None:
        """Revert what do() changed."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(capsule_id_target={self.capsule_id_target!r})"
