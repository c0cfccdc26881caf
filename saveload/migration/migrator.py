"""
Migration runner.

Each capsule keeps a cursor under MIGRATOR_INDEX_KEY: the number of its
migrations that have been applied. Running the same list again only
applies migrations past the cursor, so Migrator.do() is idempotent.

The cursor is written with set_value, so it is kept across later saves
like any other edited value.

Usage:
    migrations = [RenameGold(), SplitInventory()]
    Migrator.do(storage, migrations)     # before storage.load()
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from saveload.core.keys import MIGRATOR_INDEX_KEY
from saveload.core.storage import ReadStorageResult, Storage
from saveload.migration.migration import Migration

logger = logging.getLogger(__name__)


class Migrator:
    """Applies and reverts migrations per capsule."""

    @classmethod
    def do(cls, storage: Storage, migrations: Sequence[Migration]) -> None:
        """
        Apply every migration past each capsule's cursor, in list order.

        Capsules that have no file yet are skipped.
        """
        for capsule_id, capsule_migrations in cls.group_by_capsule(migrations).items():
            result = cls._read(storage, capsule_id)
            if result is None:
                continue

            cursor = cls.get_cursor(result)
            start = cursor
            for index in range(cursor, len(capsule_migrations)):
                migration = capsule_migrations[index]
                migration.do(result)
                # The cursor points at the next migration to apply
                cursor = index + 1
                logger.info(f"{type(migration).__name__}.do() applied to '{capsule_id}'")

            if cursor != start:
                cls._persist_cursor(storage, result, cursor)

    @classmethod
    def undo(cls, storage: Storage, migrations: Sequence[Migration]) -> None:
        """Revert applied migrations of each capsule, last applied first."""
        for capsule_id, capsule_migrations in cls.group_by_capsule(migrations).items():
            result = cls._read(storage, capsule_id)
            if result is None:
                continue

            start = cls.get_cursor(result)
            cursor = min(start, len(capsule_migrations))
            for index in range(cursor - 1, -1, -1):
                migration = capsule_migrations[index]
                migration.undo(result)
                # The cursor points at the last undone migration
                cursor = index
                logger.info(f"{type(migration).__name__}.undo() applied to '{capsule_id}'")

            if cursor != start:
                cls._persist_cursor(storage, result, cursor)

    @staticmethod
    def get_cursor(result: ReadStorageResult) -> int:
        """Number of migrations applied to a capsule."""
        return result.capsule_storage.load_value(MIGRATOR_INDEX_KEY, int, 0)

    @staticmethod
    def group_by_capsule(migrations: Sequence[Migration]) -> dict[str, list[Migration]]:
        """Group migrations by target capsule, keeping their order."""
        grouped: dict[str, list[Migration]] = {}
        for migration in migrations:
            grouped.setdefault(migration.capsule_id_target, []).append(migration)
        return grouped

    @staticmethod
    def _read(storage: Storage, capsule_id: str) -> ReadStorageResult | None:
        if not storage.exists(capsule_id):
            logger.debug(f"No save file for '{capsule_id}', skipping its migrations")
            return None
        return storage.try_read(capsule_id)

    @staticmethod
    def _persist_cursor(storage: Storage, result: ReadStorageResult, cursor: int) -> None:
        result.capsule_storage.set_value(MIGRATOR_INDEX_KEY, cursor)
        storage.flush(result.capsule_id)
