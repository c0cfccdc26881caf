"""
Migration module.

Exports:
- Migration: Base class for one reversible data change
- Migrator: Applies and reverts migrations per capsule
"""

from saveload.migration.migration import Migration
from saveload.migration.migrator import Migrator

__all__ = [
    "Migration",
    "Migrator",
]
