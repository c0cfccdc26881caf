"""
Saveable type factory.

Loading needs to turn a stored type identifier back into a live object.
The storage core only depends on the two-way lookup contract below; the
mapping itself is a hand-authored (or generated) registry of saveable
types, never a search through loaded modules.

Usage:
    @register_saveable(7)
    class Chest(Saveable):
        ...

    saveable_registry.create_instance(7)   # -> Chest()
"""

from __future__ import annotations

from typing import Callable, Protocol, TypeVar, runtime_checkable

from saveload.core.saveable import Saveable
from saveload.core.values import get_type_name

S = TypeVar('S', bound=Saveable)


@runtime_checkable
class StorageObjectFactory(Protocol):
    """Two-way mapping between saveable types and small integer ids."""

    def create_instance(self, type_id: int) -> Saveable:
        ...

    def type_for_id(self, type_id: int) -> type[Saveable] | None:
        ...

    def id_for_type(self, saveable_type: type[Saveable]) -> int | None:
        ...

    def type_for_name(self, type_name: str) -> type[Saveable] | None:
        ...


class SaveableRegistry:
    """
    Explicit registry implementing StorageObjectFactory.

    Ids are part of the save format: once a type has shipped with an id,
    the id must not be reused for another type.
    """

    def __init__(self):
        self._types_by_id: dict[int, type[Saveable]] = {}
        self._ids_by_type: dict[type[Saveable], int] = {}
        self._types_by_name: dict[str, type[Saveable]] = {}

    def register(self, saveable_type: type[Saveable], type_id: int) -> None:
        """
        Register a saveable type under an id.

        Raises:
            TypeError: If the type is not a Saveable
            ValueError: If the id or the type is already registered differently
        """
        if not isinstance(saveable_type, type) or not issubclass(saveable_type, Saveable):
            raise TypeError(f"{saveable_type!r} is not a Saveable type")

        existing = self._types_by_id.get(type_id)
        if existing is not None and existing is not saveable_type:
            raise ValueError(
                f"Type id {type_id} is already used by {existing.__name__}"
            )
        existing_id = self._ids_by_type.get(saveable_type)
        if existing_id is not None and existing_id != type_id:
            raise ValueError(
                f"{saveable_type.__name__} is already registered with id {existing_id}"
            )

        self._types_by_id[type_id] = saveable_type
        self._ids_by_type[saveable_type] = type_id
        self._types_by_name[get_type_name(saveable_type)] = saveable_type

    def unregister(self, saveable_type: type[Saveable]) -> None:
        type_id = self._ids_by_type.pop(saveable_type, None)
        if type_id is not None:
            self._types_by_id.pop(type_id, None)
        self._types_by_name.pop(get_type_name(saveable_type), None)

    def create_instance(self, type_id: int) -> Saveable:
        """
        Construct a saveable by id.

        Raises:
            KeyError: If no type is registered under the id
        """
        saveable_type = self._types_by_id.get(type_id)
        if saveable_type is None:
            raise KeyError(f"No saveable type registered with id {type_id}")
        return saveable_type()

    def type_for_id(self, type_id: int) -> type[Saveable] | None:
        return self._types_by_id.get(type_id)

    def id_for_type(self, saveable_type: type[Saveable]) -> int | None:
        return self._ids_by_type.get(saveable_type)

    def type_for_name(self, type_name: str) -> type[Saveable] | None:
        return self._types_by_name.get(type_name)

    def __contains__(self, saveable_type: object) -> bool:
        return saveable_type in self._ids_by_type

    def __len__(self) -> int:
        return len(self._types_by_id)


# Default registry used when a Storage is created without a factory
saveable_registry = SaveableRegistry()


def register_saveable(
    type_id: int,
    registry: SaveableRegistry | None = None,
) -> Callable[[type[S]], type[S]]:
    """
    Decorator to register a saveable type.

    Usage:
        @register_saveable(3)
        class Inventory(Saveable):
            ...
    """
    def decorator(cls: type[S]) -> type[S]:
        target = registry if registry is not None else saveable_registry
        target.register(cls, type_id)
        return cls
    return decorator
