"""
Self-describing value encoding.

Every stored value is a ValueSection: the encoded value plus the fully
qualified name of its type. The type is looked up again on decode through
an explicit registry, so a value whose type was renamed or removed is
unreadable rather than fatal.

Supported values:
- bool, int, float, str
- Enums and SaveableStruct models registered with @register_value_type
- lists/tuples and dicts of the above, nested to any depth

Lists and dicts are wrapped in SaveableArray / SaveableDict. Each element
carries its own ValueSection, so one unreadable element does not make the
rest of the collection unreadable.

Usage:
    @register_value_type
    class Stats(SaveableStruct):
        strength: int = 10
        agility: int = 10

    section = encode_value(Stats(strength=12))
    stats = decode_value(section, Stats)
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from saveload.core.errors import (
    DisallowedValueError,
    UnreadableValueError,
    UnresolvedTypeError,
    ValueTypeMismatchError,
)
from saveload.core.saveable import Saveable

logger = logging.getLogger(__name__)

T = TypeVar('T')


class StorageModel(BaseModel):
    """
    Base for everything written to a save file.

    Field names are snake_case in Python and camelCase on disk.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )


class SaveableStruct(BaseModel):
    """
    Base class for structured values.

    Structs are data-only containers stored by value (never by reference).
    Register subclasses with @register_value_type so they can be read back.
    """

    model_config = ConfigDict(
        validate_assignment=True,
        extra='forbid',
    )


# Registry of value types by qualified name
_value_type_registry: dict[str, type] = {}

_PRIMITIVE_TYPES: tuple[type, ...] = (bool, int, float, str)


def get_type_name(cls: type) -> str:
    """Get the qualified name a type is stored under."""
    return f"{cls.__module__}.{cls.__qualname__}"


def register_value_type(cls: type[T]) -> type[T]:
    """
    Decorator to register a struct or enum as a value type.

    Usage:
        @register_value_type
        class Facing(Enum):
            UP = auto()
            DOWN = auto()
    """
    if not isinstance(cls, type) or not issubclass(cls, (BaseModel, Enum)):
        raise TypeError(f"{cls!r} must be a SaveableStruct or an Enum to be a value type")
    if issubclass(cls, Saveable):
        raise DisallowedValueError(f"{cls.__name__} is a Saveable and must be saved as a reference")

    _value_type_registry[get_type_name(cls)] = cls
    return cls


def unregister_value_type(cls: type) -> None:
    """Remove a value type (values tagged with it become unreadable)."""
    _value_type_registry.pop(get_type_name(cls), None)


def get_value_type(type_name: str) -> type | None:
    """Get a value type by its stored name."""
    return _value_type_registry.get(type_name)


class ValueSection(StorageModel):
    """One encoded value and the name of its type."""

    model_config = ConfigDict(frozen=True)

    value_string: str = ""
    value_type: str = ""

    def get_value_type(self) -> type | None:
        """The live type of this section, or None if it no longer resolves."""
        if not self.value_type:
            return None
        return get_value_type(self.value_type)


class SaveableArray(StorageModel):
    """A list stored as one ValueSection per element."""

    items: list[ValueSection] = []

    @classmethod
    def from_values(cls, values: Any, element_type: type | None = None) -> SaveableArray:
        return cls(items=[encode_value(v, element_type) for v in values])

    def to_values(self, element_type: type | None = None) -> list[Any]:
        """Decode all readable elements, skipping the others."""
        values = []
        for index, section in enumerate(self.items):
            try:
                values.append(decode_value(section, element_type))
            except UnreadableValueError as e:
                logger.warning(f"Skipping array element {index}: {e}")
        return values


class DictItem(StorageModel):
    """One key/value pair of a SaveableDict."""

    key_section: ValueSection
    value_section: ValueSection


class SaveableDict(StorageModel):
    """A dict stored as a list of key/value section pairs."""

    items: list[DictItem] = []

    @classmethod
    def from_dict(cls, mapping: dict) -> SaveableDict:
        return cls(items=[
            DictItem(key_section=encode_value(k), value_section=encode_value(v))
            for k, v in mapping.items()
        ])

    def to_dict(self) -> dict[Any, Any]:
        """Decode all readable pairs, skipping the others."""
        result = {}
        for index, item in enumerate(self.items):
            try:
                key = _as_key(decode_value(item.key_section))
                result[key] = decode_value(item.value_section)
            except (UnreadableValueError, TypeError) as e:
                # TypeError: decoded key is not hashable
                logger.warning(f"Skipping dict item {index}: {e}")
        return result


def _as_key(value: Any) -> Any:
    """Tuple keys are stored as arrays; turn them back into tuples."""
    if isinstance(value, list):
        return tuple(_as_key(v) for v in value)
    return value


for _primitive in _PRIMITIVE_TYPES:
    _value_type_registry[get_type_name(_primitive)] = _primitive
_value_type_registry[get_type_name(SaveableArray)] = SaveableArray
_value_type_registry[get_type_name(SaveableDict)] = SaveableDict

# Python containers and the wrapper each one is stored as
_WRAPPER_TYPES: dict[type, type] = {
    list: SaveableArray,
    tuple: SaveableArray,
    dict: SaveableDict,
}


def ensure_not_saveable(message: str, *types: type) -> None:
    """Raise if any of the types is a Saveable."""
    for t in types:
        if isinstance(t, type) and issubclass(t, Saveable):
            raise DisallowedValueError(message)


def encode_value(value: Any, declared_type: type | None = None) -> ValueSection:
    """
    Encode a value into a ValueSection.

    Args:
        value: The value to encode
        declared_type: Type to tag the value with (defaults to type(value))

    Raises:
        DisallowedValueError: For saveables, None and unregistered types
    """
    if declared_type is None:
        declared_type = type(value)

    ensure_not_saveable(
        f"Cannot save {value!r} as a value: saveables must be saved as references",
        declared_type, type(value),
    )

    if value is None:
        raise DisallowedValueError("Cannot save `None` as a value")

    if isinstance(value, (list, tuple)):
        wrapper = SaveableArray.from_values(value)
        return _section_for(wrapper, SaveableArray)
    if isinstance(value, dict):
        wrapper = SaveableDict.from_dict(value)
        return _section_for(wrapper, SaveableDict)

    type_name = get_type_name(declared_type)
    if _value_type_registry.get(type_name) is not declared_type:
        raise DisallowedValueError(
            f"Can't save value {value!r}: {declared_type.__name__} is not a registered value type"
        )
    if not isinstance(value, declared_type):
        raise DisallowedValueError(
            f"Can't save value {value!r} as {declared_type.__name__}"
        )

    return _section_for(value, declared_type)


def _section_for(value: Any, value_type: type) -> ValueSection:
    if isinstance(value, Enum):
        value_string = json.dumps(value.name)
    elif isinstance(value, BaseModel):
        value_string = value.model_dump_json(by_alias=True)
    else:
        value_string = json.dumps(value)
    return ValueSection(value_string=value_string, value_type=get_type_name(value_type))


def decode_value(section: ValueSection, target_type: type | None = None) -> Any:
    """
    Decode a ValueSection back into a live value.

    Arrays decode to lists and dicts to dicts.

    Args:
        section: The section to decode
        target_type: If given, the stored type must be this type or a subclass
                     (list/tuple and dict match arrays and dicts)

    Raises:
        UnresolvedTypeError: The type tag no longer resolves
        ValueTypeMismatchError: Wrong type, or the payload cannot be parsed
    """
    value_type = section.get_value_type()
    if value_type is None:
        raise UnresolvedTypeError(section.value_type)

    if target_type is not None:
        expected = _WRAPPER_TYPES.get(target_type, target_type)
        if not issubclass(value_type, expected):
            raise ValueTypeMismatchError(
                f"Expected type {get_type_name(expected)} but found type {section.value_type}"
            )

    try:
        value = _parse(section.value_string, value_type)
    except (ValueError, KeyError, TypeError, ValidationError) as e:
        raise ValueTypeMismatchError(
            f"Could not read {section.value_string!r} as {section.value_type}: {e}"
        ) from e

    if isinstance(value, SaveableArray):
        return value.to_values()
    if isinstance(value, SaveableDict):
        return value.to_dict()
    return value


def _parse(value_string: str, value_type: type) -> Any:
    if issubclass(value_type, Enum):
        return value_type[json.loads(value_string)]
    if issubclass(value_type, BaseModel):
        return value_type.model_validate_json(value_string)
    return value_type(json.loads(value_string))


