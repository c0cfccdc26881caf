import json
import pytest
from enum import Enum, auto

from saveload.core.errors import DisallowedValueError, UnresolvedTypeError, ValueTypeMismatchError
from saveload.core.values import (
    SaveableArray,
    SaveableStruct,
    ValueSection,
    decode_value,
    encode_value,
    get_type_name,
    get_value_type,
    register_value_type,
    unregister_value_type,
)
from tests.samples import Inventory, Rarity, Stats

def test_primitives():
    for value in (True, 42, 1.5, "hello"):
        section = encode_value(value)
        assert section.value_type == get_type_name(type(value))
        assert decode_value(section) == value
        assert type(decode_value(section)) is type(value)

def test_enum_stored_by_member_name():
    section = encode_value(Rarity.RARE)

    assert json.loads(section.value_string) == "RARE"
    assert decode_value(section, Rarity) is Rarity.RARE

def test_struct():
    section = encode_value(Stats(strength=12))
    stats = decode_value(section, Stats)

    assert stats == Stats(strength=12, agility=10)
    assert section.get_value_type() is Stats

def test_nested_list_and_dict():
    value = {"slots": [1, 2, [3, 4]], "rarity": Rarity.COMMON, 7: "seven"}
    section = encode_value(value)

    assert decode_value(section) == value
    assert decode_value(section, dict) == value

def test_list_elements_carry_their_own_type():
    section = encode_value([1, "two", Stats()])
    array = SaveableArray.model_validate_json(section.value_string)

    assert [item.value_type for item in array.items] == [
        get_type_name(int), get_type_name(str), get_type_name(Stats),
    ]

def test_tuple_is_stored_as_list():
    assert decode_value(encode_value((1, 2)), list) == [1, 2]

def test_tuple_dict_keys_come_back_as_tuples(caplog):
    grid = {(1, 2): "a", (3, (4, 5)): "b"}

    assert decode_value(encode_value(grid), dict) == grid
    assert "Skipping dict item" not in caplog.text

def test_saveable_is_rejected():
    with pytest.raises(DisallowedValueError):
        encode_value(Inventory())

def test_saveable_inside_list_is_rejected():
    with pytest.raises(DisallowedValueError):
        encode_value([1, Inventory()])

def test_saveable_declared_type_is_rejected():
    with pytest.raises(DisallowedValueError):
        encode_value(1, Inventory)

def test_none_is_rejected():
    with pytest.raises(DisallowedValueError):
        encode_value(None)

def test_unregistered_type_is_rejected():
    class Loose(SaveableStruct):
        x: int = 0

    with pytest.raises(DisallowedValueError):
        encode_value(Loose())

def test_register_value_type_only_accepts_structs_and_enums():
    with pytest.raises(TypeError):
        register_value_type(Inventory)
    with pytest.raises(TypeError):
        register_value_type(dict)

def test_unknown_type_tag():
    section = ValueSection(value_string="1", value_type="gone.Module.Type")

    assert not section.get_value_type()
    with pytest.raises(UnresolvedTypeError) as exc_info:
        decode_value(section)
    assert exc_info.value.type_name == "gone.Module.Type"

def test_type_mismatch():
    with pytest.raises(ValueTypeMismatchError):
        decode_value(encode_value("text"), int)

def test_subclass_matches_target_type():
    assert decode_value(encode_value(True), int) is True

def test_unparsable_payload():
    section = ValueSection(value_string="not json", value_type=get_type_name(int))
    with pytest.raises(ValueTypeMismatchError):
        decode_value(section)

def test_unreadable_array_element_is_skipped():
    @register_value_type
    class Temporary(Enum):
        A = auto()

    section = encode_value([1, Temporary.A, 3])
    unregister_value_type(Temporary)

    assert get_value_type(get_type_name(Temporary)) is None
    assert decode_value(section) == [1, 3]

def test_unreadable_dict_item_is_skipped():
    @register_value_type
    class TemporaryKey(Enum):
        K = auto()

    section = encode_value({TemporaryKey.K: 1, "kept": 2})
    unregister_value_type(TemporaryKey)

    assert decode_value(section) == {"kept": 2}

def test_value_section_json_is_camel_case():
    data = json.loads(encode_value(5).model_dump_json(by_alias=True))
    assert set(data) == {"valueString", "valueType"}
