from saveload.core import StorageCapsule, StorageKey
from saveload.core.keys import MIGRATOR_INDEX_KEY, RESERVED_KEYS
from saveload.core.values import SaveableArray, SaveableDict
from saveload.tools import StorageKeyEntry, get_key_entries
from tests.samples import Inventory, Item, PlayerCapsule, Stats

class BaseCapsule(StorageCapsule):
    capsule_id = "Base"
    NAME_KEY = StorageKey("name", str)
    SCORE_KEY = StorageKey("score", int)

    def save(self, saver):
        pass

class DerivedCapsule(BaseCapsule):
    # Overrides the base declaration, same key string
    SCORE_KEY = StorageKey("score", float, optional=True)
    BONUS_KEY = StorageKey("bonus", dict[str, int])

class ClashingCapsule(BaseCapsule):
    ALIAS_KEY = StorageKey("name", str)

def test_entries_of_a_type():
    entries = get_key_entries(PlayerCapsule)

    assert entries["level"] == StorageKeyEntry("level", int)
    assert entries["stats"].is_optional
    assert entries["inventory"].expected_type is Inventory
    assert not any(entry.has_duplicate for entry in entries.values())

def test_reserved_keys_are_included():
    entries = get_key_entries(BaseCapsule)

    for key in RESERVED_KEYS:
        assert entries[key].is_optional
    assert entries[MIGRATOR_INDEX_KEY].expected_type is int

def test_inherited_and_overridden_keys():
    entries = get_key_entries(DerivedCapsule)

    assert entries["name"].expected_type is str
    assert entries["score"].expected_type is float
    assert entries["score"].is_optional
    assert not entries["score"].has_duplicate
    assert entries["bonus"].get_expected_dict_types() == (str, int)

def test_same_key_from_two_attributes():
    assert get_key_entries(ClashingCapsule)["name"].has_duplicate

def test_no_type():
    assert get_key_entries(None) == {}

def test_value_type_checks():
    assert StorageKeyEntry("level", int).is_of_expected_type(int)
    assert StorageKeyEntry("level", int).is_of_expected_type(bool)
    assert not StorageKeyEntry("level", int).is_of_expected_type(str)
    assert not StorageKeyEntry("level", int).is_of_expected_type(None)
    assert StorageKeyEntry("stats", Stats).is_of_expected_type(Stats)
    assert StorageKeyEntry("anything").is_of_expected_type(str)

def test_collection_checks():
    slots = StorageKeyEntry("slots", list[int])
    bonus = StorageKeyEntry("bonus", dict[str, int])

    assert slots.container_type is list
    assert slots.get_expected_array_type() is int
    assert slots.is_of_expected_type(SaveableArray)
    assert not slots.is_of_expected_type(SaveableDict)
    assert bonus.is_of_expected_type(SaveableDict)
    assert StorageKeyEntry("plain", list).is_of_expected_type(SaveableArray)
    assert StorageKeyEntry("level", int).get_expected_array_type() is None

def test_reference_type_checks():
    assert StorageKeyEntry("inventory", Inventory).is_of_expected_reference_type(Inventory)
    assert not StorageKeyEntry("inventory", Inventory).is_of_expected_reference_type(Item)
    assert StorageKeyEntry("items", list[Item]).is_of_expected_reference_type(Item)
    assert not StorageKeyEntry("items", list[Item]).is_of_expected_reference_type(Inventory)
    assert not StorageKeyEntry("inventory", Inventory).is_of_expected_reference_type(None)
