import json
import logging
import pytest

from saveload.core import (
    CrossCapsuleReferenceError,
    EncodingType,
    ResolverDisposedError,
    Saveable,
    SaveableRegistry,
    Storage,
    StorageBusyError,
    StorageCapsule,
    StorageConfig,
    StorageFlushError,
    UnregisteredSaveableError,
    register_saveable,
)
from saveload.core.keys import (
    ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID,
    STORAGE_REFERENCE_TYPE_ID_KEY,
    STORAGE_REFERENCE_TYPE_STRING_KEY,
)
from tests.samples import Inventory, Item, PlayerCapsule, Rarity, Stats, Unregistered, WorldCapsule

# Graph used to check callback order
COMPLETED: list[str] = []
node_registry = SaveableRegistry()

@register_saveable(10, node_registry)
class Node(Saveable):
    def __init__(self, name: str = ""):
        self.name = name
        self.children: list[Node] = []

    def save(self, saver):
        saver.save_value("name", self.name)
        saver.save_refs("children", self.children)

    def load(self, loader):
        self.name = loader.load_value("name", str, "")
        loader.load_refs("children", self._set_children, Node)

    def _set_children(self, children):
        self.children = children

    def loading_completed(self):
        COMPLETED.append(self.name)

class TreeCapsule(StorageCapsule):
    capsule_id = "Tree"

    def __init__(self):
        self.root: Node | None = None

    def save(self, saver):
        saver.save_ref("root", self.root, allow_null=True)

    def load(self, loader):
        loader.load_ref("root", self._set_root)

    def _set_root(self, root):
        self.root = root

    def loading_completed(self):
        COMPLETED.append("tree")

class ToggleCapsule(StorageCapsule):
    capsule_id = "Toggle"

    def __init__(self):
        self.write_temp = True

    def save(self, saver):
        saver.save_value("always", 1)
        if self.write_temp:
            saver.save_value("temp", 2)

class ReentrantCapsule(StorageCapsule):
    capsule_id = "Reentrant"

    def __init__(self):
        self.storage: Storage | None = None

    def save(self, saver):
        self.storage.save()

class LateCapsule(StorageCapsule):
    capsule_id = "Late"

    def __init__(self):
        self.item: Item | None = None
        self.late_item: Item | None = None
        self._loader = None

    def save(self, saver):
        saver.save_ref("item", self.item, allow_null=True)

    def load(self, loader):
        self._loader = loader
        loader.load_ref("item", self._set_item, Item)

    def loading_completed(self):
        if self._loader is not None:
            self._loader.load_ref("item", self._set_late_item, Item)

    def _set_item(self, item):
        self.item = item

    def _set_late_item(self, item):
        self.late_item = item

def new_session(make_storage):
    player, world = PlayerCapsule(), WorldCapsule()
    return make_storage(player, world), player, world

# Round trip

def test_player_inventory_round_trip(storage, player, make_storage):
    player.level = 5
    player.stats = Stats(strength=14)
    player.inventory = Inventory()
    player.inventory.slots = [1, 2, 3]
    player.inventory.owner = player

    storage.save()
    assert storage.exists("Player")

    session, loaded, _ = new_session(make_storage)
    session.load()

    assert loaded.level == 5
    assert loaded.stats == Stats(strength=14)
    assert isinstance(loaded.inventory, Inventory)
    assert loaded.inventory.slots == [1, 2, 3]
    assert loaded.inventory.owner is loaded
    assert loaded.inventory.completed_calls == 1

def test_load_without_file_uses_defaults(storage, player):
    storage.load()

    assert player.level == 1
    assert player.inventory is None
    assert player.items == []
    assert player.calls == ["load", "completed"]

def test_identity_is_stable(storage, player, make_storage):
    sword = Item("sword", Rarity.RARE)
    player.items = [sword, sword, Item("sword", Rarity.RARE)]

    storage.save()
    session, loaded, _ = new_session(make_storage)
    session.load()

    first, second, third = loaded.items
    assert first is second
    assert first is not third
    assert first.name == "sword"
    assert first.rarity is Rarity.RARE

def test_reference_ids_are_stable_across_sessions(storage, player, make_storage):
    sword = Item("sword")
    player.inventory = Inventory()
    player.items = [sword, Item("shield"), sword]
    storage.save()
    before = storage.try_read("Player")

    session, _, _ = new_session(make_storage)
    session.load()
    session.save()
    after = session.try_read("Player")

    def names_by_id(result):
        return {
            store.reference_id: store.load_value("name", str)
            for _, store in result.saved_refs_storage
        }

    assert after.capsule_storage.get_reference("items") == before.capsule_storage.get_reference("items")
    assert after.capsule_storage.get_reference("inventory") == before.capsule_storage.get_reference("inventory")
    assert names_by_id(after) == names_by_id(before)

def test_cycles_round_trip(storage, player, make_storage):
    a, b = Item("a"), Item("b")
    a.linked = b
    b.linked = a
    player.items = [a]

    storage.save()
    session, loaded, _ = new_session(make_storage)
    session.load()

    loaded_a = loaded.items[0]
    assert loaded_a.linked.name == "b"
    assert loaded_a.linked.linked is loaded_a

def test_each_object_is_stored_once(storage, player):
    sword = Item("sword")
    player.items = [sword, sword]
    player.inventory = Inventory()

    storage.save()
    result = storage.try_read("Player")

    assert len(result.saved_refs_storage) == 2
    assert result.capsule_storage.get_reference("items") == "1,1"

def test_loading_completed_runs_in_reverse_discovery_order(storage_config):
    COMPLETED.clear()
    tree = TreeCapsule()
    tree.root = Node("a")
    tree.root.children = [Node("b")]
    tree.root.children[0].children = [Node("c")]
    Storage(storage_config, tree, factory=node_registry).save()
    assert COMPLETED == ["c", "b", "a", "tree"]

    COMPLETED.clear()
    loaded = TreeCapsule()
    Storage(storage_config, loaded, factory=node_registry).load()

    assert COMPLETED == ["c", "b", "a", "tree"]
    assert loaded.root.children[0].children[0].name == "c"

def test_loading_completed_can_resolve_references(make_storage):
    saved = LateCapsule()
    saved.item = Item("lantern")
    make_storage(saved).save()

    loaded = LateCapsule()
    session = make_storage(loaded)
    session.load()

    assert loaded.item.name == "lantern"
    assert loaded.late_item is loaded.item
    assert session.active_resolver is None

def test_save_calls_loading_completed(storage, player):
    storage.save()
    assert player.calls == ["save", "completed"]

def test_root_store_has_no_type_keys(storage, player):
    player.inventory = Inventory()
    storage.save()
    result = storage.try_read("Player")

    assert not result.capsule_storage.has_value_key(STORAGE_REFERENCE_TYPE_ID_KEY)
    _, inventory_store = result.saved_refs_storage[0]
    assert inventory_store.load_value(STORAGE_REFERENCE_TYPE_ID_KEY, int) == 1
    assert inventory_store.load_value(STORAGE_REFERENCE_TYPE_STRING_KEY, str) == "tests.samples.Inventory"

def test_save_selected_capsule(storage, player, world_capsule):
    storage.save("World")

    assert storage.exists("World")
    assert not storage.exists("Player")
    assert player.calls == []

def test_save_without_flush(storage):
    storage.save(flush=False)
    assert not storage.exists("Player")

    storage.flush()
    assert storage.exists("Player")

def test_duplicate_capsule_ids(storage_config):
    with pytest.raises(ValueError):
        Storage(storage_config, PlayerCapsule(), PlayerCapsule())

# Failures

def test_cross_capsule_reference(storage, player, world_capsule):
    shared = Item("shared")
    player.items = [shared]
    world_capsule.chests = [shared]

    with pytest.raises(CrossCapsuleReferenceError) as exc_info:
        storage.save()

    assert exc_info.value.holding_capsule_id == "Player"
    assert exc_info.value.saving_capsule_id == "World"
    assert exc_info.value.reference is shared
    assert not storage.exists("Player")
    assert not storage.exists("World")
    assert not storage.is_busy

def test_capsule_saved_by_another_capsule(make_storage, player, world_capsule):
    storage = make_storage(world_capsule, player)
    player.extra = world_capsule

    with pytest.raises(CrossCapsuleReferenceError) as exc_info:
        storage.save()
    assert exc_info.value.holding_capsule_id == "World"

def test_unregistered_saveable(storage, player):
    player.extra = Unregistered()

    with pytest.raises(UnregisteredSaveableError):
        storage.save()

def test_reentrant_save(storage_config):
    capsule = ReentrantCapsule()
    storage = Storage(storage_config, capsule)
    capsule.storage = storage

    with pytest.raises(StorageBusyError):
        storage.save()
    assert not storage.is_busy
    assert storage.active_resolver is None

def test_references_outside_a_pass(storage):
    result = storage.try_read("Player")
    with pytest.raises(ResolverDisposedError):
        result.capsule_storage.save_ref("item", Item())

def test_flush_error(tmp_path, player):
    (tmp_path / "saves").write_text("not a directory")
    storage = Storage(StorageConfig(root_dir=tmp_path), player)

    with pytest.raises(StorageFlushError) as exc_info:
        storage.save()
    assert exc_info.value.capsule_id == "Player"

# Files

def test_file_is_tamper_checked(storage, player, storage_config, make_storage, caplog):
    player.level = 9
    storage.save()

    path = storage_config.capsule_path("Player")
    text = path.read_text(encoding="utf-8")
    middle = len(text) // 2
    replacement = "A" if text[middle] != "A" else "B"
    path.write_text(text[:middle] + replacement + text[middle + 1:], encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        session, loaded, _ = new_session(make_storage)
        session.load()

    assert loaded.level == 1
    assert "is corrupt" in caplog.text

def test_plain_file_layout(plain_config, player):
    player.level = 2
    Storage(plain_config, player).save()

    wrapper = json.loads(plain_config.capsule_path("Player").read_text(encoding="utf-8"))
    assert set(wrapper) == {"saveFilePassword", "safeFileText"}

    envelope = json.loads(wrapper["safeFileText"])
    assert envelope["capsuleId"] == "Player"
    root = envelope["referencesSaveData"][0]
    assert root["referenceId"] == ROOT_SAVE_DATA_CAPSULE_REFERENCE_ID
    assert {item["key"] for item in root["valueDataItems"]} >= {"level", "stats"}

def test_file_with_wrong_encoding_is_reset(storage_config, player, tmp_path, caplog):
    player.level = 4
    Storage(storage_config, player).save()

    plain = StorageConfig(encoding=EncodingType.NONE, root_dir=tmp_path)
    loaded = PlayerCapsule()
    Storage(plain, loaded).load()

    assert loaded.level == 1
    assert "is corrupt" in caplog.text

def test_clear_removes_files(storage, storage_config):
    storage.save()
    storage.clear(remove_files=True)

    assert not storage.exists("Player")
    assert not storage_config.storage_dir.exists()

def test_clear_keeps_empty_files(storage, player, make_storage):
    player.level = 3
    storage.save()
    storage.clear("Player")

    assert storage.exists("Player")
    session, loaded, _ = new_session(make_storage)
    session.load()
    assert loaded.level == 1

# Write amnesty

def test_injected_value_survives_saves(storage, make_storage):
    storage.save()
    result = storage.try_read("Player")
    result.capsule_storage.set_value("injected", 99)
    storage.flush("Player")

    session, _, _ = new_session(make_storage)
    session.load()
    session.save()
    assert session.try_read("Player").capsule_storage.load_value("injected", int) == 99

    # Same session, without reloading the live objects
    session.save()
    assert session.try_read("Player").capsule_storage.load_value("injected", int) == 99

def test_removed_injected_value_does_not_return(storage):
    storage.save()
    storage.try_read("Player").capsule_storage.set_value("injected", 99)
    storage.flush("Player")
    storage.save()

    storage.try_read("Player").capsule_storage.remove_value("injected")
    storage.flush("Player")
    storage.save()

    assert not storage.try_read("Player").capsule_storage.has_value_key("injected")

def test_keys_no_longer_saved_are_pruned(storage_config):
    toggle = ToggleCapsule()
    storage = Storage(storage_config, toggle)
    storage.save()
    assert storage.try_read("Toggle").capsule_storage.has_value_key("temp")

    toggle.write_temp = False
    storage.save()
    store = storage.try_read("Toggle").capsule_storage
    assert store.has_value_key("always")
    assert not store.has_value_key("temp")

def test_injected_value_in_referenced_store(storage, player, make_storage):
    player.inventory = Inventory()
    storage.save()
    session, loaded, _ = new_session(make_storage)
    session.load()

    inventory_store = loaded.inventory.storage_channel.last_storage
    inventory_store.set_value("bonus", 1)
    session.save()

    stores = session.try_read("Player").get_refs_of_type(Inventory)
    assert stores[0].load_value("bonus", int) == 1

# Editing

def test_read_result(storage, player):
    player.inventory = Inventory()
    player.items = [Item("a"), Item("b")]
    storage.save()

    result = storage.try_read("Player")
    assert result.capsule_id == "Player"
    assert result.capsule_storage.load_value("level", int) == 1
    assert len(result.get_refs_of_type(Item)) == 2
    assert len(result.get_refs_of_type(Saveable)) == 3
    assert storage.try_read("Unknown") is None

def test_read_skips_unresolvable_types(storage, player):
    player.inventory = Inventory()
    storage.save()

    result = storage.try_read("Player")
    _, inventory_store = result.saved_refs_storage[0]
    inventory_store.remove_value(STORAGE_REFERENCE_TYPE_ID_KEY)
    inventory_store.remove_value(STORAGE_REFERENCE_TYPE_STRING_KEY)
    storage.flush("Player")

    assert storage.try_read("Player").saved_refs_storage == []

def test_legacy_type_name_lookup(storage, player, make_storage):
    player.inventory = Inventory()
    player.inventory.slots = [4]
    storage.save()

    _, inventory_store = storage.try_read("Player").saved_refs_storage[0]
    inventory_store.remove_value(STORAGE_REFERENCE_TYPE_ID_KEY)
    storage.flush("Player")

    session, loaded, _ = new_session(make_storage)
    session.load()
    assert loaded.inventory.slots == [4]

def test_unresolvable_reference_loads_as_none(storage, player, make_storage, caplog):
    player.inventory = Inventory()
    storage.save()

    _, inventory_store = storage.try_read("Player").saved_refs_storage[0]
    inventory_store.remove_value(STORAGE_REFERENCE_TYPE_ID_KEY)
    inventory_store.remove_value(STORAGE_REFERENCE_TYPE_STRING_KEY)
    storage.flush("Player")

    session, loaded, _ = new_session(make_storage)
    session.load()

    assert loaded.inventory is None
    assert loaded.calls == ["load", "completed"]
    assert "Unable to load reference id" in caplog.text

def test_edit_references_without_live_objects(storage, player, make_storage):
    player.inventory = Inventory()
    player.inventory.slots = [7]
    storage.save()

    root = storage.try_read("Player").capsule_storage
    inventory_ref = root.get_value_ref("inventory")
    assert inventory_ref.reference_type is Inventory
    assert inventory_ref.storage.load_values("slots", int) == [7]
    assert root.get_value_ref("missing") is None

    potion = root.register_new_ref(Item)
    potion.storage.set_value("name", "potion")
    root.set_value_refs("items", [potion])
    assert root.get_value_refs("items")[0].reference_id == potion.reference_id
    storage.flush("Player")

    session, loaded, _ = new_session(make_storage)
    session.load()
    assert [item.name for item in loaded.items] == ["potion"]

def test_register_new_ref_in_unknown_capsule(storage):
    assert storage.register_new_ref_in_capsule("Unknown", Item) is None
