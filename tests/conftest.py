import os
import sys
import logging
import pytest

# Ensure saveload and the test samples can be imported
sys.path.append(os.getcwd())

from saveload.core import EncodingType, EventBus, ReferenceResolver, Storage, StorageConfig
from tests.samples import PlayerCapsule, StubAccess, WorldCapsule, sample_registry


@pytest.fixture(autouse=True)
def storage_logging(caplog):
    """Capture storage logs at DEBUG for every test."""
    caplog.set_level(logging.DEBUG, logger="saveload")
    yield

@pytest.fixture
def event_bus():
    """Fresh EventBus for each test."""
    return EventBus()

@pytest.fixture
def resolver():
    """Resolver disposed after the test."""
    with ReferenceResolver() as active:
        yield active

@pytest.fixture
def stub_access(resolver):
    """Storage access exposing the test resolver."""
    return StubAccess(resolver)

@pytest.fixture
def storage_config(tmp_path):
    """Base64 storage under a temporary directory."""
    return StorageConfig(location_path="saves", encoding=EncodingType.BASE64, root_dir=tmp_path)

@pytest.fixture
def plain_config(tmp_path):
    """Unencoded storage (readable files) under a temporary directory."""
    return StorageConfig(location_path="plain", encoding=EncodingType.NONE, root_dir=tmp_path)

@pytest.fixture
def player():
    return PlayerCapsule()

@pytest.fixture
def world_capsule():
    return WorldCapsule()

@pytest.fixture
def storage(storage_config, player, world_capsule):
    """Storage with the Player and World capsules."""
    return Storage(storage_config, player, world_capsule, factory=sample_registry)

@pytest.fixture
def make_storage(storage_config):
    """Build another Storage over the same directory (a fresh game session)."""
    def factory(*capsules, config=None):
        return Storage(config or storage_config, *capsules, factory=sample_registry)
    return factory
