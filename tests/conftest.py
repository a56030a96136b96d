import pytest
import pytest_asyncio

import ferrite
from ferrite import MemoryStorageClient
from ferrite.state import _MODEL_REGISTRY


@pytest.fixture
def storage():
    """A fresh in-memory storage client."""
    return MemoryStorageClient()


@pytest_asyncio.fixture
async def db(storage):
    """
    Connect Ferrite to a clean in-memory store for each test.

    Yields the storage client, so tests can inspect the documents and the
    requests that were issued.
    """
    await ferrite.connect("memory://", "test", client=storage)
    yield storage
    ferrite.reset_connection()


@pytest.fixture(autouse=True)
def restore_registry():
    """Undo model registrations made inside a test. Module-level models stay registered."""
    registered = dict(_MODEL_REGISTRY.models)
    yield
    _MODEL_REGISTRY.models.clear()
    _MODEL_REGISTRY.models.update(registered)
    _MODEL_REGISTRY.connection = None
