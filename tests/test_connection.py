import logging

import pytest
from pydantic import ValidationError as SettingsValidationError

import ferrite
from ferrite import Connection, ConnectionSettings, MemoryStorageClient
from ferrite.errors import PreconditionError
from ferrite.state import _MODEL_REGISTRY


@pytest.mark.asyncio
async def test_memory_connection():
    """connect() returns a ready connection and makes it the default."""
    storage = MemoryStorageClient()
    connection = await ferrite.connect("memory://", "shop", client=storage)

    assert connection.is_ready
    assert storage.is_connected
    assert storage.db_name == "shop"
    assert _MODEL_REGISTRY.connection is connection
    assert connection.settings == ConnectionSettings(url="memory://", db_name="shop")


@pytest.mark.asyncio
async def test_existing_client_is_adopted():
    """An already connected client is used without connecting again."""
    storage = MemoryStorageClient()
    await storage.connect("memory://", "original")

    connection = Connection(storage)
    await connection.connect()
    assert connection.is_ready
    assert storage.db_name == "original"


@pytest.mark.asyncio
async def test_disconnected_client_without_settings():
    with pytest.raises(PreconditionError):
        await Connection(MemoryStorageClient()).connect()


@pytest.mark.asyncio
async def test_requests_require_ready_connection():
    connection = Connection(MemoryStorageClient(), ConnectionSettings(url="memory://", db_name="x"))
    with pytest.raises(PreconditionError, match="not connected"):
        await connection.find_one({}, "things")


@pytest.mark.asyncio
async def test_close():
    storage = MemoryStorageClient()
    connection = await ferrite.connect("memory://", "shop", client=storage)
    await connection.close()

    assert not connection.is_ready
    assert not storage.is_connected


def test_models_require_connection():
    class Order(ferrite.Model):
        total = ferrite.NumericField()

    ferrite.reset_connection()
    with pytest.raises(PreconditionError, match="not connected"):
        Order.collection.connection


@pytest.mark.asyncio
async def test_connection_logger_is_configurable(caplog):
    logger = logging.getLogger("shop.db")
    storage = MemoryStorageClient()

    with caplog.at_level(logging.DEBUG, logger="shop.db"):
        connection = await ferrite.connect("memory://", "shop", client=storage, logger=logger)
        await connection.insert_one({"_id": 1}, "things")

    assert connection.logger is logger
    assert "Ferrite ready!" in caplog.text
    assert "1 document inserted." in caplog.text


def test_package_logger_setup():
    logger = logging.getLogger("ferrite")
    assert logger.handlers
    assert not logger.propagate


def test_settings_are_frozen():
    settings = ConnectionSettings(url="mongodb://localhost:27017", db_name="shop")
    assert settings.auto_create_collections is False
    with pytest.raises(SettingsValidationError):
        settings.db_name = "other"


def test_clear_registry():
    class Temporary(ferrite.Model):
        value = ferrite.StringField()

    assert _MODEL_REGISTRY.get("Temporary") is Temporary
    ferrite.clear_registry()
    assert _MODEL_REGISTRY.get("Temporary") is None
