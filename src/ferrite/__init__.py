"""
Ferrite: an asyncio object-document mapper.

Declare models with typed fields; Ferrite validates them on save, tracks which
fields changed, stamps every document with creation time, update time and a
version, and resolves references between models.
"""

import logging

from . import errors, fields
from .base import Field
from .connection import Connection, ConnectionSettings
from .errors import FerriteError, NotFoundError, PreconditionError, StorageError, ValidationError
from .fields import (
    BooleanField,
    ChoiceField,
    DateField,
    DictionaryField,
    EmailField,
    ListField,
    NumericField,
    StringField,
)
from .models import Model
from .relations import ForeignKeyField
from .state import _MODEL_REGISTRY, LoadState
from .storage import MemoryStorageClient, MongoStorageClient, StorageClient

# Set up the Ferrite logger
_logger = logging.getLogger("ferrite")
# Only add a handler if none exists (to avoid duplicate logs)
if not _logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(name)s: %(levelname)s: %(message)s"))
    _logger.addHandler(_handler)
    _logger.setLevel(logging.INFO)
    # Prevent propagation to root logger to avoid duplicate messages
    _logger.propagate = False


async def connect(
    url: str,
    db_name: str,
    client: StorageClient | None = None,
    auto_create_collections: bool = False,
    logger: logging.Logger | None = None,
) -> Connection:
    """
    Establish the default connection used by every model.

    Args:
        url: The storage connection string (e.g., "mongodb://localhost:27017").
        db_name: The database to use.
        client: Storage client to use. Defaults to a ``MongoStorageClient``;
            an already connected client is adopted as is.
        auto_create_collections: If True, create collections and indexes for
            all registered models.
        logger: Logger for the connection. Defaults to the "ferrite" logger.

    Returns:
        The connection, now the registry default.
    """
    from .relations import resolve_relationships

    resolve_relationships()

    settings = ConnectionSettings(
        url=url, db_name=db_name, auto_create_collections=auto_create_collections
    )
    connection = Connection(client or MongoStorageClient(), settings, logger)
    await connection.connect()
    _MODEL_REGISTRY.connection = connection

    if settings.auto_create_collections:
        await create_collections()
    return connection


async def create_collections() -> None:
    """Create the collection and indexes of every registered model."""
    for model_cls in list(_MODEL_REGISTRY.models.values()):
        await model_cls.collection.create_collection()


def reset_connection() -> None:
    """Forget the default connection. Models bound to their own connection keep it."""
    _MODEL_REGISTRY.connection = None


def clear_registry() -> None:
    """Forget every registered model class."""
    _MODEL_REGISTRY.clear()


__all__ = [
    "connect",
    "create_collections",
    "reset_connection",
    "clear_registry",
    "Model",
    "Field",
    "BooleanField",
    "ChoiceField",
    "DateField",
    "DictionaryField",
    "EmailField",
    "ForeignKeyField",
    "ListField",
    "NumericField",
    "StringField",
    "Connection",
    "ConnectionSettings",
    "StorageClient",
    "MemoryStorageClient",
    "MongoStorageClient",
    "LoadState",
    "FerriteError",
    "ValidationError",
    "PreconditionError",
    "NotFoundError",
    "StorageError",
    "errors",
    "fields",
]
