import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from pymongo import ASCENDING, AsyncMongoClient, IndexModel
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import CollectionInvalid, PyMongoError

from ..errors import PreconditionError, StorageError

logger = logging.getLogger("ferrite.storage")

# MongoDB refuses unique indexes of these types
_NON_UNIQUE_INDEX_TYPES = frozenset({"hashed", "text"})


@contextmanager
def _storage_errors() -> Iterator[None]:
    try:
        yield
    except PyMongoError as e:
        raise StorageError(str(e)) from e


class MongoStorageClient:
    """
    Storage client backed by pymongo's asyncio driver.

    Args:
        **client_options: Extra keyword arguments for ``AsyncMongoClient``.
            Datetimes come back timezone-aware unless ``tz_aware=False`` is passed.
    """

    def __init__(self, **client_options: Any):
        client_options.setdefault("tz_aware", True)
        self._client_options = client_options
        self._client: AsyncMongoClient | None = None
        self._database: AsyncDatabase | None = None

    @classmethod
    def from_database(cls, database: AsyncDatabase) -> "MongoStorageClient":
        """Wrap a database from an already connected client; ``connect()`` is then skipped."""
        storage = cls()
        storage._client = database.client
        storage._database = database
        return storage

    @property
    def is_connected(self) -> bool:
        return self._database is not None

    @property
    def database(self) -> AsyncDatabase:
        if self._database is None:
            raise PreconditionError("MongoStorageClient is not connected.")
        return self._database

    async def connect(self, url: str, db_name: str) -> None:
        client = AsyncMongoClient(url, **self._client_options)
        with _storage_errors():
            await client.admin.command("ping")
        self._client = client
        self._database = client[db_name]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._client = None
        self._database = None

    async def create_collection(self, name: str, options: dict[str, Any]) -> None:
        with _storage_errors():
            try:
                await self.database.create_collection(name, **options)
            except CollectionInvalid:
                logger.info("Collection '%s' already exists.", name)

    async def create_index(
        self, collection: str, index_specs: list[dict[str, Any]], options: dict[str, Any]
    ) -> None:
        if not index_specs:
            return
        unique = bool(options.get("unique"))
        models = []
        for spec in index_specs:
            keys = []
            for field_name, index_type in spec.items():
                if unique and index_type in _NON_UNIQUE_INDEX_TYPES:
                    logger.debug(
                        "Index type '%s' cannot be unique; using ascending index on '%s'.",
                        index_type,
                        field_name,
                    )
                    index_type = ASCENDING
                keys.append((field_name, index_type))
            models.append(IndexModel(keys, **options))
        with _storage_errors():
            await self.database[collection].create_indexes(models)

    async def insert_one(self, document: dict[str, Any], collection: str) -> Any:
        with _storage_errors():
            result = await self.database[collection].insert_one(document)
        return result.inserted_id

    async def update_one(self, query: dict[str, Any], document: dict[str, Any], collection: str) -> int:
        with _storage_errors():
            result = await self.database[collection].update_one(query, {"$set": document})
        return result.matched_count

    async def find_one(self, query: dict[str, Any], collection: str) -> dict[str, Any] | None:
        with _storage_errors():
            return await self.database[collection].find_one(query)

    async def delete_one(self, query: dict[str, Any], collection: str) -> int:
        with _storage_errors():
            result = await self.database[collection].delete_one(query)
        return result.deleted_count

    async def delete_many(self, query: dict[str, Any], collection: str) -> int:
        with _storage_errors():
            result = await self.database[collection].delete_many(query)
        return result.deleted_count

    async def drop_collection(self, name: str) -> None:
        with _storage_errors():
            await self.database.drop_collection(name)
