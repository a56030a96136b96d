import logging
from typing import Any

from pydantic import BaseModel, ConfigDict

from .errors import PreconditionError
from .storage import StorageClient


class ConnectionSettings(BaseModel):
    """
    Where to connect.

    Attributes:
        url: Storage connection string (e.g. "mongodb://localhost:27017").
        db_name: Database to open.
        auto_create_collections: Create the collections of every registered
            model right after connecting.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    db_name: str
    auto_create_collections: bool = False


class Connection:
    """
    The storage context shared by every model operation.

    Wraps a ``StorageClient`` with readiness checks and request logging. The
    logger is part of the connection, so different connections may log to
    different places.

    Attributes:
        client: The storage client doing the actual work.
        settings: Connection settings, or None for an already connected client.
        logger: Logger used for every request.
    """

    def __init__(
        self,
        client: StorageClient,
        settings: ConnectionSettings | None = None,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.settings = settings
        self.logger = logger or logging.getLogger("ferrite")
        self._is_ready = False

    @property
    def is_ready(self) -> bool:
        return self._is_ready

    async def connect(self) -> None:
        """
        Connect the storage client, or adopt it if it is already connected.

        Raises:
            PreconditionError: If the client is not connected and there are no settings.
            StorageError: If the client fails to connect.
        """
        if self.client.is_connected:
            self.logger.info("Set Ferrite from existing connection..")
        elif self.settings is None:
            raise PreconditionError("Cannot connect without ConnectionSettings.")
        else:
            self.logger.info("Connecting to db '%s'..", self.settings.url)
            await self.client.connect(self.settings.url, self.settings.db_name)
        self._is_ready = True
        self.logger.info("Ferrite ready!")

    def validate_ready(self) -> None:
        if not self._is_ready:
            raise PreconditionError("DB is not connected! Please call ferrite.connect() first.")

    async def create_collection(self, name: str, options: dict[str, Any]) -> None:
        self.validate_ready()
        self.logger.info("Create collection '%s'..", name)
        await self.client.create_collection(name, options)
        self.logger.info("Collection '%s' ready.", name)

    async def create_index(
        self, collection: str, index_specs: list[dict[str, Any]], options: dict[str, Any]
    ) -> None:
        if not index_specs:
            return
        self.validate_ready()
        await self.client.create_index(collection, index_specs, options)
        self.logger.debug(
            "Created indexes '%s' with options '%s' on collection '%s'.", index_specs, options, collection
        )

    async def insert_one(self, document: dict[str, Any], collection: str) -> Any:
        self.validate_ready()
        self.logger.debug("Insert object '%s' into collection '%s'..", document.get("_id"), collection)
        inserted_id = await self.client.insert_one(document, collection)
        self.logger.debug("1 document inserted.")
        return inserted_id

    async def update_one(self, query: dict[str, Any], document: dict[str, Any], collection: str) -> int:
        self.validate_ready()
        self.logger.debug("Update object '%s' in collection '%s'..", query, collection)
        matched = await self.client.update_one(query, document, collection)
        self.logger.debug("%d document(s) updated.", matched)
        return matched

    async def find_one(self, query: dict[str, Any], collection: str) -> dict[str, Any] | None:
        self.validate_ready()
        document = await self.client.find_one(query, collection)
        if document is not None:
            self.logger.debug("1 document read (%s).", document.get("_id"))
        return document

    async def delete_one(self, query: dict[str, Any], collection: str) -> int:
        self.validate_ready()
        self.logger.debug("Delete object '%s' from collection '%s'..", query, collection)
        deleted = await self.client.delete_one(query, collection)
        self.logger.debug("%d document(s) deleted.", deleted)
        return deleted

    async def delete_many(self, query: dict[str, Any], collection: str) -> int:
        self.validate_ready()
        self.logger.debug("Delete objects '%s' from collection '%s'..", query, collection)
        deleted = await self.client.delete_many(query, collection)
        self.logger.debug("%d document(s) deleted.", deleted)
        return deleted

    async def drop_collection(self, name: str) -> None:
        self.validate_ready()
        self.logger.debug("Drop collection '%s'..", name)
        await self.client.drop_collection(name)
        self.logger.debug("1 collection dropped (%s).", name)

    async def close(self) -> None:
        if self._is_ready:
            self.logger.info("Closing Ferrite connection.")
            await self.client.close()
            self._is_ready = False

    def __repr__(self):
        target = f"{self.settings.url}/{self.settings.db_name}" if self.settings else "existing"
        return f"<Connection {target} ready={self._is_ready}>"
