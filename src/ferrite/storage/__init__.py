"""Storage clients: the narrow async CRUD contract Ferrite needs from a document store."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StorageClient(Protocol):
    """
    What a document store must provide.

    Failures are raised as ``ferrite.errors.StorageError``. Not-found is not a
    failure here: ``find_one`` returns None and the delete operations return 0.
    """

    @property
    def is_connected(self) -> bool: ...

    async def connect(self, url: str, db_name: str) -> None: ...

    async def close(self) -> None: ...

    async def create_collection(self, name: str, options: dict[str, Any]) -> None:
        """Create a collection; an existing collection is left as it is."""

    async def create_index(
        self, collection: str, index_specs: list[dict[str, Any]], options: dict[str, Any]
    ) -> None:
        """Create one index per ``{field: index_type}`` spec; no-op for an empty list."""

    async def insert_one(self, document: dict[str, Any], collection: str) -> Any:
        """Insert a document and return its primary key."""

    async def update_one(self, query: dict[str, Any], document: dict[str, Any], collection: str) -> int:
        """Set the given keys on the first matching document; return the matched count."""

    async def find_one(self, query: dict[str, Any], collection: str) -> dict[str, Any] | None: ...

    async def delete_one(self, query: dict[str, Any], collection: str) -> int: ...

    async def delete_many(self, query: dict[str, Any], collection: str) -> int: ...

    async def drop_collection(self, name: str) -> None: ...


from .memory import MemoryStorageClient  # noqa: E402
from .mongo import MongoStorageClient  # noqa: E402

__all__ = ["StorageClient", "MemoryStorageClient", "MongoStorageClient"]
