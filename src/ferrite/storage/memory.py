import copy
from typing import Any

from bson import ObjectId

from ..errors import PreconditionError, StorageError


class MemoryStorageClient:
    """
    A process-local storage client for tests and prototyping.

    Supports equality filters only; operator queries (``$gt``, ``$in``, ...)
    raise ``StorageError``. Unique indexes are enforced on insert and update.
    Documents are copied on the way in and out, so callers never share state
    with the store.

    Attributes:
        requests: Every request issued, as ``(operation, collection)`` pairs.
    """

    def __init__(self):
        self._collections: dict[str, dict[Any, dict[str, Any]]] = {}
        self._collection_options: dict[str, dict[str, Any]] = {}
        self._indexes: dict[str, list[tuple[dict[str, Any], dict[str, Any]]]] = {}
        self._is_connected = False
        self.db_name: str | None = None
        self.requests: list[tuple[str, str]] = []

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def connect(self, url: str, db_name: str) -> None:
        self.db_name = db_name
        self._is_connected = True

    async def close(self) -> None:
        self._is_connected = False

    def collection_options(self, name: str) -> dict[str, Any] | None:
        return self._collection_options.get(name)

    def indexes(self, name: str) -> list[tuple[dict[str, Any], dict[str, Any]]]:
        return list(self._indexes.get(name, []))

    def documents(self, name: str) -> list[dict[str, Any]]:
        """Return a copy of every document in a collection, in insertion order."""
        return [copy.deepcopy(document) for document in self._collections.get(name, {}).values()]

    async def create_collection(self, name: str, options: dict[str, Any]) -> None:
        self._track("create_collection", name)
        self._collections.setdefault(name, {})
        self._collection_options.setdefault(name, copy.deepcopy(options))

    async def create_index(
        self, collection: str, index_specs: list[dict[str, Any]], options: dict[str, Any]
    ) -> None:
        if not index_specs:
            return
        self._track("create_index", collection)
        indexes = self._indexes.setdefault(collection, [])
        for spec in index_specs:
            indexes.append((dict(spec), dict(options)))

    async def insert_one(self, document: dict[str, Any], collection: str) -> Any:
        self._track("insert_one", collection)
        documents = self._collections.setdefault(collection, {})
        document = copy.deepcopy(document)
        document.setdefault("_id", ObjectId())

        key = document["_id"]
        if key in documents:
            raise StorageError(f"Duplicate key error in collection '{collection}': _id {key!r}")
        self._check_unique(collection, document, exclude=None)
        documents[key] = document
        return key

    async def update_one(self, query: dict[str, Any], document: dict[str, Any], collection: str) -> int:
        self._track("update_one", collection)
        match = self._find(query, collection)
        if match is None:
            return 0

        updated = {**match, **copy.deepcopy(document)}
        if updated["_id"] != match["_id"]:
            raise StorageError("Performing an update on the path '_id' would modify the immutable field '_id'")
        self._check_unique(collection, updated, exclude=match["_id"])
        self._collections[collection][match["_id"]] = updated
        return 1

    async def find_one(self, query: dict[str, Any], collection: str) -> dict[str, Any] | None:
        self._track("find_one", collection)
        match = self._find(query, collection)
        return copy.deepcopy(match) if match is not None else None

    async def delete_one(self, query: dict[str, Any], collection: str) -> int:
        self._track("delete_one", collection)
        match = self._find(query, collection)
        if match is None:
            return 0
        del self._collections[collection][match["_id"]]
        return 1

    async def delete_many(self, query: dict[str, Any], collection: str) -> int:
        self._track("delete_many", collection)
        documents = self._collections.get(collection, {})
        keys = [key for key, document in documents.items() if self._matches(query, document)]
        for key in keys:
            del documents[key]
        return len(keys)

    async def drop_collection(self, name: str) -> None:
        self._track("drop_collection", name)
        self._collections.pop(name, None)
        self._collection_options.pop(name, None)
        self._indexes.pop(name, None)

    def _track(self, operation: str, collection: str) -> None:
        if not self._is_connected:
            raise PreconditionError("MemoryStorageClient is not connected.")
        self.requests.append((operation, collection))

    def _find(self, query: dict[str, Any], collection: str) -> dict[str, Any] | None:
        for document in self._collections.get(collection, {}).values():
            if self._matches(query, document):
                return document
        return None

    @staticmethod
    def _matches(query: dict[str, Any], document: dict[str, Any]) -> bool:
        for key, expected in query.items():
            if key.startswith("$") or (isinstance(expected, dict) and any(k.startswith("$") for k in expected)):
                raise StorageError(f"Unsupported query operator in {query!r}")
            if key not in document or document[key] != expected:
                return False
        return True

    def _check_unique(self, collection: str, document: dict[str, Any], exclude: Any) -> None:
        for spec, options in self._indexes.get(collection, []):
            if not options.get("unique"):
                continue
            for field_name in spec:
                if field_name not in document:
                    continue
                for key, other in self._collections.get(collection, {}).items():
                    if key != exclude and other.get(field_name) == document[field_name]:
                        raise StorageError(
                            f"Duplicate key error in collection '{collection}': "
                            f"{field_name} {document[field_name]!r}"
                        )
