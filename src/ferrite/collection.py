"""The class-level model API, exposed as ``Model.collection``."""

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Self

from pydantic import BaseModel, ConfigDict, PositiveInt, model_validator

from .base import Field
from .errors import NotFoundError, PreconditionError, StorageError, callback_or_raise
from .state import _MODEL_REGISTRY, DEFAULT_PRIMARY_KEY

if TYPE_CHECKING:
    from .connection import Connection


class ModelOptions(BaseModel):
    """
    Per-model registration options.

    Attributes:
        collection_name: Collection to use. Defaults to the class name plus "s".
        max_size_in_bytes: Cap the collection to this many bytes.
        max_count: Cap the collection to this many documents. Requires
            ``max_size_in_bytes``, since only capped collections have a count limit.
        primary_key: Name of the document key field.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    collection_name: str | None = None
    max_size_in_bytes: PositiveInt | None = None
    max_count: PositiveInt | None = None
    primary_key: str = DEFAULT_PRIMARY_KEY

    @model_validator(mode="after")
    def _count_requires_size(self) -> Self:
        if self.max_count is not None and self.max_size_in_bytes is None:
            raise ValueError("max_count requires max_size_in_bytes (capped collection)")
        return self


class ModelClassWrapper:
    """
    Registry of a model's field descriptors plus its collection-level operations.

    Every storage operation takes optional continuations. ``on_error`` receives
    storage failures (and not-found failures when ``on_not_found`` is absent);
    without it the failure is raised from the awaited call.
    """

    def __init__(
        self,
        cls: type,
        fields: Mapping[str, Field],
        options: ModelOptions | None = None,
        connection: "Connection | None" = None,
    ):
        self._class = cls
        self._fields = dict(fields)
        self.options = options or ModelOptions()
        self._connection = connection

    @property
    def model(self) -> type:
        return self._class

    @property
    def connection(self) -> "Connection":
        """The connection bound to this model, or the registry default."""
        connection = self._connection or _MODEL_REGISTRY.connection
        if connection is None:
            raise PreconditionError("DB is not connected! Please call ferrite.connect() first.")
        return connection

    def bind(self, connection: "Connection | None") -> None:
        """Bind this model to a specific connection (``None`` falls back to the default)."""
        self._connection = connection

    @property
    def collection_name(self) -> str:
        return self.options.collection_name or self._class.__name__ + "s"

    @property
    def primary_key(self) -> str:
        return self.options.primary_key

    @property
    def field_names(self) -> list[str]:
        return list(self._fields)

    def get_field_descriptor(self, field_name: str) -> Field | None:
        return self._fields.get(field_name)

    def get_default(self, field_name: str) -> Any:
        return self._fields[field_name].default

    def normalize_query(self, query: Any) -> dict[str, Any]:
        """Wrap a scalar key into a primary key filter; pass mappings through unchanged."""
        if isinstance(query, Mapping):
            return dict(query)
        return {self.primary_key: query}

    def load(
        self,
        query: Any,
        on_success: Callable[[Any], Any] | None = None,
        on_not_found: Callable[[], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> Any:
        """
        Start loading one document and return its model instance right away.

        The returned instance is empty until the load completes on the running
        event loop; await ``instance.record.resolve()`` or use the callbacks
        before reading its fields.

        Args:
            query: A primary key value or a filter mapping.
            on_success: Called with the populated instance.
            on_not_found: Called when no document matches. Without it, a
                missing document is treated as an error.
            on_error: Called with the error. Without it, the failure is
                logged as a warning on the connection logger, and awaiting
                ``instance.record.resolve()`` raises it.

        Returns:
            The model instance being loaded.

        Example:
            >>> book = Book.collection.load(book_id)
            >>> await book.record.resolve()
        """
        connection = self.connection
        instance = self._class()
        instance.record._start_hydration(
            connection, self.normalize_query(query), on_success, on_not_found, on_error
        )
        return instance

    async def get(self, query: Any) -> Any | None:
        """
        Fetch a single document and return its hydrated instance.

        Returns:
            The model instance, or None if no document matches.
        """
        connection = self.connection
        instance = self._class()
        return await instance.record._hydrate(
            connection, self.normalize_query(query), None, _ignore_not_found, None
        )

    def reference(self, key: Any) -> Any:
        """Return a key-only instance standing for the document with primary key ``key``."""
        instance = self._class()
        instance.record.id = key
        return instance

    async def delete(
        self,
        query: Any,
        on_success: Callable[[int], Any] | None = None,
        on_not_found: Callable[[], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> int:
        """
        Delete one document matching the query.

        No instance is built and no lifecycle hooks run.

        Returns:
            The number of deleted documents (0 or 1).
        """
        connection = self.connection
        query = self.normalize_query(query)
        try:
            deleted = await connection.delete_one(query, self.collection_name)
        except StorageError as e:
            callback_or_raise(e, on_error)
            return 0

        if not deleted:
            if on_not_found is not None:
                on_not_found()
                return 0
            callback_or_raise(
                NotFoundError(
                    f"Document matching query {query!r} not found in collection '{self.collection_name}'!"
                ),
                on_error,
            )
            return 0

        if on_success is not None:
            on_success(deleted)
        return deleted

    async def delete_many(
        self,
        query: Any,
        on_success: Callable[[int], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> int:
        """
        Delete every document matching the query.

        Returns:
            The number of deleted documents.
        """
        connection = self.connection
        try:
            deleted = await connection.delete_many(self.normalize_query(query), self.collection_name)
        except StorageError as e:
            callback_or_raise(e, on_error)
            return 0

        if on_success is not None:
            on_success(deleted)
        return deleted

    def collection_options(self) -> dict[str, Any]:
        """Build the create-collection options: validator schema and capacity limits."""
        required = [name for name, field in self._fields.items() if field.is_mandatory]
        properties = {name: field.get_validator_properties() for name, field in self._fields.items()}

        schema: dict[str, Any] = {"bsonType": "object", "properties": properties}
        if required:
            schema["required"] = required
        options: dict[str, Any] = {"validator": {"$jsonSchema": schema}}

        if self.options.max_size_in_bytes:
            options["capped"] = True
            options["size"] = self.options.max_size_in_bytes
        if self.options.max_count:
            options["max"] = self.options.max_count
        return options

    def index_specs(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """Return ``(indexes, unique_indexes)`` as lists of ``{field: index_type}``."""
        indexes: list[dict[str, Any]] = []
        unique_indexes: list[dict[str, Any]] = []
        for name, field in self._fields.items():
            if field.is_index:
                spec = {name: field.index_type}
                (unique_indexes if field.is_unique_index else indexes).append(spec)
        return indexes, unique_indexes

    async def create_collection(
        self,
        on_success: Callable[[], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> None:
        """
        Create this model's collection with its validator, then its indexes.

        Issues create-collection, then the non-unique index batch, then the
        unique index batch. Empty batches succeed without a request.
        """
        connection = self.connection
        name = self.collection_name
        options = self.collection_options()
        indexes, unique_indexes = self.index_specs()

        connection.logger.debug("Create collection '%s' with properties: %s", name, options)
        try:
            await connection.create_collection(name, options)
            connection.logger.debug("Collection '%s' created successfully. Create indexes..", name)
            await connection.create_index(name, indexes, {"unique": False})
            await connection.create_index(name, unique_indexes, {"unique": True})
        except StorageError as e:
            callback_or_raise(e, on_error)
            return

        connection.logger.debug("Done creating collection: '%s'.", name)
        if on_success is not None:
            on_success()

    async def drop_collection(
        self,
        on_success: Callable[[], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> None:
        """Drop this model's collection."""
        connection = self.connection
        try:
            await connection.drop_collection(self.collection_name)
        except StorageError as e:
            callback_or_raise(e, on_error)
            return

        if on_success is not None:
            on_success()

    def __repr__(self):
        return f"<ModelClassWrapper model={self._class.__name__} collection={self.collection_name!r}>"


def _ignore_not_found() -> None:
    return None
