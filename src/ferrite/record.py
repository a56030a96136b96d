"""The instance-level model API, exposed as ``instance.record``."""

import asyncio
import functools
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .base import Field
from .errors import NotFoundError, PreconditionError, StorageError, callback_or_raise
from .state import CREATION_TIME_KEY, DEFAULT_PRIMARY_KEY, LAST_UPDATE_TIME_KEY, OBJECT_VERSION_KEY, LoadState

if TYPE_CHECKING:
    from .connection import Connection


class ModelInstanceWrapper:
    """
    Field storage, dirty tracking and the load/save lifecycle of one model instance.

    Field values live in an ordered map that also holds the primary key and
    the bookkeeping keys (creation time, last update time, version). Tracked
    attributes on the model read and write this map through ``get``/``set``.
    """

    def __init__(self, instance: Any):
        self._object = instance
        self._class_wrapper = type(instance).collection

        # field values, including bookkeeping keys
        self._fields: dict[str, Any] = {}
        self._dirty_fields: set[str] = set()

        self._last_load_time: datetime | None = None
        self._is_loaded_from_db = False
        self._is_saved_to_db = False
        self._load_state = LoadState.NEW
        self._on_first_load: Callable[[Any], Any] | None = None
        self._pending: asyncio.Task | None = None
        # primary key of the stored document, which update filters must use
        self._stored_key: Any = None

    def init_defaults(self) -> None:
        """Set every field to its default without marking anything dirty."""
        for field_name in self.field_names:
            self._fields[field_name] = self.get_default(field_name)

    def get(self, field_name: str) -> Any:
        return self._fields.get(field_name)

    def set(self, field_name: str, value: Any) -> None:
        """
        Assign a field value, marking the field dirty if the value changed.

        Values are not validated here; ``clean`` runs when the instance is saved.
        """
        descriptor = self.get_field_descriptor(field_name)
        if descriptor is None:
            raise KeyError(f"'{field_name}' is not a field of '{type(self._object).__name__}'")

        if descriptor.is_equal(value, self._fields.get(field_name)):
            return
        self._fields[field_name] = value
        self._dirty_fields.add(field_name)

    def get_default(self, field_name: str) -> Any:
        return self._class_wrapper.get_default(field_name)

    def set_to_default(self, field_name: str) -> None:
        setattr(self._object, field_name, self.get_default(field_name))

    def get_field_descriptor(self, field_name: str) -> Field | None:
        return self._class_wrapper.get_field_descriptor(field_name)

    @property
    def field_names(self) -> list[str]:
        return self._class_wrapper.field_names

    @property
    def collection_name(self) -> str:
        return self._class_wrapper.collection_name

    @property
    def primary_key(self) -> str:
        return self._class_wrapper.primary_key

    @property
    def id(self) -> Any:
        return self._fields.get(self.primary_key)

    @id.setter
    def id(self, value: Any) -> None:
        self._fields[self.primary_key] = value

    @property
    def is_dirty(self) -> bool:
        return bool(self._dirty_fields)

    @property
    def dirty_fields(self) -> list[str]:
        return [name for name in self._fields if name in self._dirty_fields]

    @property
    def creation_time(self) -> datetime | None:
        return self._fields.get(CREATION_TIME_KEY)

    @property
    def last_update_time(self) -> datetime | None:
        return self._fields.get(LAST_UPDATE_TIME_KEY)

    @property
    def last_load_time(self) -> datetime | None:
        return self._last_load_time

    @property
    def object_version(self) -> int | None:
        return self._fields.get(OBJECT_VERSION_KEY)

    @property
    def is_loaded_from_db(self) -> bool:
        return self._is_loaded_from_db

    @property
    def is_saved_to_db(self) -> bool:
        return self._is_saved_to_db

    @property
    def is_in_db(self) -> bool:
        """Whether this instance is known to be in storage, through save() or a load."""
        return self._is_loaded_from_db or self._is_saved_to_db

    @property
    def load_state(self) -> LoadState:
        return self._load_state

    @property
    def on_loaded(self) -> Callable[[Any], Any] | None:
        return self._on_first_load

    @on_loaded.setter
    def on_loaded(self, callback: Callable[[Any], Any] | None) -> None:
        """
        Set the callback fired on the first successful load only.

        If the instance was already loaded, the callback is invoked immediately.
        """
        self._on_first_load = callback
        if callback is not None and self._is_loaded_from_db:
            callback(self._object)

    def to_document(self, dirty_only: bool = False) -> dict[str, Any]:
        """
        Build the document to write, cleaning every included field.

        Args:
            dirty_only: Only include dirty fields (and fields mirroring a
                ``source`` attribute).

        Returns:
            The cleaned document, stamped with the bookkeeping fields.

        Raises:
            ValidationError: If any field rejects its value.
        """
        document: dict[str, Any] = {}
        for key, value in self._fields.items():
            descriptor = self.get_field_descriptor(key)
            mirrors_source = descriptor is not None and bool(descriptor.source)
            if dirty_only and key not in self._dirty_fields and not mirrors_source:
                continue
            document[key] = descriptor.clean(self._object, value) if descriptor else value

        # storage assigns the key when none is set
        if self.primary_key in document and document[self.primary_key] is None:
            del document[self.primary_key]

        now = datetime.now(timezone.utc)
        document[LAST_UPDATE_TIME_KEY] = now
        document[CREATION_TIME_KEY] = self._fields.get(CREATION_TIME_KEY) or now
        document[OBJECT_VERSION_KEY] = (self._fields.get(OBJECT_VERSION_KEY) or 0) + 1
        return document

    async def save(
        self,
        on_success: Callable[[Any], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
        force: bool = False,
    ) -> None:
        """
        Persist this instance.

        Instances not yet in storage are inserted with every field. Instances
        already in storage are updated with their dirty fields only (every
        field when ``force`` is set); with nothing dirty and no ``force`` no
        request is made at all.

        Args:
            on_success: Called with the model instance after a successful save.
            on_error: Called with storage errors, and with a ``NotFoundError``
                when an update matches no stored document. Without it they
                are raised.
            force: Write every field even if nothing changed.

        Raises:
            ValidationError: If a field rejects its value. Nothing is written.
        """
        self._object.before_save_to_db()
        connection = self._class_wrapper.connection
        name = self.collection_name

        if self.is_in_db:
            if not (force or self.is_dirty):
                connection.logger.debug(
                    "Skip saving %s.%s because the object is not dirty.", name, self.id
                )
                if on_success is not None:
                    on_success(self._object)
                return

            document = self.to_document(dirty_only=not force)
            connection.logger.debug(
                "Save object %s.%s (force: %s, dirty fields: '%s').",
                name,
                self.id,
                force,
                ",".join(self.dirty_fields),
            )
            query = self._stored_key_query()
            try:
                matched = await connection.update_one(query, document, name)
            except StorageError as e:
                callback_or_raise(e, on_error)
                return
            if not matched:
                callback_or_raise(
                    NotFoundError(f"Document matching query {query!r} not found in collection '{name}'!"),
                    on_error,
                )
                return
            self._after_save_to_db(document, None)
        else:
            document = self.to_document(dirty_only=False)
            connection.logger.debug("Insert new object %s.%s.", name, self.id)
            try:
                inserted_id = await connection.insert_one(document, name)
            except StorageError as e:
                callback_or_raise(e, on_error)
                return
            self._after_save_to_db(document, inserted_id)

        if on_success is not None:
            on_success(self._object)

    async def reload(
        self,
        on_success: Callable[[Any], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> Any:
        """
        Re-read this instance from storage, overwriting its field values.

        Raises:
            PreconditionError: If the instance was never loaded or saved.
        """
        if not self.is_in_db:
            raise PreconditionError(
                "Cannot call 'reload()' on instances that were not loaded / saved to DB!"
            )
        connection = self._class_wrapper.connection
        return await self._hydrate(connection, self._stored_key_query(), on_success, None, on_error)

    async def resolve(
        self,
        on_success: Callable[[Any], Any] | None = None,
        on_not_found: Callable[[], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> Any | None:
        """
        Make sure this instance is hydrated, and return it.

        Waits for an in-flight load (for example one started by
        ``Model.collection.load`` or a foreign key reference) instead of
        issuing a second request. Key-only references are fetched by primary key.

        Returns:
            The model instance, or None if no document was found.
        """
        if self._pending is not None and not self._pending.done():
            try:
                await self._pending
            except (StorageError, NotFoundError) as e:
                callback_or_raise(e, on_error)
                return None
            if self._is_loaded_from_db:
                if on_success is not None:
                    on_success(self._object)
                return self._object
            if on_not_found is not None:
                on_not_found()
                return None
            callback_or_raise(
                NotFoundError(
                    f"Document with key {self.id!r} not found in collection '{self.collection_name}'!"
                ),
                on_error,
            )
            return None

        if self._is_loaded_from_db:
            if on_success is not None:
                on_success(self._object)
            return self._object

        if self.id is None:
            raise PreconditionError("Cannot resolve an instance that has no primary key.")
        connection = self._class_wrapper.connection
        return await self._start_hydration(
            connection, self._stored_key_query(), on_success, on_not_found, on_error
        )

    async def delete(
        self,
        on_success: Callable[[Any], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> None:
        """
        Delete this instance's document by primary key.

        The instance stays usable; saving it again inserts a new document.
        """
        connection = self._class_wrapper.connection
        query = self._stored_key_query()
        connection.logger.debug("Delete object %s.%s.", self.collection_name, self.id)
        try:
            deleted = await connection.delete_one(query, self.collection_name)
        except StorageError as e:
            callback_or_raise(e, on_error)
            return

        if not deleted:
            callback_or_raise(
                NotFoundError(
                    f"Document matching query {query!r} not found in collection '{self.collection_name}'!"
                ),
                on_error,
            )
            return

        self._is_loaded_from_db = False
        self._is_saved_to_db = False
        self._stored_key = None
        self._object.after_deleted_from_db()
        if on_success is not None:
            on_success(self._object)

    def _start_hydration(
        self,
        connection: "Connection",
        query: dict[str, Any],
        on_success: Callable[[Any], Any] | None,
        on_not_found: Callable[[], Any] | None,
        on_error: Callable[[BaseException], Any] | None,
        resolve_references: bool = True,
    ) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        self._pending = loop.create_task(
            self._hydrate(connection, query, on_success, on_not_found, on_error, resolve_references)
        )
        self._pending.add_done_callback(functools.partial(_log_failed_load, connection, self))
        return self._pending

    async def _hydrate(
        self,
        connection: "Connection",
        query: dict[str, Any],
        on_success: Callable[[Any], Any] | None,
        on_not_found: Callable[[], Any] | None,
        on_error: Callable[[BaseException], Any] | None,
        resolve_references: bool = True,
    ) -> Any | None:
        try:
            document = await connection.find_one(query, self.collection_name)
        except StorageError as e:
            callback_or_raise(e, on_error)
            return None

        if document is None:
            if on_not_found is not None:
                on_not_found()
                return None
            callback_or_raise(
                NotFoundError(
                    f"Document matching query {query!r} not found in collection '{self.collection_name}'!"
                ),
                on_error,
            )
            return None

        self._set_from_db_document(document, invoke_post_load_events=True)
        if on_success is not None:
            on_success(self._object)
        # false for auto-resolved references
        if resolve_references:
            self._schedule_reference_resolution()
        return self._object

    def _set_from_db_document(self, document: dict[str, Any], invoke_post_load_events: bool) -> None:
        for key, value in document.items():
            descriptor = self.get_field_descriptor(key)
            self._fields[key] = descriptor.init_after_load(self._object, value) if descriptor else value
        if self.primary_key in document:
            self._stored_key = self.id

        if invoke_post_load_events:
            self._after_load_from_db()

    def _after_load_from_db(self) -> None:
        first_load = self._load_state is LoadState.NEW
        self._load_state = LoadState.LOADED_ONCE if first_load else LoadState.LOADED_AGAIN
        self._is_loaded_from_db = True
        self._dirty_fields = set()
        self._last_load_time = datetime.now(timezone.utc)
        self._object.after_loaded_from_db()
        if first_load and self._on_first_load is not None:
            self._on_first_load(self._object)

    def _after_save_to_db(self, document: dict[str, Any], inserted_id: Any) -> None:
        self._is_saved_to_db = True
        self._dirty_fields = set()

        # declared primary keys are never replaced by the storage id
        if self.primary_key == DEFAULT_PRIMARY_KEY and self.id is None and inserted_id is not None:
            self.id = inserted_id
        self._stored_key = self.id
        self._fields[CREATION_TIME_KEY] = self._fields.get(CREATION_TIME_KEY) or document[CREATION_TIME_KEY]
        self._fields[LAST_UPDATE_TIME_KEY] = document[LAST_UPDATE_TIME_KEY]
        self._fields[OBJECT_VERSION_KEY] = document[OBJECT_VERSION_KEY]

        self._object.after_saved_to_db()

    def _stored_key_query(self) -> dict[str, Any]:
        """Match the stored document, even if the primary key was reassigned since."""
        key = self._stored_key if self._stored_key is not None else self.id
        return {self.primary_key: key}

    def _schedule_reference_resolution(self) -> None:
        """
        Start resolving loaded foreign key references, each in its own task.

        Only one level deep: the resolved references do not schedule theirs.
        """
        for field_name in self.field_names:
            descriptor = self.get_field_descriptor(field_name)
            for reference in descriptor.pending_references(self._fields.get(field_name)):
                wrapper = reference.record
                if wrapper._pending is not None and not wrapper._pending.done():
                    continue
                connection = wrapper._class_wrapper.connection
                wrapper._start_hydration(
                    connection,
                    {wrapper.primary_key: wrapper.id},
                    None,
                    functools.partial(_log_dangling_reference, connection, wrapper, field_name),
                    functools.partial(_log_reference_error, connection, wrapper, field_name),
                    resolve_references=False,
                )

    def __repr__(self):
        return (
            f"<ModelInstanceWrapper model={type(self._object).__name__} id={self.id!r} "
            f"dirty={self.dirty_fields!r} state={self._load_state.value}>"
        )


def _log_dangling_reference(connection: "Connection", wrapper: ModelInstanceWrapper, field_name: str) -> None:
    connection.logger.warning(
        "Reference '%s' points to missing document %s.%s.", field_name, wrapper.collection_name, wrapper.id
    )


def _log_reference_error(
    connection: "Connection", wrapper: ModelInstanceWrapper, field_name: str, error: BaseException
) -> None:
    connection.logger.warning(
        "Could not resolve reference '%s' to %s.%s: %s", field_name, wrapper.collection_name, wrapper.id, error
    )


def _log_failed_load(connection: "Connection", wrapper: ModelInstanceWrapper, task: asyncio.Task) -> None:
    if task.cancelled() or task.exception() is None:
        return
    connection.logger.warning("Load from %s failed: %s", wrapper.collection_name, task.exception())
