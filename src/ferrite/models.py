from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar, Self

from .base import Field
from .collection import ModelClassWrapper
from .errors import PreconditionError
from .metaclass import ModelMetaclass, register_model
from .record import ModelInstanceWrapper

if TYPE_CHECKING:
    from .connection import Connection


class Model(metaclass=ModelMetaclass):
    """
    Base class for all Ferrite models.

    Declare fields as class attributes; the class is registered when it is
    created. The class-level API lives on ``Model.collection`` and the
    per-instance API on ``instance.record``.

    Example:
        >>> class Author(Model):
        ...     name = StringField(max_length=100)
        ...     email = EmailField(index=True, unique=True)
        >>> author = Author(name="Ursula")
        >>> await author.record.save()
    """

    collection: ClassVar[ModelClassWrapper | None] = None
    record: ModelInstanceWrapper | None = None

    def __new__(cls, *args: Any, **kwargs: Any) -> Self:
        # defaults are in place before any subclass __init__ body runs
        if cls.__dict__.get("collection") is None:
            raise PreconditionError(
                f"Cannot create instance of '{cls.__name__}' before build_model() is called!"
            )
        instance = super().__new__(cls)
        instance.record = ModelInstanceWrapper(instance)
        instance.record.init_defaults()
        return instance

    def __init__(self, **values: Any):
        """
        Initialize the instance, assigning ``values`` through the tracked fields.

        Assigned values that differ from the defaults are marked dirty.
        """
        field_names = self.record.field_names
        for field_name, value in values.items():
            if field_name not in field_names:
                raise TypeError(
                    f"{type(self).__name__}() got an unexpected keyword argument '{field_name}'"
                )
            setattr(self, field_name, value)

    @classmethod
    def build_model(
        cls,
        fields: Mapping[str, Field],
        connection: "Connection | None" = None,
        **options: Any,
    ) -> ModelClassWrapper:
        """
        Register this class explicitly with the given fields.

        Args:
            fields: Field name to descriptor, in declaration order.
            connection: Bind the model to this connection.
            **options: ``ModelOptions`` values.

        Returns:
            The class wrapper, also available as ``cls.collection``.
        """
        return register_model(cls, fields, connection=connection, **options)

    def after_loaded_from_db(self) -> None:
        """Called after this object was loaded from the database."""

    def before_save_to_db(self) -> None:
        """Called before this object is saved to the database."""

    def after_saved_to_db(self) -> None:
        """Called after this object was successfully saved."""

    def after_deleted_from_db(self) -> None:
        """Called after this object was successfully deleted."""

    def __repr__(self):
        record = self.record
        if record is None:
            return f"<{type(self).__name__}>"
        return f"<{type(self).__name__} {record.primary_key}={record.id!r}>"
