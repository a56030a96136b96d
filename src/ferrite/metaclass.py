from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .base import Field
from .collection import ModelClassWrapper, ModelOptions
from .errors import PreconditionError
from .state import _MODEL_REGISTRY, CREATION_TIME_KEY, DEFAULT_PRIMARY_KEY, LAST_UPDATE_TIME_KEY, OBJECT_VERSION_KEY

if TYPE_CHECKING:
    from .connection import Connection

_RESERVED_FIELD_NAMES = frozenset({CREATION_TIME_KEY, LAST_UPDATE_TIME_KEY, OBJECT_VERSION_KEY})


class FieldProperty:
    """Attribute descriptor routing a tracked field through the instance wrapper."""

    def __init__(self, field_name: str):
        self.field_name = field_name

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance.record.get(self.field_name)

    def __set__(self, instance, value):
        instance.record.set(self.field_name, value)

    def __repr__(self):
        return f"FieldProperty(field_name={self.field_name!r})"


def register_model(
    cls: type,
    fields: Mapping[str, Field],
    connection: "Connection | None" = None,
    **options: Any,
) -> ModelClassWrapper:
    """
    Turn a class into a persistent model.

    Attaches a ``ModelClassWrapper`` as ``cls.collection`` and installs one
    ``FieldProperty`` per field.

    Args:
        cls: The model class.
        fields: Field name to descriptor, in declaration order.
        connection: Bind the model to this connection instead of the default one.
        **options: ``ModelOptions`` values (collection_name, max_size_in_bytes, ...).

    Returns:
        The class wrapper.

    Raises:
        PreconditionError: If the class is already registered, a field name
            collides with an existing attribute, a field asks for a unique
            index without an index, or a custom primary key is not a declared field.
    """
    if cls.__dict__.get("collection") is not None:
        raise PreconditionError(f"build_model() already called on class {cls.__name__}.")

    model_options = ModelOptions(**options)
    fields = dict(fields)
    for field_name, descriptor in fields.items():
        _validate_field(cls, field_name, descriptor)
    if model_options.primary_key != DEFAULT_PRIMARY_KEY and model_options.primary_key not in fields:
        raise PreconditionError(
            f"Primary key '{model_options.primary_key}' of {cls.__name__} must be a declared field."
        )

    wrapper = ModelClassWrapper(cls, fields, model_options, connection)
    cls.collection = wrapper
    for field_name in fields:
        setattr(cls, field_name, FieldProperty(field_name))

    _MODEL_REGISTRY.register(cls)
    return wrapper


def _validate_field(cls: type, field_name: str, descriptor: Any) -> None:
    if not isinstance(field_name, str) or not field_name.isidentifier():
        raise PreconditionError(f"Invalid field name {field_name!r} in class '{cls.__name__}'.")
    if field_name in _RESERVED_FIELD_NAMES:
        raise PreconditionError(
            f"Cannot define field '{field_name}' in class '{cls.__name__}': the name is reserved."
        )
    if not isinstance(descriptor, Field):
        raise TypeError(
            f"Field '{field_name}' in class '{cls.__name__}' must be a Field instance, "
            f"got {type(descriptor).__name__}."
        )

    # fields inherited from a registered base may be redeclared
    if hasattr(cls, field_name) and not isinstance(getattr(cls, field_name), FieldProperty):
        raise PreconditionError(
            f"Cannot define field '{field_name}' in class '{cls.__name__}': "
            "a property with that name already exists!"
        )

    if descriptor.is_unique_index and not descriptor.is_index:
        raise PreconditionError(
            f"Field '{field_name}' in class '{cls.__name__}' sets unique=True without index=True; "
            "uniqueness is only enforced through an index."
        )


class ModelMetaclass(type):
    """
    Metaclass for Ferrite models that registers declared fields automatically.

    ``Field`` class attributes are collected in declaration order and removed
    from the class body. Class keyword arguments become ``ModelOptions``:

        class Book(Model, collection_name="library"):
            title = StringField(max_length=200)

    A class is registered when it declares fields, passes options, or inherits
    from a registered model. Pass ``abstract=True`` to keep the fields for
    subclasses without registering the class itself.
    """

    def __new__(mcs, name, bases, namespace, abstract: bool = False, **kwargs):
        # Phase 1: pull declared fields out of the class body
        declared = mcs._collect_declared_fields(namespace)

        # Phase 2: class creation
        cls = super().__new__(mcs, name, bases, namespace)
        cls.__declared_fields__ = declared

        # Phase 3: registration
        if not bases:
            return cls

        inherited = mcs._inherited_fields(bases)
        if abstract:
            cls.__declared_fields__ = {**inherited, **declared}
            return cls
        if declared or inherited or kwargs:
            register_model(cls, {**inherited, **declared}, **kwargs)
        return cls

    def __init__(cls, name, bases, namespace, abstract: bool = False, **kwargs):
        super().__init__(name, bases, namespace)

    @staticmethod
    def _collect_declared_fields(namespace: dict) -> dict[str, Field]:
        declared = {key: value for key, value in namespace.items() if isinstance(value, Field)}
        for key in declared:
            del namespace[key]
        return declared

    @staticmethod
    def _inherited_fields(bases: tuple) -> dict[str, Field]:
        """Collect fields from registered or abstract bases, base order first."""
        inherited: dict[str, Field] = {}
        for base in reversed(bases):
            wrapper = base.__dict__.get("collection")
            if wrapper is not None:
                inherited.update(
                    {name: wrapper.get_field_descriptor(name) for name in wrapper.field_names}
                )
            else:
                inherited.update(getattr(base, "__declared_fields__", {}))
        return inherited
