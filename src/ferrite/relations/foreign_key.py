from typing import Any

from pydantic_core import PydanticUndefined

from ..base import Field
from ..errors import PreconditionError
from ..state import _MODEL_REGISTRY


class ForeignKeyField(Field):
    """
    A reference to another model, stored as the referenced primary key.

    Writing requires an instance of exactly the referenced model class that
    already has a primary key. Loading turns the stored key into a key-only
    reference instance of that model; it is hydrated separately through
    ``reference.record.resolve()``. With ``auto_resolve`` (the default), the
    owner's load schedules that resolution in its own task once the owner's
    success callback has run. Only the owner's references are resolved this
    way; theirs stay key-only until resolved explicitly.

    Examples:
        >>> class Book(Model):
        ...     author = ForeignKeyField(model="Author", can_be_null=True)
    """

    def __init__(
        self,
        default: Any = PydanticUndefined,
        *,
        model: Any,
        auto_resolve: bool = True,
        **kwargs: Any,
    ):
        """
        Args:
            default: Default value (``None`` when omitted).
            model: The referenced model class, or its registered class name.
            auto_resolve: Resolve loaded references automatically.
            **kwargs: Generic field options (see ``Field``).
        """
        if model is None:
            raise ValueError("Foreign key must provide a 'model' argument.")
        if not isinstance(model, (str, type)):
            raise TypeError("Foreign key model must be a Model class or a model name.")
        super().__init__(default, **kwargs)
        self._model = model
        self.auto_resolve = auto_resolve

    @property
    def model(self) -> type:
        """The referenced model class, resolved through the registry on first use."""
        if isinstance(self._model, str):
            target = _MODEL_REGISTRY.get(self._model)
            if target is None:
                raise PreconditionError(
                    f"Foreign key resolution failed: model '{self._model}' is not registered"
                )
            self._model = target
        return self._model

    @property
    def model_name(self) -> str:
        return self._model if isinstance(self._model, str) else self._model.__name__

    def clean(self, owner: Any, value: Any) -> Any:
        value = super().clean(owner, value)
        if value is None and self.can_be_null:
            return None

        if type(value) is not self.model:
            raise self._error(
                f"Invalid foreign key value {value!r}: value not an instance of '{self.model_name}'."
            )
        if value.record.id is None:
            raise self._error(
                f"Invalid foreign key value {value!r}: trying to save a foreign key to an object "
                "that doesn't have an id yet - perhaps it was never saved?"
            )
        return value.record.id

    def init_after_load(self, owner: Any, value: Any) -> Any:
        if value is not None:
            value = self.model.collection.reference(value)
        return super().init_after_load(owner, value)

    def pending_references(self, value: Any) -> list[Any]:
        """Return the loaded references in ``value`` that still need resolving."""
        if not self.auto_resolve or value is None:
            return []
        if getattr(value, "record", None) is None or value.record.is_loaded_from_db:
            return []
        return [value]

    def clone_data(self, value: Any) -> Any:
        # references are never copied
        return value

    def is_equal(self, a: Any, b: Any) -> bool:
        if a is None and b is None:
            return True
        if a is None or b is None:
            return False
        if getattr(a, "record", None) is None or getattr(b, "record", None) is None:
            return False
        if a.record.id is None or b.record.id is None:
            return a is b
        return type(a) is type(b) and a.record.id == b.record.id

    def get_validator_properties(self) -> dict[str, Any]:
        return {
            "description": f"must be a reference to '{self.model_name}'" + self._required_suffix(),
        }
