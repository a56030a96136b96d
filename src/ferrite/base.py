import copy
from typing import Any

from pydantic_core import PydanticUndefined

from .errors import ValidationError


class Field:
    """
    Storage contract for one model attribute.

    This is also the generic field: it accepts any value and applies no
    constraints. Typed variants override ``clean`` (calling the base first),
    ``init_after_load`` (calling the base last), ``get_validator_properties``,
    ``type_default`` and ``index_type``.

    Descriptors are shared by every instance of the model, so they never hold
    per-instance state.
    """

    def __init__(
        self,
        default: Any = PydanticUndefined,
        *,
        can_be_null: bool = False,
        index: bool = False,
        unique: bool = False,
        source: str | None = None,
        source_readonly: bool = False,
    ):
        """
        Initialize the field descriptor.

        Args:
            default: Value given to new instances. When omitted, the variant's
                ``type_default`` is used.
            can_be_null: Whether ``None`` is a valid stored value.
            index: Whether ``create_collection`` should index this field.
            unique: Whether the index is unique. Requires ``index=True``.
            source: Name of another attribute on the model. When set, the
                stored value is always copied from that attribute, and loading
                writes the stored value back onto it.
            source_readonly: Only copy from ``source`` on write; never set it
                on load.
        """
        self.can_be_null = can_be_null
        self.index = index
        self.unique = unique
        self.source = source
        self.source_readonly = source_readonly
        self._default = self.type_default if default is PydanticUndefined else default

    @property
    def is_index(self) -> bool:
        return bool(self.index)

    @property
    def is_unique_index(self) -> bool:
        return bool(self.unique)

    @property
    def is_mandatory(self) -> bool:
        return not self.can_be_null

    @property
    def default(self) -> Any:
        """A fresh copy of the default value."""
        return self.clone_data(self._default)

    @property
    def type_default(self) -> Any:
        return None

    @property
    def index_type(self) -> Any:
        return "hashed"

    def clean(self, owner: Any, value: Any) -> Any:
        """
        Validate and normalize a value before it is written to storage.

        Args:
            owner: The model instance the value belongs to.
            value: The raw in-memory value.

        Returns:
            The value to store.

        Raises:
            ValidationError: If the value is not acceptable.
        """
        if self.source:
            return getattr(owner, self.source)
        return value

    def init_after_load(self, owner: Any, value: Any) -> Any:
        """
        Turn a stored value back into its in-memory form after a load.

        Args:
            owner: The model instance being hydrated.
            value: The value as read from storage.

        Returns:
            The value to keep on the instance.
        """
        if self.source and not self.source_readonly:
            setattr(owner, self.source, value)
        return value

    def get_validator_properties(self) -> dict[str, Any]:
        """Return the storage-side schema fragment describing this field."""
        return {}

    def pending_references(self, value: Any) -> list[Any]:
        """Return loaded model references inside ``value`` that are not hydrated yet."""
        return []

    def clone_data(self, value: Any) -> Any:
        if value is None:
            return None
        return copy.deepcopy(value)

    def is_equal(self, a: Any, b: Any) -> bool:
        """Return True if two raw (not yet cleaned) values are the same."""
        if a is b:
            return True
        # 1 == True and 1 == 1.0, but storing either changes the document
        return type(a) is type(b) and bool(a == b)

    def _required_suffix(self) -> str:
        return " and is required" if self.is_mandatory else ""

    def _error(self, message: str) -> ValidationError:
        return ValidationError(self, message)

    def __repr__(self):
        return f"{type(self).__name__}(default={self._default!r}, can_be_null={self.can_be_null!r})"
