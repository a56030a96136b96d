"""The field type catalog: typed descriptors built on the generic ``Field``."""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic_core import PydanticUndefined

from .base import Field

EMAIL_PATTERN = r"^\w+([\.-]?\w+)*@\w+([\.-]?\w+)*(\.\w{2,3})+$"
_EMAIL_RE = re.compile(EMAIL_PATTERN)


def _bson_type(name: str, can_be_null: bool) -> str | list[str]:
    return [name, "null"] if can_be_null else name


class BooleanField(Field):
    """Stores ``bool(value)``; ``None`` survives only when the field can be null."""

    @property
    def type_default(self) -> Any:
        return False

    @property
    def index_type(self) -> Any:
        return 1

    def clean(self, owner: Any, value: Any) -> Any:
        value = super().clean(owner, value)
        if value is None and self.can_be_null:
            return None
        return bool(value)

    def get_validator_properties(self) -> dict[str, Any]:
        return {
            "bsonType": _bson_type("bool", self.can_be_null),
            "description": "must be a boolean" + self._required_suffix(),
        }


class NumericField(Field):
    """
    A number parsed with ``int`` or ``float`` and checked against optional bounds.

    Examples:
        >>> NumericField(parser=int).clean(None, "3")
        3
    """

    def __init__(
        self,
        default: Any = PydanticUndefined,
        *,
        min_value: float | None = None,
        max_value: float | None = None,
        parser: Callable[[Any], Any] = float,
        **kwargs: Any,
    ):
        """
        Args:
            default: Default value (``0`` when omitted).
            min_value: Smallest accepted value.
            max_value: Largest accepted value.
            parser: ``int`` or ``float``; applied to every value before the
                bounds are checked.
            **kwargs: Generic field options (see ``Field``).
        """
        super().__init__(default, **kwargs)
        self.min_value = min_value
        self.max_value = max_value
        self.parser = parser

    @property
    def type_default(self) -> Any:
        return 0

    @property
    def index_type(self) -> Any:
        return 1

    @property
    def is_integer(self) -> bool:
        return self.parser is int

    def clean(self, owner: Any, value: Any) -> Any:
        value = super().clean(owner, value)
        if value is None and self.can_be_null:
            return None

        origin = value
        parser_name = getattr(self.parser, "__name__", repr(self.parser))
        try:
            value = self.parser(value)
        except (TypeError, ValueError, OverflowError) as e:
            raise self._error(
                f"Invalid numeric value {origin!r}: not a valid number (using parser: {parser_name})."
            ) from e

        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._error(
                f"Invalid numeric value {origin!r}: not a valid number (using parser: {parser_name})."
            )
        if isinstance(value, float) and not math.isfinite(value):
            raise self._error(f"Invalid numeric value {origin!r}: not a finite number.")

        if self.min_value is not None and value < self.min_value:
            raise self._error(
                f"Invalid numeric value {value!r}: may not be smaller than {self.min_value}."
            )
        if self.max_value is not None and value > self.max_value:
            raise self._error(
                f"Invalid numeric value {value!r}: may not be larger than {self.max_value}."
            )
        return value

    def get_validator_properties(self) -> dict[str, Any]:
        if self.is_integer:
            ret: dict[str, Any] = {"bsonType": ["int", "long"]}
            parts = ["an int"]
        else:
            ret = {"bsonType": "double"}
            parts = ["a double"]
        if self.can_be_null:
            bson_type = ret["bsonType"]
            ret["bsonType"] = [*bson_type, "null"] if isinstance(bson_type, list) else [bson_type, "null"]
        if self.min_value is not None:
            ret["minimum"] = self.min_value
            parts.append(f"not smaller than {self.min_value}")
        if self.max_value is not None:
            ret["maximum"] = self.max_value
            parts.append(f"not larger than {self.max_value}")
        ret["description"] = "must be " + ", ".join(parts) + self._required_suffix()
        return ret


class StringField(Field):
    """Stores ``str(value)`` within optional length bounds."""

    def __init__(
        self,
        default: Any = PydanticUndefined,
        *,
        min_length: int | None = None,
        max_length: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(default, **kwargs)
        self.min_length = min_length
        self.max_length = max_length

    @property
    def type_default(self) -> Any:
        return ""

    @property
    def index_type(self) -> Any:
        return "text"

    def clean(self, owner: Any, value: Any) -> Any:
        value = super().clean(owner, value)
        if value is None and self.can_be_null:
            return None

        value = str(value)
        if self.max_length is not None and len(value) > self.max_length:
            raise self._error(
                f"Invalid string value {value!r}: may not be longer than {self.max_length}."
            )
        if self.min_length is not None and len(value) < self.min_length:
            raise self._error(
                f"Invalid string value {value!r}: may not be shorter than {self.min_length}."
            )
        return value

    def _length_properties(self, ret: dict[str, Any]) -> dict[str, Any]:
        if self.max_length is not None:
            ret["maxLength"] = self.max_length
        if self.min_length is not None:
            ret["minLength"] = self.min_length
        return ret

    def get_validator_properties(self) -> dict[str, Any]:
        return self._length_properties(
            {
                "bsonType": _bson_type("string", self.can_be_null),
                "description": "must be a string" + self._required_suffix(),
            }
        )


class EmailField(StringField):
    """A string that must look like an email address."""

    def clean(self, owner: Any, value: Any) -> Any:
        value = super().clean(owner, value)
        if value is None:
            return None
        if not _EMAIL_RE.match(value):
            raise self._error(f"Invalid email value {value!r}: not a valid email pattern.")
        return value

    def get_validator_properties(self) -> dict[str, Any]:
        return self._length_properties(
            {
                "bsonType": _bson_type("string", self.can_be_null),
                "pattern": EMAIL_PATTERN,
                "description": "must be an email" + self._required_suffix(),
            }
        )


class DateField(Field):
    """
    A ``datetime`` value.

    ``None`` is always accepted by ``clean``. With ``auto_now=True`` it is
    replaced by the current UTC time instead.
    """

    def __init__(self, default: Any = PydanticUndefined, *, auto_now: bool = False, **kwargs: Any):
        super().__init__(default, **kwargs)
        self.auto_now = auto_now

    def clean(self, owner: Any, value: Any) -> Any:
        value = super().clean(owner, value)
        if value is None:
            return datetime.now(timezone.utc) if self.auto_now else None
        if not isinstance(value, datetime):
            raise self._error(f"Invalid date value {value!r}: not a date.")
        return value

    def get_validator_properties(self) -> dict[str, Any]:
        return {
            "bsonType": _bson_type("date", self.can_be_null),
            "description": "must be a date" + self._required_suffix(),
        }


class ChoiceField(Field):
    """A string restricted to a closed set of choices."""

    def __init__(self, default: Any = PydanticUndefined, *, choices: Iterable[Any], **kwargs: Any):
        if choices is None or isinstance(choices, (str, bytes)):
            raise ValueError("Must provide a 'choices' list for a choice field.")
        super().__init__(default, **kwargs)
        # dict keeps declaration order for the schema enum
        self.choices = tuple(dict.fromkeys(str(choice) for choice in choices))
        if not self.choices:
            raise ValueError("Must provide a 'choices' list for a choice field.")

    def clean(self, owner: Any, value: Any) -> Any:
        value = super().clean(owner, value)
        if value is None and self.can_be_null:
            return None

        value = str(value)
        if value not in self.choices:
            raise self._error(
                f"Invalid choice value {value!r}: value does not appear in possible choices "
                f"[{', '.join(self.choices)}]."
            )
        return value

    def get_validator_properties(self) -> dict[str, Any]:
        enum: list[Any] = list(self.choices)
        if self.can_be_null:
            enum.append(None)
        return {
            "enum": enum,
            "description": "can only be one of the following values: ["
            + ", ".join(self.choices)
            + "]"
            + self._required_suffix(),
        }


class ListField(Field):
    """
    A list of values.

    Lists longer than ``max_items`` are rejected, never truncated. Each item is
    cleaned by ``items_type`` when given, and duplicates are dropped after
    cleaning when ``remove_duplicates`` is set.
    """

    def __init__(
        self,
        default: Any = PydanticUndefined,
        *,
        items_type: Field | None = None,
        max_items: int | None = None,
        remove_duplicates: bool = False,
        **kwargs: Any,
    ):
        super().__init__(default, **kwargs)
        self.items_type = items_type
        self.max_items = max_items
        self.remove_duplicates = remove_duplicates

    @property
    def type_default(self) -> Any:
        return []

    def clean(self, owner: Any, value: Any) -> Any:
        value = super().clean(owner, value)
        if value is None and self.can_be_null:
            return None

        if not isinstance(value, (list, tuple)):
            raise self._error(f"Invalid list value {value!r}: not a list.")
        if self.max_items is not None and len(value) > self.max_items:
            raise self._error(
                f"Invalid list value {value!r}: list is too long ({len(value)} > {self.max_items})."
            )

        if self.items_type is not None:
            value = [self.items_type.clean(owner, item) for item in value]
        else:
            value = list(value)

        if self.remove_duplicates:
            unique: list[Any] = []
            for item in value:
                if item not in unique:
                    unique.append(item)
            value = unique
        return value

    def init_after_load(self, owner: Any, value: Any) -> Any:
        if self.items_type is not None and isinstance(value, list):
            value = [self.items_type.init_after_load(owner, item) for item in value]
        return super().init_after_load(owner, value)

    def pending_references(self, value: Any) -> list[Any]:
        if self.items_type is None or not isinstance(value, list):
            return []
        return [ref for item in value for ref in self.items_type.pending_references(item)]

    def get_validator_properties(self) -> dict[str, Any]:
        ret: dict[str, Any] = {
            "bsonType": _bson_type("array", self.can_be_null),
            "description": "must be a list" + self._required_suffix(),
        }
        if self.max_items is not None:
            ret["maxItems"] = self.max_items
        if self.remove_duplicates:
            ret["uniqueItems"] = True
        if self.items_type is not None:
            ret["items"] = self.items_type.get_validator_properties()
        return ret


class DictionaryField(Field):
    """
    A key-value mapping, optionally bound to a schema of nested fields.

    With a schema, the stored keys must be exactly the schema keys and every
    value is cleaned by its own descriptor. A schema requires an explicit
    default, since the empty dict would never satisfy it.
    """

    def __init__(
        self,
        default: Any = PydanticUndefined,
        *,
        schema: Mapping[str, Field] | None = None,
        **kwargs: Any,
    ):
        if schema and default is PydanticUndefined:
            raise ValueError(
                "When defining a DictionaryField schema you also have to set a corresponding default value."
            )
        super().__init__(default, **kwargs)
        self.schema = dict(schema) if schema else None

    @property
    def type_default(self) -> Any:
        return {}

    def clean(self, owner: Any, value: Any) -> Any:
        value = super().clean(owner, value)
        if value is None and self.can_be_null:
            return None

        if not isinstance(value, Mapping):
            raise self._error(f"Invalid dictionary value {value!r}: not a dictionary.")

        if self.schema is None:
            return dict(value)

        if set(value.keys()) != set(self.schema.keys()):
            raise self._error(
                f"Invalid dictionary value {value!r}: value keys don't match schema "
                f"(keys: {sorted(map(str, value.keys()))}, expected: {sorted(self.schema.keys())})."
            )
        return {key: field.clean(owner, value[key]) for key, field in self.schema.items()}

    def init_after_load(self, owner: Any, value: Any) -> Any:
        if self.schema is not None and isinstance(value, Mapping):
            value = {
                key: self.schema[key].init_after_load(owner, item) if key in self.schema else item
                for key, item in value.items()
            }
        return super().init_after_load(owner, value)

    def pending_references(self, value: Any) -> list[Any]:
        if self.schema is None or not isinstance(value, Mapping):
            return []
        return [
            ref
            for key, item in value.items()
            if key in self.schema
            for ref in self.schema[key].pending_references(item)
        ]

    def get_validator_properties(self) -> dict[str, Any]:
        if self.schema is None:
            return {
                "bsonType": _bson_type("object", self.can_be_null),
                "description": "must be a dictionary" + self._required_suffix(),
            }
        ret: dict[str, Any] = {
            "bsonType": _bson_type("object", self.can_be_null),
            "properties": {
                name: field.get_validator_properties() for name, field in self.schema.items()
            },
            "description": "must be a dictionary with a specific schema" + self._required_suffix(),
        }
        # an empty 'required' list is rejected by storage-side validators
        required = [name for name, field in self.schema.items() if field.is_mandatory]
        if required:
            ret["required"] = required
        return ret


__all__ = [
    "BooleanField",
    "ChoiceField",
    "DateField",
    "DictionaryField",
    "EMAIL_PATTERN",
    "EmailField",
    "ListField",
    "NumericField",
    "StringField",
]
