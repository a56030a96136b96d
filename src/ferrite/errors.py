"""Exceptions raised by Ferrite."""

from collections.abc import Callable
from typing import Any


class FerriteError(Exception):
    """Base class for every Ferrite error."""


class ValidationError(FerriteError, ValueError):
    """
    A field refused a value while cleaning it for storage.

    Attributes:
        field: The field descriptor that rejected the value.
    """

    def __init__(self, field: Any, message: str):
        super().__init__(message)
        self.field = field


class PreconditionError(FerriteError, RuntimeError):
    """An operation was called out of order (unregistered model, reload before save, ...)."""


class NotFoundError(FerriteError, LookupError):
    """A point lookup, update or delete matched no document."""


class StorageError(FerriteError):
    """The storage client reported a failure."""


def callback_or_raise(error: BaseException, callback: Callable[[BaseException], Any] | None) -> Any:
    """
    Hand an error to the caller's error callback, or raise it when there is none.

    Args:
        error: The failure to report.
        callback: Optional error continuation supplied by the caller.

    Returns:
        Whatever the callback returns.
    """
    if callback is None:
        raise error
    return callback(error)
