from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .connection import Connection

# Bookkeeping keys stamped on every written document
DEFAULT_PRIMARY_KEY = "_id"
CREATION_TIME_KEY = "_db_creation_time"
LAST_UPDATE_TIME_KEY = "_db_last_update_time"
OBJECT_VERSION_KEY = "_db_object_version"


class LoadState(Enum):
    """Hydration history of a model instance."""

    NEW = "new"
    LOADED_ONCE = "loaded_once"
    LOADED_AGAIN = "loaded_again"


class ModelRegistry:
    """
    Registered model classes by name, plus the default connection they use.

    Model classes bound to an explicit connection ignore ``connection``.
    """

    def __init__(self):
        self.models: dict[str, type] = {}
        self.connection: "Connection | None" = None

    def register(self, cls: type) -> None:
        self.models[cls.__name__] = cls

    def get(self, name: str) -> Any:
        return self.models.get(name)

    def clear(self) -> None:
        self.models.clear()


# Global registry for models (Python side)
_MODEL_REGISTRY = ModelRegistry()
