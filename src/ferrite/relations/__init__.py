from ..errors import PreconditionError
from ..state import _MODEL_REGISTRY
from .foreign_key import ForeignKeyField


def iter_foreign_keys(model_cls: type):
    """Yield ``(field_name, ForeignKeyField)`` for every foreign key of a registered model."""
    for field_name in model_cls.collection.field_names:
        descriptor = model_cls.collection.get_field_descriptor(field_name)
        if isinstance(descriptor, ForeignKeyField):
            yield field_name, descriptor


def resolve_relationships() -> None:
    """
    Resolve every foreign key declared by name and cross-validate the targets.

    Raises:
        PreconditionError: If a foreign key names a model that was never
            registered, or points at a class that is not a registered model.
    """
    for model_name, model_cls in list(_MODEL_REGISTRY.models.items()):
        for field_name, descriptor in iter_foreign_keys(model_cls):
            target = descriptor.model
            if getattr(target, "collection", None) is None:
                raise PreconditionError(
                    f"Model '{model_name}' defines a foreign key '{field_name}' to "
                    f"'{descriptor.model_name}', which is not a registered model."
                )


__all__ = ["ForeignKeyField", "iter_foreign_keys", "resolve_relationships"]
