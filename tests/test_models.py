import pytest
from pydantic import ValidationError as OptionsValidationError

from ferrite import Model, NumericField, StringField
from ferrite.errors import PreconditionError
from ferrite.metaclass import FieldProperty
from ferrite.state import _MODEL_REGISTRY


class Planet(Model, collection_name="planets"):
    name = StringField(max_length=50)
    radius_km = NumericField(min_value=0)


def test_declared_fields_are_registered():
    """Field class attributes become tracked properties in declaration order."""
    assert Planet.collection.field_names == ["name", "radius_km"]
    assert isinstance(Planet.__dict__["name"], FieldProperty)
    assert _MODEL_REGISTRY.get("Planet") is Planet


def test_collection_name_option():
    assert Planet.collection.collection_name == "planets"


def test_collection_name_defaults_to_plural_class_name():
    class Moon(Model):
        name = StringField()

    assert Moon.collection.collection_name == "Moons"


def test_defaults_are_set_and_clean():
    """A new instance holds every default and nothing is dirty."""
    planet = Planet()
    assert planet.name == ""
    assert planet.radius_km == 0
    assert not planet.record.is_dirty


def test_constructor_values_are_dirty():
    planet = Planet(name="Mars")
    assert planet.name == "Mars"
    assert planet.record.dirty_fields == ["name"]


def test_unknown_constructor_argument():
    with pytest.raises(TypeError):
        Planet(mass=1)


def test_defaults_available_in_subclass_init():
    """Defaults are in place before the subclass __init__ body runs."""

    class Comet(Model):
        name = StringField("unnamed")

        def __init__(self, **values):
            self.seen_name = self.name
            super().__init__(**values)

    assert Comet(name="Halley").seen_name == "unnamed"


def test_unregistered_model_cannot_be_constructed():
    class Draft(Model):
        pass

    with pytest.raises(PreconditionError, match="build_model"):
        Draft()


def test_build_model_registers_explicitly():
    class Asteroid(Model):
        pass

    wrapper = Asteroid.build_model({"name": StringField()}, collection_name="rocks")
    assert Asteroid.collection is wrapper
    assert Asteroid(name="Ceres").name == "Ceres"
    assert wrapper.collection_name == "rocks"


def test_double_registration_fails():
    with pytest.raises(PreconditionError, match="already called"):
        Planet.build_model({"other": StringField()})


def test_field_name_collision_fails():
    class Star(Model):
        def shine(self):
            return True

    with pytest.raises(PreconditionError, match="already exists"):
        Star.build_model({"shine": StringField()})


def test_field_named_like_wrapper_fails():
    with pytest.raises(PreconditionError):

        class Broken(Model):
            record = StringField()


def test_reserved_bookkeeping_name_fails():
    with pytest.raises(PreconditionError, match="reserved"):

        class Versioned(Model):
            _db_object_version = NumericField()


def test_unique_without_index_fails():
    with pytest.raises(PreconditionError, match="unique=True"):

        class Account(Model):
            login = StringField(unique=True)


def test_undeclared_primary_key_fails():
    """A custom primary key must name a declared field."""
    with pytest.raises(PreconditionError, match="must be a declared field"):

        class Ticket(Model, primary_key="code"):
            title = StringField()

    assert _MODEL_REGISTRY.get("Ticket") is None


def test_declared_primary_key():
    class Account(Model, primary_key="email"):
        email = StringField()

    assert Account.collection.primary_key == "email"


def test_non_field_descriptor_fails():
    class Galaxy(Model):
        pass

    with pytest.raises(TypeError):
        Galaxy.build_model({"name": "not a field"})


def test_max_count_requires_size():
    with pytest.raises(OptionsValidationError):

        class Log(Model, max_count=10):
            line = StringField()


def test_unknown_option_fails():
    with pytest.raises(OptionsValidationError):

        class Misconfigured(Model, colection_name="typo"):
            line = StringField()


class TestInheritance:
    def test_subclass_inherits_fields(self):
        class DwarfPlanet(Planet):
            moons = NumericField(parser=int)

        assert DwarfPlanet.collection.field_names == ["name", "radius_km", "moons"]
        assert DwarfPlanet.collection is not Planet.collection
        assert DwarfPlanet.collection.collection_name == "DwarfPlanets"

    def test_abstract_base_is_not_registered(self):
        class Body(Model, abstract=True):
            name = StringField()

        class Nebula(Body):
            distance = NumericField()

        assert Body.__dict__.get("collection") is None
        assert Nebula.collection.field_names == ["name", "distance"]
        with pytest.raises(PreconditionError):
            Body()


def test_lifecycle_hooks_default_to_noops():
    planet = Planet()
    planet.before_save_to_db()
    planet.after_saved_to_db()
    planet.after_loaded_from_db()
    planet.after_deleted_from_db()


def test_set_to_default():
    planet = Planet(name="Venus")
    planet.record.set_to_default("name")
    assert planet.name == ""


def test_record_set_rejects_unknown_field():
    with pytest.raises(KeyError):
        Planet().record.set("mass", 1)
