import asyncio
import logging

import pytest

import ferrite
from ferrite import ForeignKeyField, ListField, Model, MemoryStorageClient, StringField
from ferrite.errors import NotFoundError, PreconditionError, ValidationError


class Writer(Model):
    name = StringField()


class Novel(Model):
    title = StringField()
    writer = ForeignKeyField(model="Writer", can_be_null=True)


class Label(Model):
    text = StringField()


class Album(Model):
    name = StringField()
    labels = ListField(items_type=ForeignKeyField(model=Label))
    producer = ForeignKeyField(model=Writer, can_be_null=True, auto_resolve=False)


class Country(Model, collection_name="countries"):
    name = StringField()
    capital = ForeignKeyField(model="City", can_be_null=True)


class City(Model, collection_name="cities"):
    name = StringField()
    country = ForeignKeyField(model="Country", can_be_null=True)


async def saved(instance):
    await instance.record.save()
    return instance


def test_model_resolved_by_name():
    field = Novel.collection.get_field_descriptor("writer")
    assert field.model is Writer
    assert field.model_name == "Writer"


class TestClean:
    def test_requires_primary_key(self):
        """Unsaved targets cannot be referenced."""
        field = ForeignKeyField(model=Writer)
        with pytest.raises(ValidationError, match="doesn't have an id"):
            field.clean(None, Writer(name="anon"))

    def test_returns_primary_key(self):
        field = ForeignKeyField(model=Writer)
        writer = Writer(name="known")
        writer.record.id = "w-1"
        assert field.clean(None, writer) == "w-1"

    def test_rejects_other_models(self):
        field = ForeignKeyField(model=Writer)
        label = Label()
        label.record.id = "l-1"
        with pytest.raises(ValidationError, match="not an instance"):
            field.clean(None, label)

    def test_rejects_raw_keys(self):
        with pytest.raises(ValidationError):
            ForeignKeyField(model=Writer).clean(None, "w-1")

    def test_null(self):
        assert ForeignKeyField(model=Writer, can_be_null=True).clean(None, None) is None
        with pytest.raises(ValidationError):
            ForeignKeyField(model=Writer).clean(None, None)

    def test_requires_model(self):
        with pytest.raises(ValueError):
            ForeignKeyField(model=None)


def test_load_produces_key_only_reference():
    field = ForeignKeyField(model=Writer)
    reference = field.init_after_load(None, "w-9")
    assert isinstance(reference, Writer)
    assert reference.record.id == "w-9"
    assert not reference.record.is_loaded_from_db
    assert field.clean(None, reference) == "w-9"


@pytest.mark.asyncio
async def test_reference_is_stored_as_key(db):
    writer = await saved(Writer(name="Le Guin"))
    await saved(Novel(title="The Dispossessed", writer=writer))
    assert db.documents("Novels")[0]["writer"] == writer.record.id


@pytest.mark.asyncio
async def test_outer_load_completes_before_reference(db):
    """The owner's success callback sees a key-only reference; it resolves afterwards."""
    writer = await saved(Writer(name="Le Guin"))
    novel = await saved(Novel(title="Earthsea", writer=writer))

    seen = []

    def on_success(loaded):
        seen.append((loaded.writer.record.id, loaded.writer.record.is_loaded_from_db))

    loaded = Novel.collection.load(novel.record.id, on_success=on_success)
    await loaded.record.resolve()
    assert seen == [(writer.record.id, False)]

    resolved = await loaded.writer.record.resolve()
    assert resolved is loaded.writer
    assert resolved.name == "Le Guin"
    assert resolved.record.load_state is ferrite.LoadState.LOADED_ONCE


@pytest.mark.asyncio
async def test_reference_first_load_callback(db):
    writer = await saved(Writer(name="Butler"))
    novel = await saved(Novel(title="Kindred", writer=writer))

    names = []
    loaded = await Novel.collection.get(novel.record.id)
    loaded.writer.record.on_loaded = lambda w: names.append(w.name)
    await loaded.writer.record.resolve()
    assert names == ["Butler"]


@pytest.mark.asyncio
async def test_null_reference_is_not_resolved(db):
    novel = await saved(Novel(title="Anonymous"))
    loaded = await Novel.collection.get(novel.record.id)
    assert loaded.writer is None


@pytest.mark.asyncio
async def test_list_of_references(db):
    labels = [await saved(Label(text=text)) for text in ("a", "b")]
    album = await saved(Album(name="Mix", labels=labels))
    assert db.documents("Albums")[0]["labels"] == [label.record.id for label in labels]

    loaded = await Album.collection.get(album.record.id)
    texts = [(await label.record.resolve()).text for label in loaded.labels]
    assert texts == ["a", "b"]


@pytest.mark.asyncio
async def test_manual_resolution(db):
    """References with auto_resolve=False are fetched on resolve()."""
    producer = await saved(Writer(name="Eno"))
    album = await saved(Album(name="Ambient", producer=producer))

    loaded = await Album.collection.get(album.record.id)
    assert ("find_one", "Writers") not in db.requests
    assert loaded.producer.name == ""

    await loaded.producer.record.resolve()
    assert loaded.producer.name == "Eno"


@pytest.mark.asyncio
async def test_dangling_reference(db):
    writer = await saved(Writer(name="Ghost"))
    novel = await saved(Novel(title="Vanished", writer=writer))
    await writer.record.delete()

    loaded = await Novel.collection.get(novel.record.id)
    with pytest.raises(NotFoundError):
        await loaded.writer.record.resolve()

    missing = []
    assert await loaded.writer.record.resolve(on_not_found=lambda: missing.append(True)) is None
    assert missing == [True]


@pytest.mark.asyncio
async def test_resolve_without_key_fails(db):
    with pytest.raises(PreconditionError):
        await Writer().record.resolve()


@pytest.mark.asyncio
async def test_reassigning_same_reference_is_not_dirty(db):
    writer = await saved(Writer(name="Tolkien"))
    novel = await saved(Novel(title="The Hobbit", writer=writer))

    loaded = await Novel.collection.get(novel.record.id)
    loaded.writer = writer
    assert not loaded.record.is_dirty

    loaded.writer = None
    assert loaded.record.dirty_fields == ["writer"]


@pytest.mark.asyncio
async def test_connect_rejects_unknown_reference_target():
    class Orphan(Model):
        parent = ForeignKeyField(model="NoSuchModel")

    with pytest.raises(PreconditionError, match="NoSuchModel"):
        await ferrite.connect("memory://", "test", client=MemoryStorageClient())


@pytest.mark.asyncio
async def test_dangling_reference_is_logged(db, caplog):
    logger = logging.getLogger("ferrite")
    logger.propagate = True
    try:
        writer = await saved(Writer(name="Gone"))
        novel = await saved(Novel(title="Missing", writer=writer))
        await writer.record.delete()

        with caplog.at_level(logging.WARNING, logger="ferrite"):
            loaded = await Novel.collection.get(novel.record.id)
            await loaded.writer.record.resolve(on_not_found=lambda: None)
        assert "points to missing document" in caplog.text
    finally:
        logger.propagate = False


@pytest.mark.asyncio
async def test_cyclic_references_resolve_one_level(db):
    """Mutually referencing documents stop resolving after the owner's references."""
    country = await saved(Country(name="France"))
    city = await saved(City(name="Paris", country=country))
    country.capital = city
    await country.record.save()

    loaded = await Country.collection.get(country.record.id)
    capital = await loaded.capital.record.resolve()
    for _ in range(20):
        await asyncio.sleep(0)

    assert capital.name == "Paris"
    assert capital.country.record.id == country.record.id
    assert not capital.country.record.is_loaded_from_db
    assert [name for op, name in db.requests if op == "find_one"] == ["countries", "cities"]

    resolved = await capital.country.record.resolve()
    assert resolved.name == "France"
