from uuid import uuid4

import pytest

from conftest import FakeEngine, FakeTTS, png_bytes
from skitgen.errors import NotFoundError, ProviderError, ValidationError
from skitgen.models.domain import Dimensions
from skitgen.services.catalog_service import CatalogService
from skitgen.services.compositor import MediaCompositor
from skitgen.services.speech import AudioCache, SpeechSynthesizer
from skitgen.storage.repository import CharacterRepository, TemplateRepository


@pytest.fixture
def catalog(tmp_path, storage):
    def build(engine=None):
        return CatalogService(
            templates=TemplateRepository(),
            characters=CharacterRepository(),
            speech=SpeechSynthesizer(FakeTTS(), AudioCache(str(tmp_path / "cache"))),
            storage=storage,
            compositor=MediaCompositor(engine or FakeEngine(), processing_path=str(tmp_path / "processing")),
            processing_path=str(tmp_path / "processing"),
        )

    return build


def _video(storage):
    return storage.put(b"template-video", "templates", "kitchen.mp4", "video/mp4")


def _character(service, storage, name):
    image_url = storage.put(png_bytes(), "characters", f"{name}.png", "image/png")
    return service.register_character(name, name.title(), "voice-a", image_url)


def test_register_template_fills_metadata_from_probe(catalog, storage, tmp_path):
    engine = FakeEngine(width=1280, height=720)
    service = catalog(engine)
    template = service.register_template("Kitchen", _video(storage))

    assert template.duration == 30.0
    assert template.dimensions == Dimensions(width=1280, height=720)
    assert template.frame_rate == 30.0
    assert template.thumbnail_url.endswith(f"thumbnails/{template.id}.jpg")
    assert storage.get(template.thumbnail_url) == b"video"
    assert engine.descriptions() == ["Thumbnail extraction"]
    assert list((tmp_path / "processing").iterdir()) == []


def test_caller_metadata_wins_over_probe(catalog, storage):
    engine = FakeEngine()
    service = catalog(engine)
    template = service.register_template(
        "Kitchen",
        _video(storage),
        thumbnail_url="https://cdn.example.com/kitchen.jpg",
        duration=45,
        dimensions=Dimensions(width=640, height=480),
        frame_rate=24,
    )
    assert template.duration == 45
    assert template.dimensions == Dimensions(width=640, height=480)
    assert template.frame_rate == 24
    assert template.thumbnail_url == "https://cdn.example.com/kitchen.jpg"
    assert engine.runs == []


def test_unprobeable_video_is_rejected(catalog, storage):
    class Broken(FakeEngine):
        def probe(self, path):
            raise ProviderError("ffprobe failed: moov atom not found", provider="ffmpeg")

    service = catalog(Broken())
    with pytest.raises(ValidationError, match="could not be processed"):
        service.register_template("Kitchen", _video(storage))
    assert service.list_templates() == []


def test_thumbnail_failure_does_not_block_registration(catalog, storage):
    service = catalog(FakeEngine(fail_on="Thumbnail extraction"))
    template = service.register_template("Kitchen", _video(storage))
    assert template.thumbnail_url is None
    assert template.duration == 30.0


def test_add_and_remove_template_characters(catalog, storage):
    service = catalog()
    alice = _character(service, storage, "alice")
    bob = _character(service, storage, "bob")
    template = service.register_template("Kitchen", _video(storage), [alice.id])

    added = service.add_characters(template.id, [bob.id, alice.id, bob.id])
    assert added.character_ids == [alice.id, bob.id]

    removed = service.remove_characters(template.id, [alice.id, uuid4()])
    assert removed.character_ids == [bob.id]
    assert service.get_template(template.id).character_ids == [bob.id]


def test_add_characters_rejects_unknown_ids(catalog, storage):
    service = catalog()
    template = service.register_template("Kitchen", _video(storage))
    with pytest.raises(NotFoundError, match="Character not found"):
        service.add_characters(template.id, [uuid4()])
    with pytest.raises(NotFoundError, match="Template not found"):
        service.remove_characters(uuid4(), [uuid4()])
    assert service.get_template(template.id).character_ids == []
