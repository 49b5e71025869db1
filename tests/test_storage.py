from uuid import uuid4

import pytest

from skitgen.clients.s3_storage import S3StorageClient
from skitgen.errors import NotFoundError, ProviderError, ValidationError
from skitgen.models.domain import Character, Composition, CompositionStatus
from skitgen.storage.repository import CharacterRepository, CompositionRepository, TemplateRepository


def test_memory_put_get_delete(storage):
    url = storage.put(b"data", "audio", "line_0.mp3", "audio/mpeg")
    assert url == "/skitgen/audio/line_0.mp3"
    assert storage.owns(url)
    assert storage.get(url) == b"data"
    storage.delete(url)
    storage.delete(url)
    with pytest.raises(ProviderError):
        storage.get(url)


def test_delete_ignores_unknown_urls(storage):
    storage.delete("https://elsewhere.example.com/file.mp4")
    storage.delete("")
    assert not storage.owns("https://elsewhere.example.com/file.mp4")


def test_public_url_base_round_trips():
    client = S3StorageClient(bucket="skitgen", access_key=None, secret_key=None, public_url="https://cdn.example.com/")
    url = client.put_text("1\n", "subtitles", "abc.srt")
    assert url == "https://cdn.example.com/subtitles/abc.srt"
    assert client.key_from_url(url) == "subtitles/abc.srt"
    assert client.get(url) == b"1\n"


def test_key_from_virtual_hosted_url(storage):
    assert storage.key_from_url("https://skitgen.s3.eu-west-1.amazonaws.com/compositions/a%20b.mp4") == "compositions/a b.mp4"


def test_composition_update_merges_fields():
    repo = CompositionRepository()
    composition = repo.create(Composition(template_id=uuid4(), plot="A plot"))
    updated = repo.update(composition.id, status=CompositionStatus.COMPOSITING, progress=65)
    assert updated.status == CompositionStatus.COMPOSITING
    assert updated.plot == "A plot"
    assert updated.updated_at >= composition.updated_at
    assert repo.get(composition.id).progress == 65
    with pytest.raises(NotFoundError):
        repo.update(uuid4(), progress=10)


def test_repository_returns_copies():
    repo = CompositionRepository()
    composition = repo.create(Composition(template_id=uuid4(), plot="A plot"))
    fetched = repo.get(composition.id)
    fetched.progress = 99
    assert repo.get(composition.id).progress == 0


def test_recent_orders_newest_first():
    repo = CompositionRepository()
    first = repo.create(Composition(template_id=uuid4(), plot="one"))
    second = repo.create(Composition(template_id=uuid4(), plot="two"))
    second_time = first.created_at.replace(year=first.created_at.year + 1)
    repo.update(second.id, created_at=second_time)
    assert [item.id for item in repo.recent()] == [second.id, first.id]
    assert len(repo.recent(limit=1)) == 1


def test_character_names_are_lowercase_and_unique():
    repo = CharacterRepository()
    saved = repo.create(Character(name="Alice", display_name="Alice", voice_id="v", image_url="a.png"))
    assert repo.get(saved.id).name == "alice"
    with pytest.raises(ValidationError):
        repo.create(Character(name="ALICE", display_name="Other", voice_id="v", image_url="b.png"))
    assert [c.id for c in repo.get_many([saved.id, uuid4()])] == [saved.id]


def test_modify_rejection_leaves_record_untouched():
    repo = CompositionRepository()
    composition = repo.create(Composition(template_id=uuid4(), plot="A plot", progress=40))

    def reject(current):
        raise ValidationError(f"busy at {current.progress}")

    with pytest.raises(ValidationError, match="busy at 40"):
        repo.modify(composition.id, reject)
    assert repo.get(composition.id).progress == 40
    updated = repo.modify(composition.id, lambda current: {"progress": current.progress + 5})
    assert updated.progress == 45


def test_template_repository_modify_reports_missing_template():
    repo = TemplateRepository()
    with pytest.raises(NotFoundError, match="Template not found"):
        repo.modify(uuid4(), lambda current: {})
