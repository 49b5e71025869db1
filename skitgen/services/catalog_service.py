from __future__ import annotations

import logging
import os
import pathlib
import shutil
import tempfile
from typing import Any, List, Optional, Sequence
from uuid import UUID, uuid4

from skitgen.errors import NotFoundError, ProviderError, ValidationError
from skitgen.models.domain import Character, Dimensions, MediaInfo, Position, Template
from skitgen.services.assets import fetch_asset
from skitgen.services.compositor import MediaCompositor
from skitgen.services.speech import SpeechSynthesizer
from skitgen.storage.repository import CharacterRepository, TemplateRepository


class CatalogService:
    """Registration and lookup for templates, characters and voices.

    When a compositor is wired in, template videos are probed on registration
    to fill in duration, dimensions and frame rate, and a thumbnail is
    extracted unless the caller supplies one.
    """

    def __init__(
        self,
        templates: TemplateRepository,
        characters: CharacterRepository,
        speech: SpeechSynthesizer,
        storage: Any = None,
        compositor: MediaCompositor | None = None,
        processing_path: str = "./storage/processing",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.templates = templates
        self.characters = characters
        self.speech = speech
        self.storage = storage
        self.compositor = compositor
        self.processing_path = processing_path
        self.log = logger or logging.getLogger(__name__)

    def register_character(
        self,
        name: str,
        display_name: str,
        voice_id: str,
        image_url: str,
        position: Position | None = None,
    ) -> Character:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Character name must not be empty")
        if not (voice_id or "").strip():
            raise ValidationError("Character voice_id must not be empty")
        character = self.characters.create(
            Character(
                name=name,
                display_name=(display_name or "").strip() or name,
                voice_id=voice_id.strip(),
                image_url=image_url,
                position=position or Position(),
            )
        )
        self.log.info("character registered", extra={"character_id": str(character.id), "name": character.name})
        return character

    def list_characters(self) -> List[Character]:
        items = self.characters.list()
        items.sort(key=lambda item: item.name)
        return items

    def register_template(
        self,
        name: str,
        video_url: str,
        character_ids: Sequence[UUID] = (),
        description: str = "",
        thumbnail_url: str | None = None,
        duration: float | None = None,
        dimensions: Dimensions | None = None,
        frame_rate: float | None = None,
    ) -> Template:
        if not (name or "").strip():
            raise ValidationError("Template name must not be empty")
        if not (video_url or "").strip():
            raise ValidationError("Template video_url must not be empty")
        unique_ids = list(dict.fromkeys(character_ids))
        self._require_characters(unique_ids)

        template_id = uuid4()
        info: MediaInfo | None = None
        if self.compositor is not None:
            info, extracted = self._inspect_video(template_id, video_url.strip(), want_thumbnail=thumbnail_url is None)
            thumbnail_url = thumbnail_url or extracted
        if info is not None:
            duration = duration or (info.duration if info.duration > 0 else None)
            dimensions = dimensions or Dimensions(width=info.width, height=info.height)
            frame_rate = frame_rate or info.frame_rate

        template = self.templates.create(
            Template(
                id=template_id,
                name=name.strip(),
                description=description,
                video_url=video_url.strip(),
                thumbnail_url=thumbnail_url,
                duration=duration,
                dimensions=dimensions or Dimensions(width=1920, height=1080),
                frame_rate=frame_rate or 30,
                character_ids=unique_ids,
            )
        )
        self.log.info(
            "template registered",
            extra={
                "template_id": str(template.id),
                "characters": len(unique_ids),
                "duration": template.duration,
            },
        )
        return template

    def get_template(self, template_id: UUID) -> Template:
        template = self.templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template not found: {template_id}")
        return template

    def list_templates(self) -> List[Template]:
        items = self.templates.list()
        items.sort(key=lambda item: item.created_at, reverse=True)
        return items

    def add_characters(self, template_id: UUID, character_ids: Sequence[UUID]) -> Template:
        additions = list(dict.fromkeys(character_ids))
        self._require_characters(additions)
        template = self.templates.modify(
            template_id,
            lambda current: {"character_ids": list(dict.fromkeys([*current.character_ids, *additions]))},
        )
        self.log.info(
            "template characters added",
            extra={"template_id": str(template_id), "characters": len(template.character_ids)},
        )
        return template

    def remove_characters(self, template_id: UUID, character_ids: Sequence[UUID]) -> Template:
        removals = set(character_ids)
        template = self.templates.modify(
            template_id,
            lambda current: {"character_ids": [cid for cid in current.character_ids if cid not in removals]},
        )
        self.log.info(
            "template characters removed",
            extra={"template_id": str(template_id), "characters": len(template.character_ids)},
        )
        return template

    def list_voices(self) -> list[dict[str, str]]:
        return self.speech.list_voices()

    def _require_characters(self, character_ids: Sequence[UUID]) -> None:
        found = {character.id for character in self.characters.get_many(character_ids)}
        missing = [str(character_id) for character_id in character_ids if character_id not in found]
        if missing:
            raise NotFoundError(f"Character not found: {', '.join(missing)}")

    def _inspect_video(self, template_id: UUID, video_url: str, want_thumbnail: bool) -> tuple[MediaInfo, str | None]:
        os.makedirs(self.processing_path, exist_ok=True)
        workdir = tempfile.mkdtemp(prefix=f"template_{template_id.hex[:8]}_", dir=self.processing_path)
        try:
            try:
                local_video = fetch_asset(self.storage, video_url, workdir, "template")
                info = self.compositor.probe(local_video)
            except ProviderError as exc:
                raise ValidationError(f"Template video could not be processed: {exc}") from exc
            thumbnail_url = None
            if want_thumbnail and self.storage is not None:
                thumbnail_url = self._store_thumbnail(template_id, local_video, info, workdir)
            return info, thumbnail_url
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def _store_thumbnail(self, template_id: UUID, video_path: str, info: MediaInfo, workdir: str) -> str | None:
        timestamp = min(1.0, info.duration / 2) if info.duration > 0 else 0.0
        try:
            thumbnail = self.compositor.extract_thumbnail(video_path, os.path.join(workdir, "thumbnail.jpg"), timestamp)
            return self.storage.put(
                pathlib.Path(thumbnail).read_bytes(), "thumbnails", f"{template_id}.jpg", "image/jpeg"
            )
        except (ProviderError, OSError):
            self.log.warning("template thumbnail skipped", extra={"template_id": str(template_id)}, exc_info=True)
            return None
