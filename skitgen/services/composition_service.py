from __future__ import annotations

import logging
import os
import pathlib
import re
import shutil
import tempfile
import uuid
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence
from uuid import UUID

from skitgen.config import Settings
from skitgen.errors import NotFoundError, ValidationError, error_message
from skitgen.events.publisher import CompositionEventPublisher
from skitgen.models.domain import (
    AudioSegment,
    Character,
    Composition,
    CompositionStatus,
    CompositionStatusHistory,
    DialogueLine,
    SubtitlePosition,
    Template,
    VideoSegment,
)
from skitgen.queue.queue import BaseQueue, CompositionTask, TaskKind
from skitgen.services.assets import fetch_asset
from skitgen.services.compositor import MediaCompositor
from skitgen.services.script_writer import ScriptGenerator
from skitgen.services.speech import SpeechSynthesizer
from skitgen.services.subtitles import build_srt
from skitgen.services.timing import apply_delays, estimate_timings, recalculate_timings
from skitgen.storage.repository import CharacterRepository, CompositionRepository, TemplateRepository

SCRIPT_START_PROGRESS = 5
SCRIPT_DONE_PROGRESS = 15
AUDIO_DONE_PROGRESS = 60
REGENERATE_PROGRESS = 60
OVERLAY_PROGRESS = 65
AUDIO_MIX_PROGRESS = 75
SUBTITLES_PROGRESS = 80
UPLOAD_PROGRESS = 90

Roster = Mapping[UUID, Character]


def slugify(value: str, fallback: str = "composition") -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")
    return slug[:60] or fallback


def build_video_segments(
    audio_segments: Sequence[AudioSegment],
    roster: Roster,
    image_paths: Mapping[UUID, str],
) -> list[VideoSegment]:
    segments: list[VideoSegment] = []
    for audio in audio_segments:
        character = roster[audio.character_id]
        segments.append(
            VideoSegment(
                character_id=audio.character_id,
                image_path=image_paths[audio.character_id],
                position=character.position,
                start_time=audio.start_time,
                end_time=audio.start_time + audio.duration,
            )
        )
    return segments


class CompositionService:
    def __init__(
        self,
        repo: CompositionRepository,
        templates: TemplateRepository,
        characters: CharacterRepository,
        storage: Any,
        speech: SpeechSynthesizer,
        script_writer: ScriptGenerator,
        compositor: MediaCompositor,
        settings: Settings,
        events: CompositionEventPublisher | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repo = repo
        self.templates = templates
        self.characters = characters
        self.storage = storage
        self.speech = speech
        self.script_writer = script_writer
        self.compositor = compositor
        self.settings = settings
        self.events = events
        self.queue: BaseQueue | None = None
        self.log = logger or logging.getLogger(__name__)

    def bind_queue(self, queue: BaseQueue) -> None:
        self.queue = queue

    def close(self) -> None:
        if self.queue is not None:
            self.queue.close()
        if self.events is not None:
            self.events.close()

    # Entry points -----------------------------------------------------------

    def start_composition(
        self,
        template_id: UUID,
        plot: str,
        title: str | None = None,
        subtitle_position: SubtitlePosition | str | None = None,
    ) -> Composition:
        plot = (plot or "").strip()
        if not plot:
            raise ValidationError("Plot must not be empty")
        template = self.templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template not found: {template_id}")
        if not template.character_ids:
            raise ValidationError(
                f"Template {template.name!r} has no characters assigned; assign at least one character first"
            )
        self._load_roster(template)

        composition = Composition(
            template_id=template.id,
            title=(title or "").strip() or None,
            plot=plot,
            subtitle_position=SubtitlePosition(subtitle_position or SubtitlePosition.BOTTOM),
            status=CompositionStatus.PENDING,
            progress=0,
            status_history=[
                CompositionStatusHistory(status=CompositionStatus.PENDING, progress=0, message="Composition accepted")
            ],
        )
        self.repo.create(composition)
        self.log.info(
            "composition created",
            extra={"composition_id": str(composition.id), "template_id": str(template.id)},
        )
        self._emit(composition)
        self._dispatch(CompositionTask(composition.id, TaskKind.GENERATE))
        return composition

    def get_composition(self, composition_id: UUID) -> Composition | None:
        return self.repo.get(composition_id)

    def list_compositions(self, limit: int = 50) -> list[Composition]:
        return self.repo.recent(limit)

    def regenerate(
        self,
        composition_id: UUID,
        delays: Sequence[float] | None = None,
        subtitle_position: SubtitlePosition | str | None = None,
    ) -> Composition:
        if delays and any(delay is not None and delay < 0 for delay in delays):
            raise ValidationError("Delays must be non-negative")
        stale_urls: list[str] = []

        def claim(current: Composition) -> dict[str, Any]:
            if not current.status.terminal:
                raise ValidationError(
                    f"Composition is still being processed (status: {current.status.value}); try again later"
                )
            lines = current.generated_script
            missing = [index for index, line in enumerate(lines) if not line.speech_url]
            if not lines or missing:
                detail = f"lines {missing}" if missing else "no generated script"
                raise ValidationError(f"Cannot regenerate: missing speech files ({detail})")
            apply_delays(lines, delays)
            recalculate_timings(lines)
            stale_urls.extend(url for url in (current.output_url, current.subtitles_url) if url)
            return self._changes(
                current,
                CompositionStatus.COMPOSITING,
                REGENERATE_PROGRESS,
                "Regenerating with existing speech",
                reset_progress=True,
                error=None,
                output_url=None,
                subtitles_url=None,
                generated_script=lines,
                subtitle_position=SubtitlePosition(subtitle_position or current.subtitle_position),
                regeneration_count=current.regeneration_count + 1,
            )

        updated = self.repo.modify(composition_id, claim)
        self._log_progress(updated)
        self._emit(updated)
        for url in stale_urls:
            self._delete_remote(url, composition_id)
        self._dispatch(CompositionTask(composition_id, TaskKind.REGENERATE))
        return updated

    def process_task(self, task: CompositionTask) -> None:
        try:
            if task.kind == TaskKind.REGENERATE:
                self._run_regeneration(task.composition_id)
            else:
                self._run_pipeline(task.composition_id)
        except Exception as exc:  # pragma: no cover - pipeline methods record their own failures
            self.log.exception("composition task failed", extra={"composition_id": str(task.composition_id)})
            self._fail(task.composition_id, exc)

    # Pipeline ---------------------------------------------------------------

    def _run_pipeline(self, composition_id: UUID) -> None:
        composition = self.repo.get(composition_id)
        if composition is None:
            self.log.warning("composition vanished before processing", extra={"composition_id": str(composition_id)})
            return
        workdir = self._make_workdir(composition_id)
        try:
            template = self._require_template(composition.template_id)
            roster = self._load_roster(template)
            by_name = {character.name: character for character in roster.values()}

            self._update(composition_id, CompositionStatus.GENERATING_SCRIPT, SCRIPT_START_PROGRESS, "Writing script")
            target = min(
                template.duration or self.settings.default_target_duration,
                self.settings.max_video_duration,
            )
            script = self.script_writer.generate_script(composition.plot, list(roster.values()), target)
            title = composition.title or script.title or self.script_writer.generate_title(composition.plot)
            estimates = estimate_timings(
                [dialogue.text for dialogue in script.dialogues],
                words_per_second=self.settings.words_per_second,
                pause_between_lines=self.settings.line_pause_seconds,
            )
            lines = [
                DialogueLine(
                    character_id=by_name[dialogue.character_name].id,
                    text=dialogue.text,
                    start_time=estimate.start_time,
                    duration=estimate.duration,
                    delay=dialogue.delay,
                )
                for dialogue, estimate in zip(script.dialogues, estimates)
            ]
            self._update(
                composition_id,
                CompositionStatus.GENERATING_SCRIPT,
                SCRIPT_DONE_PROGRESS,
                f"Script ready with {len(lines)} lines",
                title=title,
                generated_script=lines,
            )

            audio_segments = self._synthesize_lines(composition_id, lines, roster, workdir)
            composition = self._update(composition_id, generated_script=lines)
            output_url, subtitles_url = self._composite(composition, template, roster, audio_segments, workdir)
            self._complete(composition_id, output_url, subtitles_url)
        except Exception as exc:
            self._fail(composition_id, exc)
        finally:
            self._cleanup_workdir(workdir)

    def _run_regeneration(self, composition_id: UUID) -> None:
        composition = self.repo.get(composition_id)
        if composition is None:
            self.log.warning("composition vanished before regeneration", extra={"composition_id": str(composition_id)})
            return
        workdir = self._make_workdir(composition_id)
        try:
            template = self._require_template(composition.template_id)
            roster = self._load_roster(template)
            audio_segments: list[AudioSegment] = []
            for index, line in enumerate(composition.generated_script):
                if line.character_id not in roster:
                    raise NotFoundError(f"Character not found: {line.character_id}")
                audio_path = os.path.join(workdir, f"line_{index}.mp3")
                pathlib.Path(audio_path).write_bytes(self.storage.get(line.speech_url))
                audio_segments.append(
                    AudioSegment(
                        character_id=line.character_id,
                        text=line.text,
                        audio_path=audio_path,
                        start_time=line.start_time,
                        duration=line.duration,
                    )
                )
            self.log.info(
                "reusing stored speech",
                extra={"composition_id": str(composition_id), "lines": len(audio_segments)},
            )
            output_url, subtitles_url = self._composite(
                composition,
                template,
                roster,
                audio_segments,
                workdir,
                suffix=f"regen{composition.regeneration_count}",
            )
            self._complete(composition_id, output_url, subtitles_url)
        except Exception as exc:
            self._fail(composition_id, exc)
        finally:
            self._cleanup_workdir(workdir)

    def _synthesize_lines(
        self,
        composition_id: UUID,
        lines: list[DialogueLine],
        roster: Roster,
        workdir: str,
    ) -> list[AudioSegment]:
        self._update(composition_id, CompositionStatus.GENERATING_AUDIO, SCRIPT_DONE_PROGRESS, "Synthesizing speech")
        segments: list[AudioSegment] = []
        band = AUDIO_DONE_PROGRESS - SCRIPT_DONE_PROGRESS
        for index, line in enumerate(lines):
            character = roster[line.character_id]
            speech = self.speech.synthesize(line.text, character.voice_id, workdir)
            line.duration = speech.duration
            line.speech_url = self.storage.put(
                pathlib.Path(speech.path).read_bytes(),
                "audio",
                f"{composition_id}_line_{index}.mp3",
                "audio/mpeg",
            )
            segments.append(
                AudioSegment(
                    character_id=line.character_id,
                    text=line.text,
                    audio_path=speech.path,
                    start_time=line.start_time,
                    duration=speech.duration,
                )
            )
            self._update(
                composition_id,
                CompositionStatus.GENERATING_AUDIO,
                SCRIPT_DONE_PROGRESS + round((index + 1) / len(lines) * band),
                f"Synthesized line {index + 1}/{len(lines)}",
                generated_script=lines,
            )
        recalculate_timings(lines, segments)
        return segments

    def _composite(
        self,
        composition: Composition,
        template: Template,
        roster: Roster,
        audio_segments: Sequence[AudioSegment],
        workdir: str,
        suffix: str = "",
    ) -> tuple[str, str]:
        composition_id = composition.id
        self._update(composition_id, CompositionStatus.COMPOSITING, OVERLAY_PROGRESS, "Applying character overlays")
        template_video = self._fetch_asset(template.video_url, workdir, "template")
        used = {segment.character_id for segment in audio_segments}
        image_paths = {}
        for character_id in used:
            character = roster[character_id]
            label = f"character_{slugify(character.name, fallback='character')}_{character_id.hex[:8]}"
            image_paths[character_id] = self._fetch_asset(character.image_url, workdir, label)
        video_segments = build_video_segments(audio_segments, roster, image_paths)
        overlaid = self.compositor.apply_overlays(
            template_video, video_segments, os.path.join(workdir, "overlay.mp4")
        )

        self._update(composition_id, CompositionStatus.COMPOSITING, AUDIO_MIX_PROGRESS, "Mixing dialogue audio")
        mixed = self.compositor.mix_audio(overlaid, audio_segments, os.path.join(workdir, "mixed.mp4"))

        self._update(composition_id, CompositionStatus.ADDING_SUBTITLES, SUBTITLES_PROGRESS, "Burning in subtitles")
        srt_content = build_srt(composition.generated_script)
        position = composition.subtitle_position or SubtitlePosition.BOTTOM
        subtitled = self.compositor.burn_subtitles(
            mixed, srt_content, position, os.path.join(workdir, "subtitled.mp4")
        )

        self._update(composition_id, CompositionStatus.UPLOADING, UPLOAD_PROGRESS, "Uploading results")
        tail = f"_{suffix}" if suffix else ""
        output_name = f"{slugify(composition.title or '')}{tail}_{uuid.uuid4().hex[:8]}.mp4"
        final_path = self.compositor.finalize(
            subtitled, os.path.join(workdir, output_name), quality=self.settings.final_quality
        )
        output_url = self.storage.put(
            pathlib.Path(final_path).read_bytes(), "compositions", output_name, "video/mp4"
        )
        subtitles_url = self.storage.put_text(
            srt_content, "subtitles", f"{composition_id}{tail}.srt", "text/plain; charset=utf-8"
        )
        return output_url, subtitles_url

    # Helpers ----------------------------------------------------------------

    def _require_template(self, template_id: UUID) -> Template:
        template = self.templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template not found: {template_id}")
        return template

    def _load_roster(self, template: Template) -> Roster:
        characters = self.characters.get_many(template.character_ids)
        found = {character.id for character in characters}
        missing = [str(character_id) for character_id in template.character_ids if character_id not in found]
        if missing:
            raise NotFoundError(f"Character not found: {', '.join(missing)}")
        return MappingProxyType({character.id: character for character in characters})

    def _update(
        self,
        composition_id: UUID,
        status: CompositionStatus | None = None,
        progress: int | None = None,
        message: str | None = None,
        reset_progress: bool = False,
        **fields: Any,
    ) -> Composition:
        updated = self.repo.modify(
            composition_id,
            lambda current: self._changes(current, status, progress, message, reset_progress, **fields),
        )
        if status is not None or progress is not None:
            self._log_progress(updated)
        self._emit(updated)
        return updated

    def _changes(
        self,
        current: Composition,
        status: CompositionStatus | None,
        progress: int | None,
        message: str | None,
        reset_progress: bool = False,
        **fields: Any,
    ) -> dict[str, Any]:
        changes: dict[str, Any] = dict(fields)
        if "generated_script" in changes:
            changes["generated_script"] = [line.model_copy() for line in changes["generated_script"]]
        if status is not None:
            changes["status"] = status
        if progress is not None:
            progress = max(0, min(100, progress))
            changes["progress"] = progress if reset_progress else max(progress, current.progress)
        if status is not None or message:
            changes["status_history"] = [
                *current.status_history,
                CompositionStatusHistory(
                    status=status or current.status,
                    progress=changes.get("progress", current.progress),
                    message=message or (status.value if status else ""),
                ),
            ]
        return changes

    def _log_progress(self, composition: Composition) -> None:
        self.log.info(
            "composition progress",
            extra={
                "composition_id": str(composition.id),
                "status": composition.status.value,
                "progress": composition.progress,
            },
        )

    def _complete(self, composition_id: UUID, output_url: str, subtitles_url: str) -> None:
        self._update(
            composition_id,
            CompositionStatus.COMPLETED,
            100,
            "Composition complete",
            output_url=output_url,
            subtitles_url=subtitles_url,
            error=None,
        )
        self.log.info(
            "composition complete",
            extra={"composition_id": str(composition_id), "output_url": output_url},
        )

    def _fail(self, composition_id: UUID, exc: BaseException) -> None:
        message = error_message(exc)
        self.log.error(
            "composition failed",
            extra={"composition_id": str(composition_id), "error": message},
            exc_info=exc,
        )
        try:
            self._update(composition_id, CompositionStatus.FAILED, None, "Composition failed", error=message)
        except NotFoundError:
            self.log.warning("failed composition no longer exists", extra={"composition_id": str(composition_id)})

    def _dispatch(self, task: CompositionTask) -> None:
        if self.queue is not None:
            self.queue.enqueue(task)
        else:  # pragma: no cover - fallback for misconfiguration
            self.process_task(task)

    def _emit(self, composition: Composition) -> None:
        if not self.events:
            return
        try:
            self.events.publish(composition)
        except Exception:  # pragma: no cover
            self.log.warning(
                "composition event emission failed",
                extra={"composition_id": str(composition.id)},
                exc_info=True,
            )

    def _delete_remote(self, url: str, composition_id: UUID) -> None:
        try:
            self.storage.delete(url)
        except Exception:
            self.log.warning(
                "stale artifact delete failed",
                extra={"composition_id": str(composition_id), "url": url},
                exc_info=True,
            )

    def _fetch_asset(self, source: str, workdir: str, name: str) -> str:
        return fetch_asset(self.storage, source, workdir, name)

    def _make_workdir(self, composition_id: UUID) -> str:
        os.makedirs(self.settings.processing_path, exist_ok=True)
        return tempfile.mkdtemp(prefix=f"composition_{composition_id.hex[:8]}_", dir=self.settings.processing_path)

    def _cleanup_workdir(self, workdir: str) -> None:
        try:
            shutil.rmtree(workdir)
        except OSError:
            self.log.warning("scratch cleanup failed", extra={"workdir": workdir}, exc_info=True)
