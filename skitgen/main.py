from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query, status

from skitgen.clients.ffmpeg import FFmpegRunner
from skitgen.clients.openrouter import OpenRouterClient
from skitgen.clients.s3_storage import S3StorageClient
from skitgen.clients.tts import ElevenLabsClient
from skitgen.config import Settings, get_settings
from skitgen.errors import NotFoundError, ValidationError
from skitgen.events.publisher import CompositionEventPublisher
from skitgen.models.api import (
    CharacterCreateRequest,
    CharacterListResponse,
    CharacterResponse,
    CompositionListResponse,
    CompositionRequest,
    CompositionResponse,
    DownloadResponse,
    RegenerateRequest,
    TemplateCharactersRequest,
    TemplateCreateRequest,
    TemplateListResponse,
    TemplateResponse,
    VoiceInfo,
    VoiceListResponse,
)
from skitgen.models.domain import CompositionStatus
from skitgen.queue.queue import KafkaQueue, LocalQueue
from skitgen.services.catalog_service import CatalogService
from skitgen.services.composition_service import CompositionService
from skitgen.services.compositor import MediaCompositor, MediaEngine
from skitgen.services.script_writer import ScriptGenerator, ScriptProvider
from skitgen.services.speech import AudioCache, SpeechProvider, SpeechSynthesizer, audio_duration
from skitgen.storage.repository import CharacterRepository, CompositionRepository, TemplateRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

log = logging.getLogger(__name__)

app = FastAPI(title="skitgen")


@dataclass
class Services:
    compositions: CompositionService
    catalog: CatalogService


_services: Services | None = None


def build_services(
    settings: Settings,
    script_provider: Optional[ScriptProvider] = None,
    speech_provider: Optional[SpeechProvider] = None,
    engine: Optional[MediaEngine] = None,
    storage: Optional[S3StorageClient] = None,
    duration_probe: Callable[[str], float] = audio_duration,
) -> Services:
    templates = TemplateRepository()
    characters = CharacterRepository()
    storage = storage or S3StorageClient(
        bucket=settings.s3_bucket,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        endpoint_url=settings.s3_endpoint_url,
        region_name=settings.s3_region,
        public_url=settings.s3_public_url,
        addressing_style=settings.s3_addressing_style,
    )
    speech = SpeechSynthesizer(
        provider=speech_provider
        or ElevenLabsClient(
            api_key=settings.elevenlabs_api_key,
            model_id=settings.elevenlabs_model_id,
            base_url=settings.elevenlabs_base_url,
            timeout=settings.tts_timeout,
        ),
        cache=AudioCache(settings.speech_cache_path, max_entries=settings.speech_cache_entries),
        duration_probe=duration_probe,
        voice_catalog=settings.voice_catalog,
    )
    script_writer = ScriptGenerator(
        script_provider
        or OpenRouterClient(
            api_key=settings.openrouter_api_key,
            model=settings.openrouter_model,
            base_url=settings.openrouter_base_url,
            timeout=settings.llm_timeout,
        )
    )
    compositor = MediaCompositor(
        engine or FFmpegRunner(settings.ffmpeg_path, settings.ffprobe_path),
        processing_path=settings.processing_path,
        default_image_size=settings.overlay_image_size,
    )
    service = CompositionService(
        repo=CompositionRepository(),
        templates=templates,
        characters=characters,
        storage=storage,
        speech=speech,
        script_writer=script_writer,
        compositor=compositor,
        settings=settings,
        events=_build_events(settings),
    )
    service.bind_queue(_build_queue(settings, service))
    return Services(
        compositions=service,
        catalog=CatalogService(
            templates=templates,
            characters=characters,
            speech=speech,
            storage=storage,
            compositor=compositor,
            processing_path=settings.processing_path,
        ),
    )


def _build_queue(settings: Settings, service: CompositionService):
    if settings.kafka_enabled:
        return KafkaQueue(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            topic=settings.kafka_topic,
            group_id=settings.kafka_group_id,
            processor=service.process_task,
        )
    return LocalQueue(processor=service.process_task, workers=settings.worker_count)


def _build_events(settings: Settings) -> CompositionEventPublisher | None:
    if not settings.kafka_enabled:
        return None
    try:
        return CompositionEventPublisher(settings.kafka_bootstrap_servers, settings.kafka_updates_topic)
    except (RuntimeError, ValueError):
        log.warning("composition events disabled", exc_info=True)
        return None


def get_services(settings: Settings = Depends(get_settings)) -> Services:
    global _services
    if _services is None:
        _services = build_services(settings)
    return _services


def get_composition_service(services: Services = Depends(get_services)) -> CompositionService:
    return services.compositions


def get_catalog_service(services: Services = Depends(get_services)) -> CatalogService:
    return services.catalog


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/compositions", response_model=CompositionResponse, status_code=status.HTTP_202_ACCEPTED)
@app.post("/api/generate", response_model=CompositionResponse, status_code=status.HTTP_202_ACCEPTED)
def create_composition(
    payload: CompositionRequest,
    service: CompositionService = Depends(get_composition_service),
) -> CompositionResponse:
    try:
        composition = service.start_composition(
            template_id=payload.template_id,
            plot=payload.plot,
            title=payload.title,
            subtitle_position=payload.subtitle_position,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CompositionResponse(composition=composition)


@app.get("/api/compositions", response_model=CompositionListResponse)
def list_compositions(
    limit: int = Query(default=50, ge=1, le=200),
    service: CompositionService = Depends(get_composition_service),
) -> CompositionListResponse:
    return CompositionListResponse(items=service.list_compositions(limit))


@app.get("/api/compositions/{composition_id}", response_model=CompositionResponse)
@app.get("/api/compositions/{composition_id}/status", response_model=CompositionResponse)
@app.get("/api/generate/{composition_id}", response_model=CompositionResponse)
def get_composition(
    composition_id: UUID,
    service: CompositionService = Depends(get_composition_service),
) -> CompositionResponse:
    composition = service.get_composition(composition_id)
    if composition is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Composition not found: {composition_id}")
    return CompositionResponse(composition=composition)


@app.get("/api/compositions/{composition_id}/download", response_model=DownloadResponse)
def download_composition(
    composition_id: UUID,
    service: CompositionService = Depends(get_composition_service),
) -> DownloadResponse:
    composition = service.get_composition(composition_id)
    if composition is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Composition not found: {composition_id}")
    if composition.status != CompositionStatus.COMPLETED or not composition.output_url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Composition is not ready (status: {composition.status.value})",
        )
    return DownloadResponse(
        composition_id=composition.id,
        title=composition.title,
        output_url=composition.output_url,
        subtitles_url=composition.subtitles_url,
    )


@app.post(
    "/api/compositions/{composition_id}/regenerate",
    response_model=CompositionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def regenerate_composition(
    composition_id: UUID,
    payload: RegenerateRequest | None = None,
    service: CompositionService = Depends(get_composition_service),
) -> CompositionResponse:
    payload = payload or RegenerateRequest()
    try:
        composition = service.regenerate(
            composition_id,
            delays=payload.delays,
            subtitle_position=payload.subtitle_position,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CompositionResponse(composition=composition)


@app.post("/api/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def create_template(
    payload: TemplateCreateRequest,
    catalog: CatalogService = Depends(get_catalog_service),
) -> TemplateResponse:
    try:
        template = catalog.register_template(
            name=payload.name,
            video_url=payload.video_url,
            character_ids=payload.character_ids,
            description=payload.description,
            thumbnail_url=payload.thumbnail_url,
            duration=payload.duration,
            dimensions=payload.dimensions,
            frame_rate=payload.frame_rate,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return TemplateResponse(template=template)


@app.get("/api/templates", response_model=TemplateListResponse)
def list_templates(catalog: CatalogService = Depends(get_catalog_service)) -> TemplateListResponse:
    return TemplateListResponse(items=catalog.list_templates())


@app.get("/api/templates/{template_id}", response_model=TemplateResponse)
def get_template(template_id: UUID, catalog: CatalogService = Depends(get_catalog_service)) -> TemplateResponse:
    try:
        template = catalog.get_template(template_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return TemplateResponse(template=template)


@app.post("/api/templates/{template_id}/characters", response_model=TemplateResponse)
def add_template_characters(
    template_id: UUID,
    payload: TemplateCharactersRequest,
    catalog: CatalogService = Depends(get_catalog_service),
) -> TemplateResponse:
    try:
        template = catalog.add_characters(template_id, payload.character_ids)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return TemplateResponse(template=template)


@app.delete("/api/templates/{template_id}/characters", response_model=TemplateResponse)
def remove_template_characters(
    template_id: UUID,
    payload: TemplateCharactersRequest,
    catalog: CatalogService = Depends(get_catalog_service),
) -> TemplateResponse:
    try:
        template = catalog.remove_characters(template_id, payload.character_ids)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return TemplateResponse(template=template)


@app.post("/api/characters", response_model=CharacterResponse, status_code=status.HTTP_201_CREATED)
def create_character(
    payload: CharacterCreateRequest,
    catalog: CatalogService = Depends(get_catalog_service),
) -> CharacterResponse:
    try:
        character = catalog.register_character(
            name=payload.name,
            display_name=payload.display_name or payload.name,
            voice_id=payload.voice_id,
            image_url=payload.image_url,
            position=payload.position,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CharacterResponse(character=character)


@app.get("/api/characters", response_model=CharacterListResponse)
def list_characters(catalog: CatalogService = Depends(get_catalog_service)) -> CharacterListResponse:
    return CharacterListResponse(items=catalog.list_characters())


@app.get("/api/voices", response_model=VoiceListResponse)
def list_voices(catalog: CatalogService = Depends(get_catalog_service)) -> VoiceListResponse:
    try:
        voices = catalog.list_voices()
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return VoiceListResponse(items=[VoiceInfo(id=voice["id"], name=voice.get("name")) for voice in voices])


@app.on_event("shutdown")
def close_services() -> None:
    if _services is not None:
        _services.compositions.close()
