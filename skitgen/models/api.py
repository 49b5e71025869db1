from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, validator

from .domain import Character, Composition, Dimensions, Position, SubtitlePosition, Template


class CompositionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    template_id: UUID = Field(..., validation_alias="template_id")
    plot: str = Field(..., validation_alias="plot")
    title: Optional[str] = Field(default=None, validation_alias="title")
    subtitle_position: Optional[SubtitlePosition] = Field(default=None, validation_alias="subtitle_position")

    @validator("plot")
    def validate_plot(cls, value: str) -> str:  # noqa: D417
        if len(value.strip()) < 5:
            raise ValueError("plot must contain at least 5 characters")
        return value


class RegenerateRequest(BaseModel):
    delays: Optional[List[Optional[float]]] = Field(
        default=None,
        description="Per-line delays in seconds; shorter lists only override the leading lines",
    )
    subtitle_position: Optional[SubtitlePosition] = None

    @validator("delays")
    def validate_delays(cls, value: Optional[List[Optional[float]]]) -> Optional[List[Optional[float]]]:  # noqa: D417
        if value and any(delay is not None and delay < 0 for delay in value):
            raise ValueError("delays must be non-negative")
        return value


class CompositionResponse(BaseModel):
    composition: Composition


class CompositionListResponse(BaseModel):
    items: List[Composition]


class DownloadResponse(BaseModel):
    composition_id: UUID
    title: Optional[str] = None
    output_url: str
    subtitles_url: Optional[str] = None


class CharacterCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    display_name: Optional[str] = None
    voice_id: str = Field(..., min_length=1)
    image_url: str = Field(..., min_length=1)
    position: Optional[Position] = None


class CharacterResponse(BaseModel):
    character: Character


class CharacterListResponse(BaseModel):
    items: List[Character]


class TemplateCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    video_url: str = Field(..., min_length=1)
    thumbnail_url: Optional[str] = None
    duration: Optional[float] = Field(default=None, gt=0)
    dimensions: Optional[Dimensions] = None
    frame_rate: Optional[float] = Field(default=None, gt=0)
    character_ids: List[UUID] = Field(default_factory=list)


class TemplateCharactersRequest(BaseModel):
    character_ids: List[UUID] = Field(..., min_length=1)


class TemplateResponse(BaseModel):
    template: Template


class TemplateListResponse(BaseModel):
    items: List[Template]


class VoiceInfo(BaseModel):
    id: str
    name: Optional[str] = None


class VoiceListResponse(BaseModel):
    items: List[VoiceInfo]
