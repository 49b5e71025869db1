from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class CompositionStatus(str, Enum):
    PENDING = "pending"
    GENERATING_SCRIPT = "generating_script"
    GENERATING_AUDIO = "generating_audio"
    COMPOSITING = "compositing"
    ADDING_SUBTITLES = "adding_subtitles"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (CompositionStatus.COMPLETED, CompositionStatus.FAILED)


class SubtitlePosition(str, Enum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


class Anchor(str, Enum):
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"
    CENTER = "center"


class Position(BaseModel):
    x: float = 5
    y: float = 95
    scale: float = Field(default=0.25, gt=0)
    anchor: Anchor = Anchor.BOTTOM_LEFT


class Character(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    display_name: str
    voice_id: str
    image_url: str
    position: Position = Field(default_factory=Position)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Dimensions(BaseModel):
    width: int
    height: int


class Template(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    description: str = ""
    video_url: str
    thumbnail_url: Optional[str] = None
    duration: Optional[float] = None
    dimensions: Dimensions
    frame_rate: float = 30
    character_ids: List[UUID] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class DialogueLine(BaseModel):
    character_id: UUID
    text: str
    start_time: float = 0.0
    duration: float = 0.0
    delay: float = 0.0
    speech_url: Optional[str] = None


class CompositionStatusHistory(BaseModel):
    status: CompositionStatus
    progress: int
    message: str
    occurred_at: datetime = Field(default_factory=datetime.utcnow)


class Composition(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    template_id: UUID
    title: Optional[str] = None
    plot: str
    subtitle_position: SubtitlePosition = SubtitlePosition.BOTTOM
    generated_script: List[DialogueLine] = Field(default_factory=list)
    status: CompositionStatus = CompositionStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    status_history: List[CompositionStatusHistory] = Field(default_factory=list)
    output_url: Optional[str] = None
    subtitles_url: Optional[str] = None
    error: Optional[str] = None
    regeneration_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


@dataclass
class AudioSegment:
    character_id: UUID
    text: str
    audio_path: str
    start_time: float
    duration: float


@dataclass
class VideoSegment:
    character_id: UUID
    image_path: str
    position: Position
    start_time: float
    end_time: float


@dataclass(frozen=True)
class MediaInfo:
    duration: float
    width: int
    height: int
    frame_rate: float
    codec: str
    bitrate: int
    has_audio: bool
