from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SKITGEN_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "skitgen"
    host: str = "0.0.0.0"
    port: int = 3000

    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "composition_tasks"
    kafka_updates_topic: str = "composition_updates"
    kafka_group_id: str = "skitgen-consumer"
    worker_count: int = Field(default=2, ge=1)

    # Object storage configuration
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_public_url: str = ""
    s3_bucket: str = "skitgen"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str | None = None

    # Speech provider
    elevenlabs_api_key: str = ""
    elevenlabs_model_id: str = "eleven_multilingual_v2"
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    tts_timeout: float = 60.0
    voice_catalog: list[dict[str, str]] = Field(default_factory=list)
    speech_cache_path: str = "./storage/speech_cache"
    speech_cache_entries: int = Field(default=512, ge=1)

    # Script provider
    openrouter_api_key: str = ""
    openrouter_model: str = "google/gemini-2.0-flash-001"
    openrouter_base_url: str = "https://openrouter.ai/api"
    llm_timeout: float = 60.0

    # Media engine
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    processing_path: str = "./storage/processing"
    overlay_image_size: int = 400

    # Pipeline tuning
    words_per_second: float = 2.5
    line_pause_seconds: float = 0.5
    default_target_duration: int = 60
    max_video_duration: int = 300
    final_quality: str = "high"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
