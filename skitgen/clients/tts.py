from __future__ import annotations

import logging
from typing import Any, Optional

import httpx


class ElevenLabsClient:
    def __init__(
        self,
        api_key: str | None,
        model_id: str = "eleven_multilingual_v2",
        base_url: str = "https://api.elevenlabs.io",
        timeout: float = 60.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    def synthesize(self, text: str, voice_id: str, voice_settings: dict[str, Any] | None = None) -> bytes:
        if not self.enabled():
            raise RuntimeError("ElevenLabs client is not configured")
        url = f"{self.base_url}/v1/text-to-speech/{voice_id}"
        payload: dict[str, Any] = {
            "text": text,
            "model_id": self.model_id,
        }
        if voice_settings:
            payload["voice_settings"] = voice_settings
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            audio = response.content
        self.log.info(
            "elevenlabs synthesis completed",
            extra={
                "voice_id": voice_id,
                "model_id": self.model_id,
                "content_length": len(audio),
            },
        )
        return audio

    def list_voices(self) -> list[dict[str, str]]:
        if not self.enabled():
            raise RuntimeError("ElevenLabs client is not configured")
        headers = {"xi-api-key": self.api_key}
        with httpx.Client(timeout=self.timeout) as client:
            response = client.get(f"{self.base_url}/v1/voices", headers=headers)
            response.raise_for_status()
            body = response.json()
        return [
            {"id": voice.get("voice_id"), "name": voice.get("name") or "Unknown"}
            for voice in body.get("voices") or []
            if voice.get("voice_id")
        ]
