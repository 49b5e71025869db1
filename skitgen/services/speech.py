from __future__ import annotations

import hashlib
import logging
import os
import shutil
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Optional, Protocol, Tuple

from moviepy import AudioFileClip

from skitgen.errors import ProviderError, wrap_provider_error


class SpeechProvider(Protocol):
    def synthesize(self, text: str, voice_id: str, voice_settings: dict[str, Any] | None = None) -> bytes: ...

    def list_voices(self) -> list[dict[str, str]]: ...


@dataclass
class VoiceSettings:
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.5
    use_speaker_boost: bool = True

    def as_payload(self) -> dict[str, Any]:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
        }


@dataclass(frozen=True)
class SynthesizedSpeech:
    path: str
    duration: float
    cached: bool = False


class AudioCache:
    """Keeps synthesized audio keyed by ``(voice_id, text)`` in a directory it owns.

    Entries are copied in on ``put`` and copied out on ``copy_to``, so callers
    never share files with each other. The oldest entry is evicted once
    ``max_entries`` is exceeded.
    """

    def __init__(self, directory: str, max_entries: int = 512, logger: Optional[logging.Logger] = None) -> None:
        self.directory = directory
        self.max_entries = max(1, max_entries)
        self._entries: OrderedDict[Tuple[str, str], str] = OrderedDict()
        self._lock = Lock()
        self.log = logger or logging.getLogger(__name__)

    def _path_for(self, voice_id: str, text: str) -> str:
        digest = hashlib.sha1(f"{voice_id}\x00{text}".encode("utf-8")).hexdigest()
        return os.path.join(self.directory, f"{digest}.mp3")

    def get(self, voice_id: str, text: str) -> str | None:
        key = (voice_id, text)
        with self._lock:
            path = self._entries.get(key)
            if path and not os.path.exists(path):
                del self._entries[key]
                return None
            if path:
                self._entries.move_to_end(key)
            return path

    def put(self, voice_id: str, text: str, source_path: str) -> str | None:
        key = (voice_id, text)
        target = self._path_for(voice_id, text)
        with self._lock:
            try:
                os.makedirs(self.directory, exist_ok=True)
                shutil.copyfile(source_path, target)
            except OSError:
                self.log.warning("speech cache write failed", extra={"voice_id": voice_id}, exc_info=True)
                self._entries.pop(key, None)
                return None
            self._entries[key] = target
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                _, evicted = self._entries.popitem(last=False)
                self._remove(evicted)
            return target

    def copy_to(self, voice_id: str, text: str, destination: str) -> bool:
        key = (voice_id, text)
        with self._lock:
            path = self._entries.get(key)
            if not path:
                return False
            try:
                shutil.copyfile(path, destination)
            except OSError:
                self.log.warning("speech cache entry unreadable", extra={"voice_id": voice_id, "path": path}, exc_info=True)
                del self._entries[key]
                return False
            self._entries.move_to_end(key)
            return True

    def clear(self) -> None:
        with self._lock:
            for path in self._entries.values():
                self._remove(path)
            self._entries.clear()

    def _remove(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError:
            self.log.warning("speech cache eviction failed", extra={"path": path}, exc_info=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def audio_duration(path: str) -> float:
    clip = AudioFileClip(path)
    try:
        return float(clip.duration or 0.0)
    finally:
        clip.close()


class SpeechSynthesizer:
    def __init__(
        self,
        provider: SpeechProvider,
        cache: AudioCache,
        duration_probe: Callable[[str], float] = audio_duration,
        voice_catalog: Optional[list[dict[str, str]]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.duration_probe = duration_probe
        self.voice_catalog = voice_catalog or []
        self.log = logger or logging.getLogger(__name__)

    def synthesize(
        self,
        text: str,
        voice_id: str,
        output_dir: str,
        settings: VoiceSettings | None = None,
    ) -> SynthesizedSpeech:
        os.makedirs(output_dir, exist_ok=True)
        audio_path = os.path.join(output_dir, f"speech_{uuid.uuid4().hex[:12]}.mp3")
        if self.cache.copy_to(voice_id, text, audio_path):
            self.log.info("speech cache hit", extra={"voice_id": voice_id, "chars": len(text)})
            return SynthesizedSpeech(path=audio_path, duration=self._probe(audio_path), cached=True)

        try:
            audio = self.provider.synthesize(
                text,
                voice_id,
                settings.as_payload() if settings else None,
            )
        except Exception as exc:
            self.log.error("speech synthesis failed", extra={"voice_id": voice_id}, exc_info=True)
            raise wrap_provider_error("Failed to generate speech", exc, provider="elevenlabs") from exc
        if not audio:
            raise ProviderError("Failed to generate speech: provider returned no audio", provider="elevenlabs")
        with open(audio_path, "wb") as f:
            f.write(audio)
        duration = self._probe(audio_path)
        self.cache.put(voice_id, text, audio_path)
        self.log.info(
            "generated speech",
            extra={"voice_id": voice_id, "chars": len(text), "duration": round(duration, 2)},
        )
        return SynthesizedSpeech(path=audio_path, duration=duration)

    def list_voices(self) -> list[dict[str, str]]:
        if self.voice_catalog:
            voices = []
            for entry in self.voice_catalog:
                voice_id = entry.get("id") or entry.get("voice_id")
                if voice_id:
                    voices.append({"id": voice_id, "name": entry.get("name") or voice_id})
            return voices
        try:
            return self.provider.list_voices()
        except Exception as exc:
            raise wrap_provider_error("Failed to get voices", exc, provider="elevenlabs") from exc

    def _probe(self, path: str) -> float:
        try:
            duration = self.duration_probe(path)
        except Exception as exc:
            raise wrap_provider_error("Failed to probe speech duration", exc, provider="ffmpeg") from exc
        if duration <= 0:
            raise ProviderError(f"Failed to probe speech duration: {path} has no audio", provider="ffmpeg")
        return duration
