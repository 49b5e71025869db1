import io
import json
import time

import pytest
from PIL import Image

from skitgen.clients.s3_storage import S3StorageClient
from skitgen.config import Settings
from skitgen.errors import ProviderError


class FakeLLM:
    def __init__(self, lines=None, title="Pizza Night", fail_with=None):
        self.lines = lines
        self.title = title
        self.fail_with = fail_with
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if self.fail_with is not None:
            raise self.fail_with
        if prompt.startswith("Generate a short, catchy video title"):
            return self.title
        return json.dumps({"title": self.title, "dialogues": self.lines})


class FakeTTS:
    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def synthesize(self, text, voice_id, voice_settings=None):
        self.calls.append((voice_id, text))
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("quota exceeded")
        return f"{voice_id}:{text}".encode("utf-8")

    def list_voices(self):
        return [{"id": "voice-a", "name": "Alpha"}, {"id": "voice-b", "name": "Beta"}]


class FakeEngine:
    """Stands in for ffmpeg: records every invocation and writes the output file."""

    def __init__(self, width=1080, height=1920, has_audio=True, fail_on=None):
        self.width = width
        self.height = height
        self.has_audio = has_audio
        self.fail_on = fail_on
        self.runs = []

    def run(self, args, description="ffmpeg"):
        self.runs.append((description, list(args)))
        if self.fail_on and self.fail_on == description:
            raise ProviderError(f"{description} failed: boom", provider="ffmpeg")
        with open(args[-1], "wb") as f:
            f.write(b"video")

    def probe(self, path):
        streams = [
            {"codec_type": "video", "codec_name": "h264", "width": self.width, "height": self.height, "r_frame_rate": "30/1"}
        ]
        if self.has_audio:
            streams.append({"codec_type": "audio", "codec_name": "aac"})
        return {"format": {"duration": "30.0", "bit_rate": "800000"}, "streams": streams}

    def descriptions(self):
        return [description for description, _ in self.runs]


def png_bytes(size=(400, 400)):
    buffer = io.BytesIO()
    Image.new("RGBA", size, (255, 0, 0, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


def fixed_duration(path):
    return 2.0


def default_lines():
    speakers = ["alice", "bob"]
    return [
        {"characterName": speakers[index % 2], "text": f"Line number {index} about pizza", "delay": 0 if index == 0 else 0.4}
        for index in range(8)
    ]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        processing_path=str(tmp_path / "processing"),
        speech_cache_path=str(tmp_path / "speech_cache"),
        worker_count=1,
        final_quality="high",
    )


@pytest.fixture
def storage():
    return S3StorageClient(bucket="skitgen", access_key=None, secret_key=None)


@pytest.fixture
def image_file(tmp_path):
    path = tmp_path / "character.png"
    path.write_bytes(png_bytes())
    return str(path)


def wait_for(predicate, attempts=200, delay=0.02):
    for _ in range(attempts):
        result = predicate()
        if result:
            return result
        time.sleep(delay)
    return predicate()

