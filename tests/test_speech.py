import os
import shutil

import pytest

from conftest import FakeTTS, fixed_duration
from skitgen.errors import ProviderError
from skitgen.services.speech import AudioCache, SpeechSynthesizer, VoiceSettings


@pytest.fixture
def cache(tmp_path):
    return AudioCache(str(tmp_path / "cache"))


def test_synthesize_writes_audio_and_reports_duration(tmp_path, cache):
    tts = FakeTTS()
    synth = SpeechSynthesizer(tts, cache, duration_probe=fixed_duration)
    speech = synth.synthesize("Hello there", "voice-a", str(tmp_path))
    assert os.path.exists(speech.path)
    assert speech.duration == 2.0
    assert not speech.cached
    with open(speech.path, "rb") as f:
        assert f.read() == b"voice-a:Hello there"


def test_cache_hit_skips_provider_and_copies_file(tmp_path, cache):
    tts = FakeTTS()
    synth = SpeechSynthesizer(tts, cache, duration_probe=fixed_duration)
    first = synth.synthesize("Same line", "voice-a", str(tmp_path / "run1"))
    second = synth.synthesize("Same line", "voice-a", str(tmp_path / "run2"))
    assert len(tts.calls) == 1
    assert second.cached
    assert second.path != first.path
    assert os.path.dirname(second.path) == str(tmp_path / "run2")
    assert len(cache) == 1


def test_cache_survives_removal_of_the_producing_run(tmp_path, cache):
    tts = FakeTTS()
    synth = SpeechSynthesizer(tts, cache, duration_probe=fixed_duration)
    synth.synthesize("Same line", "voice-a", str(tmp_path / "run1"))
    shutil.rmtree(tmp_path / "run1")

    again = synth.synthesize("Same line", "voice-a", str(tmp_path / "run2"))
    assert again.cached
    assert len(tts.calls) == 1
    assert cache.get("voice-a", "Same line").startswith(str(tmp_path / "cache"))
    with open(again.path, "rb") as f:
        assert f.read() == b"voice-a:Same line"


def test_cache_is_keyed_by_voice(tmp_path, cache):
    tts = FakeTTS()
    synth = SpeechSynthesizer(tts, cache, duration_probe=fixed_duration)
    synth.synthesize("Same line", "voice-a", str(tmp_path))
    synth.synthesize("Same line", "voice-b", str(tmp_path))
    assert len(tts.calls) == 2


def test_cache_evicts_oldest_entry(tmp_path):
    cache = AudioCache(str(tmp_path / "cache"), max_entries=2)
    source = tmp_path / "source.mp3"
    source.write_bytes(b"audio")
    first = cache.put("voice-a", "one", str(source))
    cache.put("voice-a", "two", str(source))
    assert cache.get("voice-a", "one") == first
    cache.put("voice-a", "three", str(source))

    assert len(cache) == 2
    assert cache.get("voice-a", "two") is None
    assert cache.get("voice-a", "one") == first
    assert len(os.listdir(tmp_path / "cache")) == 2


def test_missing_cache_file_falls_back_to_provider(tmp_path, cache):
    tts = FakeTTS()
    synth = SpeechSynthesizer(tts, cache, duration_probe=fixed_duration)
    synth.synthesize("gone", "voice-a", str(tmp_path / "run1"))
    os.remove(cache.get("voice-a", "gone"))

    speech = synth.synthesize("gone", "voice-a", str(tmp_path / "run2"))
    assert not speech.cached
    assert len(tts.calls) == 2
    assert len(cache) == 1


def test_provider_failure_is_wrapped(tmp_path, cache):
    synth = SpeechSynthesizer(FakeTTS(fail_on="boom"), cache, duration_probe=fixed_duration)
    with pytest.raises(ProviderError, match="^Failed to generate speech: quota exceeded$"):
        synth.synthesize("this goes boom", "voice-a", str(tmp_path))
    assert len(cache) == 0


def test_zero_duration_is_rejected(tmp_path, cache):
    synth = SpeechSynthesizer(FakeTTS(), cache, duration_probe=lambda path: 0.0)
    with pytest.raises(ProviderError, match="probe speech duration"):
        synth.synthesize("silent", "voice-a", str(tmp_path))


def test_voice_settings_are_forwarded(tmp_path, cache):
    class RecordingTTS(FakeTTS):
        def synthesize(self, text, voice_id, voice_settings=None):
            self.settings = voice_settings
            return super().synthesize(text, voice_id, voice_settings)

    tts = RecordingTTS()
    synth = SpeechSynthesizer(tts, cache, duration_probe=fixed_duration)
    synth.synthesize("hi", "voice-a", str(tmp_path), VoiceSettings(stability=0.9))
    assert tts.settings["stability"] == 0.9


def test_list_voices_prefers_catalog(cache):
    synth = SpeechSynthesizer(FakeTTS(), cache, voice_catalog=[{"voice_id": "custom", "name": "Custom"}])
    assert synth.list_voices() == [{"id": "custom", "name": "Custom"}]
    assert SpeechSynthesizer(FakeTTS(), cache).list_voices()[0]["id"] == "voice-a"
