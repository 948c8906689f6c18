from __future__ import annotations

import asyncio
import io
import sys
import types
import wave

import pytest
from pydantic import ValidationError

from voicepilot.core.config.models import CaptureConfig, VadConfig
from voicepilot.voice.audio import SoundDeviceCapturer, VoiceActivityDetector, pcm_to_wav
from voicepilot.voice.errors import AudioError, DependencyMissing


# 10 ms at 8 kHz, 16-bit mono
FRAME = 160
LOUD = b"\x10\x27" * (FRAME // 2)
QUIET = b"\x00\x00" * (FRAME // 2)


class FakeVad:
    """Calls any frame with a non-zero sample speech."""

    def __init__(self, mode: int = 0):
        self.mode = mode
        self.frames = []

    def is_speech(self, frame: bytes, sample_rate: int) -> bool:
        self.frames.append((len(frame), sample_rate))
        return any(frame)


@pytest.fixture
def webrtc(monkeypatch):
    module = types.ModuleType("webrtcvad")
    module.Vad = FakeVad
    monkeypatch.setitem(sys.modules, "webrtcvad", module)
    return module


def _vad(**kw) -> VoiceActivityDetector:
    base = {"aggressiveness": 3, "frame_ms": 10, "min_speech_ms": 20, "silence_ms": 100, "max_utterance_seconds": 1.0}
    base.update(kw)
    return VoiceActivityDetector(VadConfig(**base), sample_rate=8000)


def test_speech_needs_min_duration_then_ends_on_silence(webrtc):
    vad = _vad()
    assert vad.process(LOUD) is False
    assert vad.started is False
    assert vad.process(LOUD) is False
    assert vad.started is True
    assert vad.process(QUIET * 9) is False
    assert vad.process(QUIET) is True


def test_speech_frame_resets_silence(webrtc):
    vad = _vad()
    vad.process(LOUD * 2 + QUIET * 5)
    assert vad.silence_ms == 50
    assert vad.process(LOUD) is False
    assert vad.silence_ms == 0
    assert vad.process(QUIET) is False


def test_partial_frames_wait_for_the_rest(webrtc):
    vad = _vad()
    vad.process(LOUD[:100])
    assert vad.heard_speech is False
    vad.process(LOUD[100:])
    assert vad.speech_ms == 10
    assert vad._vad.frames == [(FRAME, 8000)]
    assert vad._vad.mode == 3


def test_utterance_is_capped(webrtc):
    vad = _vad(max_utterance_seconds=0.1)
    assert vad.process(QUIET * 9) is False
    assert vad.process(QUIET) is True
    assert vad.started is False


def test_missing_webrtcvad_is_a_dependency_error(monkeypatch):
    monkeypatch.setitem(sys.modules, "webrtcvad", None)
    with pytest.raises(DependencyMissing):
        _vad()


def test_vad_settings_must_suit_webrtc():
    with pytest.raises(ValidationError):
        VadConfig(frame_ms=25)
    with pytest.raises(ValidationError):
        CaptureConfig(sample_rate=44100)
    with pytest.raises(ValidationError):
        VadConfig(aggressiveness=4)


def test_pcm_to_wav_header():
    data = pcm_to_wav(b"\x00\x01" * 160, 16000)
    with wave.open(io.BytesIO(data), "rb") as wf:
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == 16000
        assert wf.getnframes() == 160


def test_capturer_stop_without_recording():
    cap = SoundDeviceCapturer()
    assert cap.recording is False
    cap.release()
    with pytest.raises(AudioError):
        asyncio.run(cap.stop_recording())
