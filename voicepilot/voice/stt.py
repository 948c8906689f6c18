from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from typing import List, Optional

import requests

from voicepilot.core.config.models import AppConfig, TranscriptionConfig, TranscriptionProvider
from voicepilot.core.errors import ConfigError
from voicepilot.voice.errors import DependencyMissing, ModelNotConfigured, STTError
from voicepilot.voice.protocols import TranscriptionDriver


WHISPER_LANGUAGES = [
    "af", "ar", "bg", "cs", "da", "de", "el", "en", "es", "et", "fa", "fi", "fr", "he", "hi", "hr",
    "hu", "id", "it", "ja", "ko", "lt", "lv", "ms", "nl", "no", "pl", "pt", "ro", "ru", "sk", "sl",
    "sr", "sv", "ta", "th", "tr", "uk", "ur", "vi", "zh",
]


class WhisperTranscriptionDriver:
    """OpenAI-compatible /audio/transcriptions client (multipart upload)."""

    name = "whisper"

    def __init__(self, cfg: TranscriptionConfig, *, lang: str = "en", logger=None):
        if not cfg.api_key:
            raise ConfigError("An API key is required for Whisper transcription.")
        self.cfg = cfg
        self.lang = str(lang or "en").lower()
        self.logger = logger or logging.getLogger(__name__)

    def get_available_languages(self) -> List[str]:
        return list(WHISPER_LANGUAGES)

    def _post(self, audio: bytes) -> str:
        r = requests.post(
            self.cfg.api_url,
            headers={"Authorization": f"Bearer {self.cfg.api_key}"},
            files={"file": ("audio.wav", audio, "audio/wav")},
            data={"model": self.cfg.model, "language": self.lang},
            timeout=self.cfg.timeout_seconds,
        )
        r.raise_for_status()
        try:
            data = r.json()
        except ValueError as e:
            raise STTError("transcription response was not JSON") from e
        if not isinstance(data, dict) or "text" not in data:
            raise STTError("transcription response has no text")
        return str(data.get("text") or "").strip()

    async def transcribe(self, audio: bytes) -> str:
        if not audio:
            raise STTError("no audio to transcribe")
        text = await asyncio.to_thread(self._post, audio)
        self.logger.info(f"stt: transcribed {len(audio)} bytes -> {len(text)} chars")
        return text


class LocalWhisperTranscriptionDriver:
    """faster-whisper on a local model directory; never downloads."""

    name = "local_whisper"

    def __init__(self, cfg: TranscriptionConfig, *, lang: str = "en", device_preference: str = "auto", logger=None):
        self.cfg = cfg
        self.lang = str(lang or "en").lower()
        self.device_preference = device_preference
        self.logger = logger or logging.getLogger(__name__)
        self._model = None

    def is_available(self) -> bool:
        p = self.cfg.local_model_path
        return bool(p) and (os.path.isdir(p) or os.path.isfile(p))

    def get_available_languages(self) -> List[str]:
        return list(WHISPER_LANGUAGES)

    def _get_model(self):
        if self._model is not None:
            return self._model
        try:
            from faster_whisper import WhisperModel  # type: ignore
        except Exception as e:
            raise DependencyMissing(f"faster-whisper not available: {e}") from e
        if not self.is_available():
            raise ModelNotConfigured("faster-whisper model path not configured.")
        if self.device_preference in {"auto", "cuda"}:
            try:
                self._model = WhisperModel(self.cfg.local_model_path, device="cuda", compute_type="float16")
                return self._model
            except Exception:  # noqa: BLE001
                if self.device_preference == "cuda":
                    raise
        self._model = WhisperModel(self.cfg.local_model_path, device="cpu", compute_type="int8")
        return self._model

    def _transcribe_file(self, audio: bytes) -> str:
        model = self._get_model()
        fd, path = tempfile.mkstemp(prefix="voicepilot_", suffix=".wav")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(audio)
            segments, _info = model.transcribe(path, language=self.lang, beam_size=1, vad_filter=True)
            return "".join(seg.text for seg in segments).strip()
        except (DependencyMissing, ModelNotConfigured):
            raise
        except Exception as e:
            raise STTError(f"faster-whisper transcription failed: {e}") from e
        finally:
            try:
                os.remove(path)
            except OSError:
                pass

    async def transcribe(self, audio: bytes) -> str:
        if not audio:
            raise STTError("no audio to transcribe")
        return await asyncio.to_thread(self._transcribe_file, audio)


def build_transcription_driver(cfg: AppConfig, *, logger=None) -> TranscriptionDriver:
    tc = cfg.transcription
    if tc.provider == TranscriptionProvider.WHISPER:
        return WhisperTranscriptionDriver(tc, lang=cfg.lang, logger=logger)
    if tc.provider == TranscriptionProvider.LOCAL_WHISPER:
        return LocalWhisperTranscriptionDriver(tc, lang=cfg.lang, logger=logger)
    raise ConfigError("Unsupported transcription provider.", provider=str(tc.provider))


def transcription_status(driver: Optional[TranscriptionDriver]) -> str:
    if driver is None:
        return "stt=none"
    return f"stt={getattr(driver, 'name', type(driver).__name__)}"
