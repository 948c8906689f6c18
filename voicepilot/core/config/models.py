from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from voicepilot.core.events.bus import EventBusConfig

# what webrtcvad accepts
VAD_FRAME_MS = (10, 20, 30)
VAD_SAMPLE_RATES = (8000, 16000, 32000, 48000)


class RecognitionProvider(str, Enum):
    PATTERN = "pattern"
    LLM = "llm"
    HYBRID = "hybrid"
    REMOTE = "remote"


class TranscriptionProvider(str, Enum):
    WHISPER = "whisper"
    LOCAL_WHISPER = "local_whisper"


class WakeWordEngine(str, Enum):
    NONE = "none"
    PHRASE = "phrase"
    PORCUPINE = "porcupine"


class CaptureMode(str, Enum):
    PUSH_TO_TALK = "push_to_talk"
    CONTINUOUS = "continuous"


class MatcherConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    exact_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    fuzzy_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    keyword_floor: float = Field(default=0.6, ge=0.0, le=1.0)


class RecognitionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    provider: RecognitionProvider = RecognitionProvider.PATTERN
    api_key: str = ""
    api_url: Optional[str] = None
    model: str = "gpt-4o"
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=15.0, gt=0.0, le=120.0)
    # hybrid mode asks the LLM when the pattern result falls below this
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class TranscriptionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    provider: TranscriptionProvider = TranscriptionProvider.WHISPER
    api_key: str = ""
    api_url: str = "https://api.openai.com/v1/audio/transcriptions"
    model: str = "whisper-1"
    timeout_seconds: float = Field(default=30.0, gt=0.0, le=300.0)
    local_model_path: str = ""


class VadConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    # webrtcvad mode, 0 (least strict) to 3 (most strict about what counts as speech)
    aggressiveness: int = Field(default=2, ge=0, le=3)
    silence_ms: int = Field(default=800, ge=100, le=10_000)
    frame_ms: int = 30
    max_utterance_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    min_speech_ms: int = Field(default=200, ge=0, le=5000)

    @field_validator("frame_ms")
    @classmethod
    def _webrtc_frame(cls, v: int) -> int:
        if v not in VAD_FRAME_MS:
            raise ValueError(f"frame_ms must be one of {VAD_FRAME_MS}")
        return v


class CaptureConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mode: CaptureMode = CaptureMode.PUSH_TO_TALK
    sample_rate: int = 16000
    device_index: Optional[int] = None
    max_record_seconds: float = Field(default=15.0, gt=0.0, le=300.0)
    vad: VadConfig = Field(default_factory=VadConfig)

    @field_validator("sample_rate")
    @classmethod
    def _vad_rate(cls, v: int) -> int:
        if v not in VAD_SAMPLE_RATES:
            raise ValueError(f"sample_rate must be one of {VAD_SAMPLE_RATES}")
        return v


class WakeWordConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    engine: WakeWordEngine = WakeWordEngine.NONE
    wake_words: List[str] = Field(default_factory=lambda: ["hey"])
    sleep_words: List[str] = Field(default_factory=lambda: ["stop listening"])
    access_key: str = ""
    keyword_paths: List[str] = Field(default_factory=list)
    sensitivity: float = Field(default=0.6, ge=0.0, le=1.0)

    @field_validator("wake_words", "sleep_words")
    @classmethod
    def _lowercase(cls, v: List[str]) -> List[str]:
        return [str(w).strip().lower() for w in v if str(w).strip()]


class ActuatorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    settle_delay_seconds: float = Field(default=0.1, ge=0.0, le=5.0)
    scroll_amount: int = Field(default=300, ge=1)
    group_match_threshold: float = Field(default=50.0, ge=0.0)


class SessionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    error_recovery_seconds: float = Field(default=2.0, ge=0.0, le=60.0)
    # longest a recognized cycle may hold the next one back while actuating
    max_cycle_seconds: float = Field(default=60.0, gt=0.0, le=600.0)


class UIConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    position: str = "bottom-right"
    width: int = 300
    height: int = 120
    theme: str = "light"
    show_transcription: bool = True


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    log_dir: str = "logs"
    errors_file: str = "errors.jsonl"
    include_tracebacks: bool = False


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    lang: str = "en"
    recognition: RecognitionConfig = Field(default_factory=RecognitionConfig)
    matcher: MatcherConfig = Field(default_factory=MatcherConfig)
    transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    wake_word: WakeWordConfig = Field(default_factory=WakeWordConfig)
    actuator: ActuatorConfig = Field(default_factory=ActuatorConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    events: EventBusConfig = Field(default_factory=EventBusConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("lang")
    @classmethod
    def _lang_code(cls, v: str) -> str:
        v = str(v or "").strip().lower()
        if not v:
            raise ValueError("lang required")
        return v
