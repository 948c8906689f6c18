from __future__ import annotations

import json
import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from voicepilot.core.events.redact import redact


class EventSeverity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SourceSubsystem(str, Enum):
    session = "session"
    ui = "ui"
    capture = "capture"
    wakeword = "wakeword"
    stt = "stt"
    nlu = "nlu"
    actuator = "actuator"
    events = "events"


class SpeechEvent(str, Enum):
    RECORD_BUTTON_PRESSED = "ui.record_button_pressed"
    STOP_BUTTON_PRESSED = "ui.stop_button_pressed"
    WAKE_WORD_DETECTED = "wake.wake_word_detected"
    STOP_WORD_DETECTED = "wake.stop_word_detected"
    RECORDING_STARTED = "capture.recording_started"
    RECORDING_STOPPED = "capture.recording_stopped"
    AUDIO_CAPTURED = "capture.audio_captured"
    TRANSCRIPTION_STARTED = "transcription.started"
    TRANSCRIPTION_COMPLETED = "transcription.completed"
    NLU_COMPLETED = "nlu.completed"
    ACTION_PERFORMED = "action.performed"
    ACTION_PAUSED = "action.paused"
    EXECUTION_COMPLETE = "action.execution_complete"
    SESSION_STATE_CHANGED = "session.state_changed"
    ERROR_OCCURRED = "error.occurred"


class BaseEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event_type: str
    timestamp: float = Field(default_factory=lambda: time.time())
    trace_id: Optional[str] = None
    source_subsystem: SourceSubsystem
    severity: EventSeverity = EventSeverity.INFO
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_type", mode="before")
    @classmethod
    def _non_empty(cls, v: Any) -> str:
        if isinstance(v, Enum):
            v = v.value
        v = str(v or "").strip()
        if not v:
            raise ValueError("event_type required")
        return v

    @field_validator("payload")
    @classmethod
    def _jsonable_and_redacted(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(v, dict):
            raise ValueError("payload must be an object")
        safe = redact(v)
        try:
            json.dumps(safe, ensure_ascii=False)
        except Exception as e:  # noqa: BLE001
            raise ValueError("payload must be JSON-serializable") from e
        return safe

    @property
    def session_id(self) -> Optional[str]:
        sid = self.payload.get("session_id")
        return str(sid) if sid is not None else None


def make_event(
    event_type: SpeechEvent | str,
    *,
    source: SourceSubsystem,
    trace_id: Optional[str] = None,
    severity: EventSeverity = EventSeverity.INFO,
    **payload: Any,
) -> BaseEvent:
    return BaseEvent(event_type=event_type, trace_id=trace_id, source_subsystem=source, severity=severity, payload=payload)
