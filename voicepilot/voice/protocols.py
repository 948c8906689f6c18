from __future__ import annotations

from typing import List, Optional, Protocol

from voicepilot.core.config.models import VadConfig


class AudioCapturer(Protocol):
    async def start_recording(self, *, trace_id: Optional[str] = None, session_id: Optional[str] = None) -> None: ...

    async def stop_recording(self, *, trace_id: Optional[str] = None, session_id: Optional[str] = None) -> bytes: ...

    async def listen_for_utterance(
        self, vad: VadConfig, *, trace_id: Optional[str] = None, session_id: Optional[str] = None
    ) -> bytes: ...

    def stop_listening(self) -> None: ...

    def release(self) -> None: ...


class TranscriptionDriver(Protocol):
    async def transcribe(self, audio: bytes) -> str: ...

    def get_available_languages(self) -> List[str]: ...


class WakeWordDetector(Protocol):
    def init(self, wake_words: List[str], sleep_words: List[str]) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def check_for_stop_word(self, text: str) -> bool: ...
