from __future__ import annotations

from voicepilot.core.errors import ErrorKind


class VoiceError(RuntimeError):
    """Raised by capture, transcription and wake-word drivers. `kind` is the category the session reports."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class DependencyMissing(VoiceError):
    """An optional audio, speech or wake-word package is not installed."""


class ModelNotConfigured(VoiceError):
    kind = ErrorKind.TRANSCRIPTION


class AudioError(VoiceError):
    kind = ErrorKind.MICROPHONE_ACCESS


class STTError(VoiceError):
    kind = ErrorKind.TRANSCRIPTION
