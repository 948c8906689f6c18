from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from voicepilot.core.events.redact import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorKind(str, Enum):
    MICROPHONE_ACCESS = "microphone_access_error"
    TRANSCRIPTION = "transcription_error"
    NETWORK = "network_error"
    UNKNOWN = "unknown_error"


# Shown to the user while the session sits in ERROR. Raw provider text never reaches the UI.
USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.MICROPHONE_ACCESS: "Microphone access was denied or is unavailable.",
    ErrorKind.TRANSCRIPTION: "Sorry, I couldn't understand that.",
    ErrorKind.NETWORK: "Network problem. Please try again.",
    ErrorKind.UNKNOWN: "Something went wrong.",
}


def user_message_for(kind: ErrorKind) -> str:
    return USER_MESSAGES.get(kind, USER_MESSAGES[ErrorKind.UNKNOWN])


@dataclass
class VoicePilotError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind.value,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


class MicrophoneAccessError(VoicePilotError):
    def __init__(self, user_message: str = USER_MESSAGES[ErrorKind.MICROPHONE_ACCESS], **ctx: Any):
        super().__init__(
            "microphone_access_error",
            user_message,
            severity=Severity.ERROR,
            recoverable=True,
            context=ctx,
            kind=ErrorKind.MICROPHONE_ACCESS,
        )


class TranscriptionError(VoicePilotError):
    def __init__(self, user_message: str = USER_MESSAGES[ErrorKind.TRANSCRIPTION], **ctx: Any):
        super().__init__(
            "transcription_error",
            user_message,
            severity=Severity.WARN,
            recoverable=True,
            context=ctx,
            kind=ErrorKind.TRANSCRIPTION,
        )


class NetworkError(VoicePilotError):
    def __init__(self, user_message: str = USER_MESSAGES[ErrorKind.NETWORK], **ctx: Any):
        super().__init__(
            "network_error",
            user_message,
            severity=Severity.WARN,
            recoverable=True,
            context=ctx,
            kind=ErrorKind.NETWORK,
        )


class RecognitionError(VoicePilotError):
    def __init__(self, user_message: str = "I couldn't work out what to do.", **ctx: Any):
        super().__init__("recognition_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class ConfigError(VoicePilotError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)
