from voicepilot.core.config.io import apply_env_overrides, load_config, read_json_file, write_config
from voicepilot.core.config.models import (
    ActuatorConfig,
    AppConfig,
    CaptureConfig,
    CaptureMode,
    LoggingConfig,
    MatcherConfig,
    RecognitionConfig,
    RecognitionProvider,
    SessionConfig,
    TranscriptionConfig,
    TranscriptionProvider,
    UIConfig,
    VadConfig,
    WakeWordConfig,
    WakeWordEngine,
)

__all__ = [
    "apply_env_overrides",
    "load_config",
    "read_json_file",
    "write_config",
    "ActuatorConfig",
    "AppConfig",
    "CaptureConfig",
    "CaptureMode",
    "LoggingConfig",
    "MatcherConfig",
    "RecognitionConfig",
    "RecognitionProvider",
    "SessionConfig",
    "TranscriptionConfig",
    "TranscriptionProvider",
    "UIConfig",
    "VadConfig",
    "WakeWordConfig",
    "WakeWordEngine",
]
