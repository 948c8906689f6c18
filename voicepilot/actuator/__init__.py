from voicepilot.actuator.surface import Control, ControlKind, ControlSurface
from voicepilot.actuator.resolver import ElementResolver, MatchCandidate, match_score
from voicepilot.actuator.entities import ProcessedEntities
from voicepilot.actuator.actuator import VoiceActuator

__all__ = [
    "Control",
    "ControlKind",
    "ControlSurface",
    "ElementResolver",
    "MatchCandidate",
    "match_score",
    "ProcessedEntities",
    "VoiceActuator",
]
