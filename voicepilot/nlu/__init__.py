from voicepilot.nlu.models import CommandTemplate, EntityValue, IntentResult, IntentType, VoiceEntity
from voicepilot.nlu.registry import CommandRegistry, default_registry
from voicepilot.nlu.pattern_matcher import PatternIntentMatcher
from voicepilot.nlu.llm_classifier import LLMIntentClassifier
from voicepilot.nlu.remote import RemoteRecognitionDriver
from voicepilot.nlu.recognizer import IntentRecognizer, build_recognition_driver

__all__ = [
    "CommandTemplate",
    "EntityValue",
    "IntentResult",
    "IntentType",
    "VoiceEntity",
    "CommandRegistry",
    "default_registry",
    "PatternIntentMatcher",
    "LLMIntentClassifier",
    "RemoteRecognitionDriver",
    "IntentRecognizer",
    "build_recognition_driver",
]
