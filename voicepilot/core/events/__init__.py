"""
Internal event bus for the speech pipeline.

Exports the event model, the canonical event names and the asyncio bus.
"""

from voicepilot.core.events.redact import redact
from voicepilot.core.events.models import BaseEvent, EventSeverity, SourceSubsystem, SpeechEvent, make_event
from voicepilot.core.events.bus import EventBus, EventBusConfig, OverflowPolicy

__all__ = [
    "redact",
    "BaseEvent",
    "EventSeverity",
    "SourceSubsystem",
    "SpeechEvent",
    "make_event",
    "EventBus",
    "EventBusConfig",
    "OverflowPolicy",
]
