from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, List

from voicepilot.actuator.surface import ControlSurface
from voicepilot.core.app import VoicePilot
from voicepilot.core.config.models import (
    ActuatorConfig,
    AppConfig,
    CaptureConfig,
    CaptureMode,
    LoggingConfig,
    SessionConfig,
    WakeWordConfig,
    WakeWordEngine,
)
from voicepilot.core.events import BaseEvent

from .fakes import DummyLogger, RecordingUI


def make_config(tmp_path, *, mode: CaptureMode = CaptureMode.PUSH_TO_TALK, wake: WakeWordEngine = WakeWordEngine.NONE, settle: float = 0.0) -> AppConfig:
    return AppConfig(
        capture=CaptureConfig(mode=mode),
        wake_word=WakeWordConfig(engine=wake),
        actuator=ActuatorConfig(settle_delay_seconds=settle),
        session=SessionConfig(error_recovery_seconds=0.0),
        logging=LoggingConfig(log_dir=str(tmp_path / "logs")),
    )


@dataclass
class PilotHarness:
    pilot: VoicePilot
    ui: RecordingUI
    events: List[BaseEvent] = field(default_factory=list)

    @classmethod
    def make(cls, tmp_path, *, surface: ControlSurface, capturer=None, transcriber=None, **cfg_kw) -> "PilotHarness":
        ui = RecordingUI()
        pilot = VoicePilot(
            make_config(tmp_path, **cfg_kw),
            surface=surface,
            ui=ui,
            capturer=capturer,
            transcriber=transcriber,
            logger=DummyLogger(),
        )
        h = cls(pilot=pilot, ui=ui)
        pilot.bus.subscribe("*", h.events.append, priority=90)
        return h

    def event_types(self) -> List[str]:
        return [e.event_type for e in self.events]

    def performed(self) -> List[str]:
        return [e.payload["intent"] for e in self.events if e.event_type == "action.performed"]


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
