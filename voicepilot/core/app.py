from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Optional

from voicepilot.actuator.actuator import VoiceActuator
from voicepilot.actuator.normalizers import default_normalizers
from voicepilot.actuator.surface import ControlSurface
from voicepilot.core.config.models import AppConfig
from voicepilot.core.error_reporter import ErrorReporter, ErrorReporterConfig
from voicepilot.core.errors import ConfigError
from voicepilot.core.events import EventBus, SourceSubsystem, SpeechEvent, make_event
from voicepilot.core.session import SessionCore, SessionStatus
from voicepilot.nlu.recognizer import IntentRecognizer
from voicepilot.nlu.registry import CommandRegistry
from voicepilot.voice.pipeline import SpeechPipeline
from voicepilot.voice.stt import build_transcription_driver, transcription_status
from voicepilot.voice.wakeword import build_wake_word_detector


class VoicePilot:
    """
    Wires one voice-control session together from an AppConfig.

    Host-specific pieces (control surface, UI renderer, microphone, STT) are
    injected; anything not passed is built from config. Without a capturer
    the assembly still accepts typed utterances.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        surface: ControlSurface,
        ui=None,
        capturer=None,
        transcriber=None,
        recognizer: Optional[IntentRecognizer] = None,
        registry: Optional[CommandRegistry] = None,
        wake_detector=None,
        error_reporter: Optional[ErrorReporter] = None,
        clock: Optional[Callable[[], Any]] = None,
        logger=None,
    ):
        self.cfg = cfg
        self.logger = logger or logging.getLogger(__name__)
        self.error_reporter = error_reporter or ErrorReporter(
            path=os.path.join(cfg.logging.log_dir, cfg.logging.errors_file),
            cfg=ErrorReporterConfig(include_tracebacks=cfg.logging.include_tracebacks),
            logger=self.logger,
        )
        self.bus = EventBus(cfg=cfg.events, logger=self.logger, error_reporter=self.error_reporter)
        self.surface = surface
        self.ui = ui
        if self.ui is not None:
            self.ui.init(cfg.ui)

        if capturer is not None and getattr(capturer, "bus", None) is None:
            # capture events go on the session bus
            capturer.bus = self.bus
        if capturer is not None and transcriber is None:
            try:
                transcriber = build_transcription_driver(cfg, logger=self.logger)
            except ConfigError as e:
                self.logger.warning(f"voicepilot: transcription disabled: {e.user_message}")
        self.transcriber = transcriber

        self.recognizer = recognizer or IntentRecognizer.from_config(cfg, registry=registry, logger=self.logger)
        self.wake_detector = wake_detector or build_wake_word_detector(
            cfg.wake_word, bus=self.bus, device_index=cfg.capture.device_index, logger=self.logger
        )
        self.pipeline = SpeechPipeline(
            recognizer=self.recognizer,
            bus=self.bus,
            transcriber=self.transcriber,
            capturer=capturer,
            cfg=cfg.capture,
            error_reporter=self.error_reporter,
            logger=self.logger,
        )
        self.actuator = VoiceActuator(
            surface,
            bus=self.bus,
            cfg=cfg.actuator,
            normalizers=default_normalizers(clock),
            logger=self.logger,
        )
        self.core = SessionCore(
            bus=self.bus,
            pipeline=self.pipeline,
            actuator=self.actuator,
            ui=self.ui,
            wake_detector=self.wake_detector,
            cfg=cfg.session,
            error_reporter=self.error_reporter,
            logger=self.logger,
        )

    async def start(self) -> None:
        self.core.start()
        await self.bus.start()
        self.logger.info("voicepilot: ready")

    async def shutdown(self) -> None:
        await self.core.shutdown()
        await self.bus.shutdown()
        self.logger.info("voicepilot: stopped")

    def press_record(self) -> None:
        self.bus.publish(make_event(SpeechEvent.RECORD_BUTTON_PRESSED, source=SourceSubsystem.ui))

    def press_stop(self) -> None:
        self.bus.publish(make_event(SpeechEvent.STOP_BUTTON_PRESSED, source=SourceSubsystem.ui))

    async def submit_text(self, text: str, *, timeout: float = 30.0) -> SessionStatus:
        """Run typed text through recognition and actuation and wait for the cycle to finish."""
        await self.core.submit_text(text)
        if not await self.core.settle(timeout=timeout):
            self.logger.warning("voicepilot: cycle did not settle before timeout")
        return self.core.status()

    async def settle(self, timeout: float = 10.0) -> bool:
        return await self.core.settle(timeout=timeout)

    def status(self) -> Dict[str, Any]:
        st = self.core.status()
        return {
            "state": st.state.value,
            "active": st.active,
            "session_id": st.session_id,
            "recognition": self.cfg.recognition.provider.value,
            "capture_mode": self.cfg.capture.mode.value,
            "stt": transcription_status(self.transcriber),
            "wake": self.wake_detector.status(),
            "events": self.bus.get_stats(),
        }
